"""
Iso-value suggestion for normalised volumes.

Three flavours:
- ``suggest_iso_values``: percentile candidates plus optional histogram peaks
- ``suggest_iso_value``: a single histogram threshold from scikit-image
- ``suggest_iso_value_for_tissue``: a candidate chosen by tissue class
"""

import numpy as np
from typing import List

from core.base import Volume
from config import ISOVALUE_HISTOGRAM_BINS, ISOVALUE_SAMPLE_THRESHOLD


ISO_ALGORITHMS = ("otsu", "li", "yen", "triangle", "minimum", "median")


def _sample_values(volume: Volume, stride: int) -> np.ndarray:
    stride = max(1, int(stride))
    values = volume.samples[::stride, ::stride, ::stride].ravel()
    return values[np.isfinite(values)].astype(np.float64)


def _histogram_peaks(values: np.ndarray, bucket_count: int = 50, top: int = 3) -> List[float]:
    """Centres of the strongest local maxima of a coarse histogram."""
    lo, hi = float(values.min()), float(values.max())
    if not lo < hi:
        return []
    hist, edges = np.histogram(values, bins=bucket_count, range=(lo, hi))
    inner = np.arange(1, bucket_count - 1)
    is_peak = (hist[inner] > hist[inner - 1]) & (hist[inner] > hist[inner + 1]) & (hist[inner] > values.size // 50)
    peaks = inner[is_peak]
    # Strongest first; ties keep the lower bucket
    peaks = peaks[np.argsort(-hist[peaks], kind="stable")][:top]
    centres = (edges[:-1] + edges[1:]) / 2
    return [float(centres[i]) for i in peaks]


def suggest_iso_values(volume: Volume, sample_count: int = 20, full_analysis: bool = False) -> List[float]:
    """
    Candidate iso-values from the sampled intensity distribution.

    Returns the 25th, 50th and 75th percentiles, preceded by a background
    threshold when the volume has a dark background, followed by up to three
    histogram peaks when ``full_analysis`` is set.
    """
    stride = max(1, min(volume.dimensions) // max(1, sample_count))
    values = _sample_values(volume, stride)
    if values.size <= 100:
        values = _sample_values(volume, 1)
    if values.size == 0:
        return []

    p5, p25, p50, p75, p95 = np.percentile(values, [5, 25, 50, 75, 95])
    candidates = [float(p25), float(p50), float(p75)]
    if p5 < p95 * 0.1:
        candidates.insert(0, float(p5 + (p25 - p5) * 0.5))

    if full_analysis and values.size > 1000:
        candidates.extend(_histogram_peaks(values))
    return candidates


def suggest_iso_value(volume: Volume, algorithm: str = "otsu") -> float:
    """
    Single iso-value separating foreground from background.

    Args:
        volume: Volume to analyse.
        algorithm: One of 'otsu', 'li', 'yen', 'triangle', 'minimum', 'median'.
            - otsu: Classic bimodal thresholding
            - li: Minimum cross-entropy (good for noisy data)
            - yen: Maximum correlation
            - triangle: Good for 'peak+tail' histograms
            - minimum: Valley between peaks
            - median: 50th percentile, no histogram fit

    Returns:
        Suggested iso-value in the volume's normalised range.
    """
    from skimage.filters import (
        threshold_otsu, threshold_li, threshold_yen, threshold_triangle,
        threshold_minimum
    )

    algorithm = algorithm.lower()
    if algorithm not in ISO_ALGORITHMS:
        allowed = ", ".join(ISO_ALGORITHMS)
        raise ValueError(f"Unknown iso algorithm '{algorithm}'. Expected one of: {allowed}.")

    # Sample data for large volumes
    stride = 4 if volume.voxel_count > ISOVALUE_SAMPLE_THRESHOLD else 1
    values = _sample_values(volume, stride)
    if values.size == 0:
        raise ValueError("Volume has no finite samples.")

    median = float(np.median(values))
    if algorithm == "median" or values.min() == values.max():
        return median

    methods = {
        "otsu": lambda v: threshold_otsu(v, nbins=ISOVALUE_HISTOGRAM_BINS),
        "li": threshold_li,
        "yen": lambda v: threshold_yen(v, nbins=ISOVALUE_HISTOGRAM_BINS),
        "triangle": lambda v: threshold_triangle(v, nbins=ISOVALUE_HISTOGRAM_BINS),
        "minimum": lambda v: threshold_minimum(v, nbins=ISOVALUE_HISTOGRAM_BINS),
    }
    try:
        return float(methods[algorithm](values))
    except RuntimeError:
        # threshold_minimum cannot always find two peaks
        return median


TISSUE_TYPES = ("auto", "skin", "soft_tissue", "brain", "bone")


def suggest_iso_value_for_tissue(volume: Volume, tissue: str = "auto") -> float:
    """
    Iso-value preset for a tissue class, picked from ``suggest_iso_values``.

    Samples are normalised, so presets are relative to the intensity
    distribution: skin takes the lowest candidate, bone the highest, soft
    tissue and brain the median.

    Args:
        volume: Volume to analyse.
        tissue: One of 'auto', 'skin', 'soft_tissue', 'brain', 'bone'.

    Returns:
        Suggested iso-value in the volume's normalised range.
    """
    tissue = tissue.lower()
    if tissue not in TISSUE_TYPES:
        allowed = ", ".join(TISSUE_TYPES)
        raise ValueError(f"Unknown tissue type '{tissue}'. Expected one of: {allowed}.")

    candidates = suggest_iso_values(volume)
    if not candidates:
        raise ValueError("Volume has no finite samples.")

    if tissue == "skin":
        return candidates[0]
    if tissue == "bone":
        return candidates[-1]
    # auto, soft_tissue, brain
    return candidates[1] if len(candidates) > 1 else candidates[0]
