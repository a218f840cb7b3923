import numpy as np
import pytest

from core import Volume
from processors import (
    ISO_ALGORITHMS, TISSUE_TYPES, suggest_iso_value, suggest_iso_value_for_tissue, suggest_iso_values
)


def _bimodal_volume(size=24, seed=0) -> Volume:
    rng = np.random.default_rng(seed)
    samples = rng.normal(0.2, 0.03, size=(size, size, size))
    samples[6:18, 6:18, 6:18] = rng.normal(0.8, 0.03, size=(12, 12, 12))
    return Volume(samples=np.clip(samples, 0.0, 1.0))


# Yen hugs the dark mode and lets a sliver of its upper tail through
_FOREGROUND_TOLERANCE = {"yen": 0.05}


@pytest.mark.parametrize("algorithm", [a for a in ISO_ALGORITHMS if a != "median"])
def test_threshold_separates_modes(algorithm):
    volume = _bimodal_volume()
    iso = suggest_iso_value(volume, algorithm=algorithm)
    assert 0.2 < iso < 0.8
    # 12^3 of 24^3 voxels belong to the bright block
    foreground = float(np.mean(volume.samples > iso))
    assert foreground == pytest.approx(0.125, abs=_FOREGROUND_TOLERANCE.get(algorithm, 0.01))


def test_median_algorithm():
    volume = _bimodal_volume()
    assert suggest_iso_value(volume, algorithm="median") == pytest.approx(float(np.median(volume.samples)))


def test_constant_volume_returns_the_constant():
    assert suggest_iso_value(Volume(samples=np.full((4, 4, 4), 0.25))) == pytest.approx(0.25)


def test_unknown_algorithm_rejected():
    with pytest.raises(ValueError):
        suggest_iso_value(_bimodal_volume(), algorithm="magic")


def test_candidates_are_percentiles():
    volume = Volume(samples=np.linspace(0.0, 1.0, 8 * 8 * 8).reshape(8, 8, 8))
    candidates = suggest_iso_values(volume)
    # Dark background adds a low candidate first
    assert len(candidates) == 4
    assert candidates[1:] == pytest.approx([0.25, 0.5, 0.75], abs=1e-6)
    assert candidates[0] < candidates[1]


def test_full_analysis_adds_histogram_peaks():
    candidates = suggest_iso_values(_bimodal_volume(), full_analysis=True)
    peaks = candidates[3:]
    assert any(abs(p - 0.2) < 0.05 for p in peaks)
    assert any(abs(p - 0.8) < 0.05 for p in peaks)


def test_tissue_presets_pick_candidates():
    volume = Volume(samples=np.linspace(0.0, 1.0, 8 * 8 * 8).reshape(8, 8, 8))
    candidates = suggest_iso_values(volume)

    assert suggest_iso_value_for_tissue(volume, "skin") == candidates[0]
    assert suggest_iso_value_for_tissue(volume, "bone") == candidates[-1]
    for tissue in ("auto", "soft_tissue", "brain"):
        assert suggest_iso_value_for_tissue(volume, tissue) == candidates[1]
    assert suggest_iso_value_for_tissue(volume, "BONE") == pytest.approx(0.75, abs=1e-6)


def test_bone_preset_is_brightest():
    volume = _bimodal_volume()
    skin = suggest_iso_value_for_tissue(volume, "skin")
    soft = suggest_iso_value_for_tissue(volume, "soft_tissue")
    bone = suggest_iso_value_for_tissue(volume, "bone")
    assert skin <= soft <= bone
    assert set(TISSUE_TYPES) == {"auto", "skin", "soft_tissue", "brain", "bone"}


def test_unknown_tissue_rejected():
    with pytest.raises(ValueError):
        suggest_iso_value_for_tissue(_bimodal_volume(), "cartilage")
