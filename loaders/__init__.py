"""
Slice loaders package.
"""

from loaders.dicom import DicomSeriesLoader, slice_record_from_dataset
from loaders.phantom import PhantomLoader, phantom_slices, sphere_field

__all__ = [
    'DicomSeriesLoader',
    'slice_record_from_dataset',
    'PhantomLoader',
    'phantom_slices',
    'sphere_field',
]
