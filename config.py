"""
Configuration constants for the Slice Stack Reconstruction Suite.
All tolerances and tunable parameters are centralized here.
"""

# ==========================================
# Series Assembly
# ==========================================

# Orientation vectors may differ by at most this angle (radians)
ASSEMBLY_ANGULAR_TOLERANCE = 1e-3

# In-plane position drift allowed between slices, as a fraction of the
# smallest pixel spacing of the series
ASSEMBLY_POSITION_TOLERANCE = 1e-3

# Two slice locations closer than this are considered duplicates (mm)
ASSEMBLY_LOCATION_EPSILON = 1e-4

# Pixel spacing of every slice must agree within this relative tolerance
ASSEMBLY_PIXEL_SPACING_TOLERANCE = 1e-3

# Gap uniformity: a gap is regular when |gap - thickness| <= max(ABS, REL * thickness)
SPACING_ABSOLUTE_TOLERANCE = 1e-4
SPACING_RELATIVE_TOLERANCE = 1e-3

# ==========================================
# Volume Building
# ==========================================

# In-plane spacing used when the decoder supplies none (mm)
DEFAULT_PIXEL_SPACING = 1.0

# Parallel threads copying slice layers into the sample array
BUILDER_MAX_WORKERS = 4

# ==========================================
# Iso-Surface Extraction
# ==========================================

# Values within this distance below the iso-value still count as inside
ISO_EPSILON = 1e-6

# Normal assigned where the gradient vanishes
DEFAULT_NORMAL = (0.0, 0.0, 1.0)

# Parallel extraction settings
EXTRACT_MAX_WORKERS = 4           # Number of slab workers
EXTRACT_SLAB_DEPTH = 32           # Cube layers per slab
EXTRACT_STEP_SIZE = 1             # Voxel subsampling factor (1 = full resolution)

# ==========================================
# Iso-Value Suggestion
# ==========================================

# Sample volumes above this size before computing statistics (number of voxels)
ISOVALUE_SAMPLE_THRESHOLD = 20_000_000

# Histogram bins used for peak detection
ISOVALUE_HISTOGRAM_BINS = 256

# ==========================================
# Mesh Post-Processing
# ==========================================
MESH_SMOOTH_ITERATIONS = 3
MESH_SMOOTH_FACTOR = 0.5
MESH_MIN_COMPONENT_TRIANGLES = 100

# ==========================================
# Loader Settings
# ==========================================

# Parallel reading settings
LOADER_MAX_WORKERS = 4            # Number of parallel threads for file reading

# Synthetic phantom defaults
PHANTOM_SIZE = 64                 # Slices / rows / columns
PHANTOM_BITS_STORED = 12
PHANTOM_SLICE_THICKNESS = 1.0     # mm

# ==========================================
# Export Settings
# ==========================================
EXPORT_MESH_BASENAME = "surface"          # surface.<format>
EXPORT_VOLUME_BASENAME = "volume"         # volume.vti
EXPORT_DEFAULT_DIR = "cli_output"         # Relative to the working directory
