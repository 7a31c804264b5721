"""Shared constants for the libreimx500 package.

Sensor-determined values from the IMX500 output tensor stream and the
SSD MobileNet V1 post-processing topology.
"""

# Size of the DNN header at the start of line 0.  The schema blob starts
# immediately after it.
DNN_HEADER_SIZE = 12

# Stride used by the reference rpicam stage for a 2028-pixel wide stream.
DEFAULT_STRIDE = 4064

# Header tensor_type / descriptor format values.
TYPE_SIGNED = 0
TYPE_UNSIGNED = 1

# Counts and sizes are 32-bit unsigned on the sensor side.
UINT32_MAX = 0xFFFFFFFF

# Dimension reorder is only defined for up to 3 dimensions.
DIMENSION_MAX = 3

# SSD MobileNet V1: 10 candidate detections.
# bbox(10*4) + class(10) + scores(10) + numDetections(1) = 61
SSD_TOTAL_DETECTIONS = 10
SSD_OUTPUT_TENSOR_SIZE = 61

DEFAULT_THRESHOLD = 0.3

# Epsilon used to prevent division by zero when quantizing synthetic data.
QUANT_EPSILON = 1e-9
