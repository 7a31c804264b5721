"""Post-processing modules for IMX500 output tensors.

Interprets the decoded float output of on-sensor networks whose final
layer already produced detections.

Modules:
    ssd_decoder: Object detection (SSD MobileNet V1, 10-detection record)
"""
