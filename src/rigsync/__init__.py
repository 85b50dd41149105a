"""rigsync -- multi-camera rig calibration and frame synchronization."""

__version__ = "0.1.0"
