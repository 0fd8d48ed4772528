"""
Pose Module.

Responsibilities:
- Forward-looking tilt indicator from the camera pose
"""

from .tilt_estimator import PoseAngleEstimator
