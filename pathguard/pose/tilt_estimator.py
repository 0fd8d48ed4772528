"""
Device Tilt from Camera Pose.

The camera's local backward axis is column 2 of its pose transform.
Negating that column's vertical component gives a forward-looking
pitch indicator in [-1, 1]: 0 means the phone looks at the horizon,
-1 straight down at the floor. Recomputed fresh every frame.
"""

from __future__ import annotations

from typing import Sequence, Union
import numpy as np
from numpy.typing import NDArray

from pathguard.core.errors import PoseError


PoseLike = Union[NDArray[np.floating], Sequence[float]]


class PoseAngleEstimator:
    """
    Derives the forward-looking tilt scalar from a 4x4 pose.

    Accepts either a 4x4 matrix in math (row-major) layout or a flat
    16-element column-major array as produced by OpenGL-style APIs.
    Both address the same element: row 1 of column 2.
    """

    def tilt(self, pose: PoseLike) -> float:
        """Forward vector vertical component, clipped to [-1, 1]."""
        matrix = np.asarray(pose, dtype=np.float64)

        if matrix.shape == (4, 4):
            backward_y = matrix[1, 2]
        elif matrix.shape == (16,):
            backward_y = matrix[9]
        else:
            raise PoseError(f"Pose must be 4x4 or 16 values, got shape {matrix.shape}")

        if not np.isfinite(backward_y):
            raise PoseError("Pose contains non-finite values")

        return float(np.clip(-backward_y, -1.0, 1.0))
