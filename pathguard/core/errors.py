"""
Exception hierarchy for the decision engine.

Nothing here is fatal to the process. The frame loop maps each
category to a degraded outcome:
- FrameUnavailableError -> skip frame, keep previous banner
- DepthDecodeError / InvalidRegionError / PoseError -> Clear, logged
- LabelerError -> obstacle alert proceeds without a label
- LabelerInitError -> fall back to the other labeler backend
"""

from __future__ import annotations


class PathGuardError(Exception):
    """Base class for all engine errors."""


class FrameUnavailableError(PathGuardError):
    """Depth or camera frame not ready this cycle."""


class DepthDecodeError(PathGuardError):
    """Depth buffer too small or malformed for the requested scan."""


class InvalidRegionError(PathGuardError, ValueError):
    """Region of interest or scan step violates its invariants."""


class PoseError(PathGuardError, ValueError):
    """Pose matrix has the wrong shape or non-finite values."""


class LabelerError(PathGuardError):
    """Object labeler inference failed."""


class LabelerInitError(LabelerError):
    """Object labeler backend could not be initialized."""
