"""
Core contracts, configuration and errors for the decision engine.

Per-frame execution order (NEVER REORDER):
1. Acquire depth frame + device pose
2. Scan the region of interest
3. Estimate device tilt
4. Classify exactly one hazard state
5. Request an obstacle label (out-of-band, obstacle frames only)
6. Dispatch rate-limited alert effects
"""

from .contracts import (
    DepthSample,
    DepthFrame,
    RegionOfInterest,
    ScanStatistics,
    HazardKind,
    HazardState,
    LabelResult,
    VisualUpdate,
    AlertEffects,
)
from .errors import (
    PathGuardError,
    FrameUnavailableError,
    DepthDecodeError,
    InvalidRegionError,
    PoseError,
    LabelerError,
    LabelerInitError,
)
