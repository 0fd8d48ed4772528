"""
Engine Module.

Responsibilities:
- Per-frame execution order (scan, tilt, classify, label, alert)
- Error-category to degraded-outcome mapping
- Runtime settings and backend fallback persistence
"""

from .frame_loop import PerceptionEngine, FrameResult
