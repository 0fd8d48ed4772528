"""
PathGuard - Perception & Alert Decision Engine

A real-time mobility-assistance aid. Scans depth frames from a
spatial-sensing session, decides whether the path ahead holds an
obstacle, a staircase, a drop-off or a device-orientation problem,
and drives a rate-limited visual / haptic / spoken alert.

Top Priorities (strict order):
1. Never miss an immediate collision risk
2. Deterministic, explainable hazard decisions
3. No alert flooding (per-channel cooldowns)
4. Never block the frame loop
"""

__version__ = "0.1.0"
__author__ = "PathGuard Team"
