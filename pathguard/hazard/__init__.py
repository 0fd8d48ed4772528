"""
Hazard Module.

Responsibilities:
- Priority-ordered hazard decision per frame
- Staircase vs drop-off disambiguation
"""

from .classifier import HazardClassifier
