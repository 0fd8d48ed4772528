"""
Object Labeling Module.

Optional, best-effort enrichment that names the obstacle ahead.

Backends:
- "classifier": MediaPipe multi-label image classifier
- "detector":   ultralytics YOLO single-shot detector with NMS

To add a new backend:
1. Create a new file in this directory
2. Implement a class inheriting from AsyncLabeler
3. Register it in the LABELERS dict below
"""

from typing import Optional, Union

from pathguard.core.config import LabelerBackend, LabelerConfig
from .base import BaseLabeler, AsyncLabeler, LabelCandidate, LabelCallback
from .label_cache import LabelCache
from .mediapipe_classifier import MediaPipeClassifierLabeler
from .yolo_detector import YOLODetectorLabeler


# Registry of available labelers
LABELERS = {
    LabelerBackend.CLASSIFIER: MediaPipeClassifierLabeler,
    LabelerBackend.DETECTOR: YOLODetectorLabeler,
}


def get_labeler(
    backend: Union[LabelerBackend, str],
    config: Optional[LabelerConfig] = None,
) -> BaseLabeler:
    """Get a labeler instance by backend.

    Args:
        backend: Backend enum or its name ("classifier", "detector")
        config: Labeler configuration

    Returns:
        Labeler instance (not started)

    Raises:
        ValueError: If backend is not registered
    """
    if not isinstance(backend, LabelerBackend):
        try:
            backend = LabelerBackend(str(backend).lower())
        except ValueError:
            available = ", ".join(b.value for b in LABELERS)
            raise ValueError(f"Unknown labeler '{backend}'. Available: {available}")

    return LABELERS[backend](config)


def list_labelers() -> list:
    """List available labeler backend names."""
    return [b.value for b in LABELERS]


from .manager import LabelerManager  # noqa: E402  (manager uses get_labeler)


__all__ = ['BaseLabeler', 'AsyncLabeler', 'LabelCandidate', 'LabelCallback',
           'LabelCache', 'LabelerManager', 'MediaPipeClassifierLabeler',
           'YOLODetectorLabeler', 'LABELERS', 'get_labeler', 'list_labelers']
