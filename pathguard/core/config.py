"""
Configuration for the decision engine.

Every threshold is a tunable with a documented default; nothing in the
scanner, classifier or dispatcher hides a numeric constant. Defaults
come from field-testing with a handheld phone and are meant to be
tuned, not treated as ground truth.

Loading:
    config = load_config("config/settings.yaml")

Runtime settings (the user-facing toggles) are persisted separately by
SettingsStore so a backend fallback survives restarts.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, asdict
from enum import Enum
from pathlib import Path
from typing import Optional, List, Dict, Any, Union

import yaml
from loguru import logger

from pathguard.core.contracts import RegionOfInterest, HazardKind


DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[2] / "config" / "settings.yaml"


class LabelerBackend(Enum):
    """Selectable object labeler backends."""
    CLASSIFIER = "classifier"  # multi-label image classifier
    DETECTOR = "detector"      # single-shot detector with NMS

    @property
    def other(self) -> LabelerBackend:
        if self is LabelerBackend.CLASSIFIER:
            return LabelerBackend.DETECTOR
        return LabelerBackend.CLASSIFIER


DEFAULT_PRIORITY: List[HazardKind] = [
    HazardKind.OBSTACLE_CLOSE,
    HazardKind.TILT_TOO_HIGH,
    HazardKind.STAIRCASE,
    HazardKind.DEEP_DROP_OFF,
    HazardKind.TILT_TOO_LOW,
]


@dataclass
class ScanConfig:
    """Region scanner settings.

    Attributes:
        roi: Fractional region of interest
        step: Sampling stride in pixels (both axes)
        obstacle_limit_mm: Readings closer than this count as "close"
        drop_off_limit_mm: Readings farther than this count as "deep"
    """
    roi: RegionOfInterest = field(default_factory=RegionOfInterest)
    step: int = 8
    obstacle_limit_mm: int = 1200
    drop_off_limit_mm: int = 4000


@dataclass
class HazardThresholds:
    """Hazard classifier settings.

    Fractions are relative to the number of visited grid points.
    Tilt thresholds apply to the forward-vector vertical component:
    above tilt_high_threshold the phone looks too level, below
    tilt_low_threshold it points at the user's feet.
    """
    obstacle_fraction: float = 0.15
    drop_fraction: float = 0.40
    stair_gap_mm: float = 500.0
    tilt_high_threshold: float = -0.40
    tilt_low_threshold: float = -0.75
    priority: List[HazardKind] = field(default_factory=lambda: list(DEFAULT_PRIORITY))


@dataclass
class AlertConfig:
    """Alert dispatcher settings (cooldowns in milliseconds)."""
    haptic_cooldown_ms: float = 500.0
    speech_cooldown_ms: float = 2500.0
    haptic_pulse_ms: int = 200
    speech_rate: int = 160


@dataclass
class LabelerConfig:
    """Object labeler settings.

    Attributes:
        request_cooldown_ms: Minimum interval between label requests
        label_timeout_ms: Cached label expires after this long without an obstacle
        rotation_degrees: Default rotation hint for camera images
        crop_to_roi: Crop the color image to the region of interest first
        classifier_model: MediaPipe image classifier model (.tflite)
        classifier_min_confidence: Confidence floor for the classifier backend
        detector_model: ultralytics YOLO weights
        detector_min_confidence: Confidence floor for the detector backend
        detector_iou: NMS IoU threshold
        device: Detector device ("cpu", "cuda", "mps" or "auto")
    """
    request_cooldown_ms: float = 1000.0
    label_timeout_ms: float = 3000.0
    rotation_degrees: int = 90
    crop_to_roi: bool = True
    classifier_model: str = "models/efficientnet_lite0.tflite"
    classifier_min_confidence: float = 0.75
    classifier_max_results: int = 3
    detector_model: str = "yolov8n.pt"
    detector_min_confidence: float = 0.70
    detector_iou: float = 0.45
    detector_input_size: int = 640
    device: str = "auto"

    def min_confidence_for(self, backend: LabelerBackend) -> float:
        if backend is LabelerBackend.DETECTOR:
            return self.detector_min_confidence
        return self.classifier_min_confidence


@dataclass
class RuntimeSettings:
    """User-facing toggles. May change while the engine runs."""
    detection_enabled: bool = True
    haptic_enabled: bool = True
    speech_enabled: bool = True
    classifier_backend: LabelerBackend = LabelerBackend.CLASSIFIER

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["classifier_backend"] = self.classifier_backend.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> RuntimeSettings:
        values = _known_keys(cls, data, "settings")
        if "classifier_backend" in values:
            values["classifier_backend"] = _parse_backend(values["classifier_backend"])
        return cls(**values)


@dataclass
class EngineConfig:
    """Complete engine configuration."""
    scan: ScanConfig = field(default_factory=ScanConfig)
    hazard: HazardThresholds = field(default_factory=HazardThresholds)
    alerts: AlertConfig = field(default_factory=AlertConfig)
    labeler: LabelerConfig = field(default_factory=LabelerConfig)
    settings: RuntimeSettings = field(default_factory=RuntimeSettings)
    settings_path: Optional[str] = None


# ============================================================
# LOADING
# ============================================================

def _known_keys(cls, data: Optional[Dict[str, Any]], section: str) -> Dict[str, Any]:
    """Keep only keys that are fields of cls; warn about the rest."""
    if not data:
        return {}
    names = {f.name for f in fields(cls) if f.init}
    unknown = set(data) - names
    if unknown:
        logger.warning(f"Ignoring unknown {section} keys: {sorted(unknown)}")
    return {k: v for k, v in data.items() if k in names}


def _parse_backend(value: Union[str, LabelerBackend]) -> LabelerBackend:
    if isinstance(value, LabelerBackend):
        return value
    try:
        return LabelerBackend(str(value).lower())
    except ValueError:
        logger.warning(f"Unknown classifier backend '{value}', using classifier")
        return LabelerBackend.CLASSIFIER


def _parse_priority(values: List[str]) -> List[HazardKind]:
    return [HazardKind(str(v).lower()) for v in values]


def config_from_dict(data: Optional[Dict[str, Any]]) -> EngineConfig:
    """Build an EngineConfig from a (YAML-shaped) nested dict."""
    data = data or {}

    scan_data = dict(_known_keys(ScanConfig, data.get("scan"), "scan"))
    if "roi" in scan_data:
        scan_data["roi"] = RegionOfInterest(
            **_known_keys(RegionOfInterest, scan_data["roi"], "roi")
        )

    hazard_data = dict(_known_keys(HazardThresholds, data.get("hazard"), "hazard"))
    if "priority" in hazard_data:
        hazard_data["priority"] = _parse_priority(hazard_data["priority"])

    return EngineConfig(
        scan=ScanConfig(**scan_data),
        hazard=HazardThresholds(**hazard_data),
        alerts=AlertConfig(**_known_keys(AlertConfig, data.get("alerts"), "alerts")),
        labeler=LabelerConfig(**_known_keys(LabelerConfig, data.get("labeler"), "labeler")),
        settings=RuntimeSettings.from_dict(data.get("settings") or {}),
        settings_path=data.get("settings_path"),
    )


def load_config(config_path: Optional[Union[str, Path]] = None) -> EngineConfig:
    """
    Load configuration from a YAML file.

    Falls back to config/settings.yaml, then to built-in defaults.
    If settings_path is set and exists, persisted runtime settings
    override the ones in the main file.
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    data: Dict[str, Any] = {}
    if path.exists():
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        logger.info(f"Loaded configuration from {path}")
    elif config_path:
        logger.warning(f"Config file {path} not found, using defaults")

    config = config_from_dict(data)

    if config.settings_path:
        store = SettingsStore(config.settings_path)
        persisted = store.load()
        if persisted is not None:
            config.settings = persisted

    return config


class SettingsStore:
    """
    YAML persistence for RuntimeSettings.

    Used so that a classifier backend reverted after an init failure
    stays reverted instead of failing again on every start.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path).expanduser()

    def load(self) -> Optional[RuntimeSettings]:
        if not self.path.exists():
            return None
        try:
            with open(self.path) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Could not read settings {self.path}: {e}")
            return None
        return RuntimeSettings.from_dict(data)

    def save(self, settings: RuntimeSettings) -> bool:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w") as f:
                yaml.safe_dump(settings.to_dict(), f, sort_keys=False)
        except OSError as e:
            logger.error(f"Could not persist settings to {self.path}: {e}")
            return False
        logger.debug(f"Settings persisted to {self.path}")
        return True
