# tests/test_config.py
import pytest
import yaml

from pathguard.core.config import (
    EngineConfig,
    LabelerBackend,
    LabelerConfig,
    RuntimeSettings,
    SettingsStore,
    config_from_dict,
    load_config,
)
from pathguard.core.contracts import HazardKind
from pathguard.core.errors import InvalidRegionError


def test_defaults():
    config = EngineConfig()
    assert config.scan.step == 8
    assert config.scan.roi.left == 0.15
    assert config.scan.roi.lower_band_start is None
    assert config.hazard.obstacle_fraction == 0.15
    assert config.alerts.speech_cooldown_ms == 2500.0
    assert config.labeler.label_timeout_ms == 3000.0
    assert config.settings.classifier_backend is LabelerBackend.CLASSIFIER


def test_nested_sections_and_unknown_keys():
    config = config_from_dict({
        "scan": {"step": 4, "roi": {"left": 0.1, "right": 0.9, "lower_band_start": 0.6}},
        "hazard": {"priority": ["staircase", "obstacle_close"], "bogus": 1},
        "settings": {"classifier_backend": "DETECTOR", "speech_enabled": False},
    })

    assert config.scan.step == 4
    assert config.scan.roi.right == 0.9
    assert config.scan.roi.top == 0.20
    assert config.scan.roi.lower_band_start == 0.6
    assert config.hazard.priority == [HazardKind.STAIRCASE, HazardKind.OBSTACLE_CLOSE]
    assert config.settings.classifier_backend is LabelerBackend.DETECTOR
    assert not config.settings.speech_enabled


def test_invalid_roi_in_config_raises():
    with pytest.raises(InvalidRegionError):
        config_from_dict({"scan": {"roi": {"left": 0.8, "right": 0.2}}})


def test_unknown_backend_falls_back_to_classifier():
    settings = RuntimeSettings.from_dict({"classifier_backend": "lidar"})
    assert settings.classifier_backend is LabelerBackend.CLASSIFIER


def test_backend_floors():
    config = LabelerConfig()
    assert config.min_confidence_for(LabelerBackend.CLASSIFIER) == 0.75
    assert config.min_confidence_for(LabelerBackend.DETECTOR) == 0.70
    assert LabelerBackend.CLASSIFIER.other is LabelerBackend.DETECTOR


def test_load_config_missing_file_uses_defaults(tmp_path):
    config = load_config(tmp_path / "nope.yaml")
    assert config.scan.obstacle_limit_mm == 1200
    assert config.settings_path is None


def test_load_config_applies_persisted_settings(tmp_path):
    settings_file = tmp_path / "runtime.yaml"
    SettingsStore(settings_file).save(RuntimeSettings(classifier_backend=LabelerBackend.DETECTOR))

    config_file = tmp_path / "settings.yaml"
    config_file.write_text(yaml.safe_dump({
        "alerts": {"haptic_cooldown_ms": 750},
        "settings": {"classifier_backend": "classifier"},
        "settings_path": str(settings_file),
    }))

    config = load_config(config_file)
    assert config.alerts.haptic_cooldown_ms == 750
    assert config.settings.classifier_backend is LabelerBackend.DETECTOR


def test_settings_store_round_trip(tmp_path):
    store = SettingsStore(tmp_path / "nested" / "settings.yaml")
    assert store.load() is None

    settings = RuntimeSettings(detection_enabled=False, haptic_enabled=True,
                               speech_enabled=False, classifier_backend=LabelerBackend.DETECTOR)
    assert store.save(settings)
    assert store.load() == settings


def test_settings_store_tolerates_garbage(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text("classifier_backend: [unclosed")
    assert SettingsStore(path).load() is None


def test_shipped_config_parses():
    from pathlib import Path

    path = Path(__file__).resolve().parents[1] / "config" / "settings.yaml"
    with open(path) as f:
        config = config_from_dict(yaml.safe_load(f))
    assert config.hazard.priority[0] is HazardKind.OBSTACLE_CLOSE
    assert config.labeler.detector_model == "yolov8n.pt"
