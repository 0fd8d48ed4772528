# tests/test_frame_loop.py
import threading
import time

import numpy as np
import yaml

from pathguard.core.config import EngineConfig, LabelerBackend, RuntimeSettings, SettingsStore
from pathguard.core.contracts import DepthFrame, HazardKind
from pathguard.alerts.sinks import AlertSink
from pathguard.engine.frame_loop import PerceptionEngine
from pathguard.labeling.base import AsyncLabeler, BaseLabeler, LabelCandidate
from pathguard.labeling.label_cache import LabelCache
from pathguard.labeling.manager import LabelerManager


RGB = np.zeros((120, 160, 3), dtype=np.uint8)


def level_pose(tilt=-0.6):
    pose = np.eye(4)
    pose[1, 2] = -tilt
    return pose


def obstacle_frame(on_release=None):
    return DepthFrame.from_array(np.full((120, 160), 800, dtype=np.uint16), on_release=on_release)


def open_floor_frame():
    return DepthFrame.from_array(np.full((120, 160), 2500, dtype=np.uint16))


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class RecordingSink(AlertSink):
    def __init__(self):
        self.visuals = []
        self.haptics = 0
        self.speech = []
        self.started = False

    def start(self):
        self.started = True

    def on_visual_update(self, text, color, visible):
        self.visuals.append((text, visible))

    def on_haptic(self):
        self.haptics += 1

    def on_speech(self, text):
        self.speech.append(text)


class BrokenSink(AlertSink):
    def on_visual_update(self, text, color, visible):
        raise RuntimeError("UI thread gone")


class ImmediateLabeler(BaseLabeler):
    def __init__(self, candidate=None):
        self.candidate = candidate
        self.requests = 0

    def start(self):
        pass

    def stop(self):
        pass

    def identify(self, image, rotation_degrees, request_id, callback):
        self.requests += 1
        callback(request_id, self.candidate)

    @property
    def is_ready(self):
        return True

    @property
    def init_error(self):
        return None


class ReleaseCounter:
    def __init__(self):
        self.calls = 0

    def __call__(self):
        self.calls += 1


def make_engine(labeler=None, sink=None, config=None, factory=None, settings_store=None):
    clock = FakeClock()
    config = config or EngineConfig()
    labeler = labeler or ImmediateLabeler()
    manager = LabelerManager(
        config=config.labeler,
        backend=config.settings.classifier_backend,
        cache=LabelCache(),
        clock=clock,
        factory=factory or (lambda backend, cfg: labeler),
    )
    engine = PerceptionEngine(
        config,
        sink=sink or RecordingSink(),
        labeler_manager=manager,
        settings_store=settings_store,
        clock=clock,
    )
    engine.start()
    return engine, clock


def test_obstacle_frame_alerts_every_channel():
    sink = RecordingSink()
    engine, _ = make_engine(sink=sink)

    result = engine.provide_frame(obstacle_frame(), level_pose())

    assert result.hazard.kind is HazardKind.OBSTACLE_CLOSE
    assert result.tilt == -0.6
    assert sink.started
    assert sink.visuals == [("STOP!", True)]
    assert sink.haptics == 1
    assert sink.speech == ["STOP"]


def test_frame_released_before_return():
    counter = ReleaseCounter()
    engine, _ = make_engine()
    frame = obstacle_frame(on_release=counter)

    engine.provide_frame(frame, level_pose())

    assert frame.is_released
    assert counter.calls == 1


def test_missing_frame_is_skipped_silently():
    sink = RecordingSink()
    engine, _ = make_engine(sink=sink)

    assert engine.provide_frame(None, level_pose()) is None
    assert sink.visuals == []
    assert engine.skipped_count == 1


def test_undecodable_frame_is_clear():
    sink = RecordingSink()
    engine, _ = make_engine(sink=sink)
    counter = ReleaseCounter()

    result = engine.process_raw(bytes(100), 640, 480, 1280, 2, level_pose(), on_release=counter)

    assert result.hazard.is_clear
    assert sink.visuals == [("", False)]
    assert sink.haptics == 0
    assert counter.calls == 1


def test_bad_pose_is_clear_and_releases():
    engine, _ = make_engine()
    frame = obstacle_frame()

    result = engine.provide_frame(frame, np.zeros(5))

    assert result.hazard.is_clear
    assert frame.is_released


def test_missing_pose_disables_tilt():
    engine, _ = make_engine()
    result = engine.provide_frame(open_floor_frame(), None)

    assert result.tilt is None
    assert result.hazard.is_clear


def test_tilted_phone_warns():
    engine, _ = make_engine()
    result = engine.provide_frame(open_floor_frame(), level_pose(-0.2))
    assert result.hazard.kind is HazardKind.TILT_TOO_HIGH


def test_label_attached_to_obstacle():
    labeler = ImmediateLabeler(LabelCandidate("chair", 0.9))
    sink = RecordingSink()
    engine, _ = make_engine(labeler=labeler, sink=sink)

    result = engine.provide_frame(obstacle_frame(), level_pose(), RGB, 90)

    assert result.label_request_id == 1
    assert result.hazard.label == "chair"
    assert sink.visuals == [("STOP! (chair)", True)]
    assert sink.speech == ["STOP chair"]


def test_no_label_request_without_obstacle():
    labeler = ImmediateLabeler(LabelCandidate("chair", 0.9))
    engine, _ = make_engine(labeler=labeler)

    engine.provide_frame(open_floor_frame(), level_pose(), RGB)
    assert labeler.requests == 0


def test_detection_disabled_means_no_labels():
    labeler = ImmediateLabeler(LabelCandidate("chair", 0.9))
    config = EngineConfig(settings=RuntimeSettings(detection_enabled=False))
    engine, _ = make_engine(labeler=labeler, config=config)

    result = engine.provide_frame(obstacle_frame(), level_pose(), RGB)

    assert labeler.requests == 0
    assert result.hazard.label is None


def test_label_expires_while_path_clear():
    labeler = ImmediateLabeler(LabelCandidate("chair", 0.9))
    engine, clock = make_engine(labeler=labeler)

    engine.provide_frame(obstacle_frame(), level_pose(), RGB)
    clock.now = 2.0
    engine.provide_frame(open_floor_frame(), level_pose())
    assert engine.label_cache.label == "chair"

    clock.now = 3.5
    engine.provide_frame(open_floor_frame(), level_pose())
    assert engine.label_cache.label is None


def test_sink_failure_does_not_propagate():
    engine, _ = make_engine(sink=BrokenSink())
    result = engine.provide_frame(obstacle_frame(), level_pose())
    assert result.hazard.kind is HazardKind.OBSTACLE_CLOSE


def test_unexpected_error_skips_frame(monkeypatch):
    engine, _ = make_engine()

    def explode(stats, tilt):
        raise RuntimeError("boom")

    monkeypatch.setattr(engine._classifier, "classify", explode)
    frame = obstacle_frame()

    assert engine.provide_frame(frame, level_pose()) is None
    assert frame.is_released


def test_update_settings_silences_haptic():
    sink = RecordingSink()
    engine, clock = make_engine(sink=sink)

    engine.update_settings(RuntimeSettings(haptic_enabled=False))
    engine.provide_frame(obstacle_frame(), level_pose())

    assert sink.haptics == 0
    assert sink.speech == ["STOP"]


def test_backend_fallback_is_persisted(tmp_path):
    store = SettingsStore(tmp_path / "settings.yaml")
    detector = ImmediateLabeler(LabelCandidate("door", 0.9))

    def factory(backend, cfg):
        if backend is LabelerBackend.CLASSIFIER:
            raise RuntimeError("classifier model missing")
        return detector

    engine, _ = make_engine(factory=factory, settings_store=store)
    result = engine.provide_frame(obstacle_frame(), level_pose(), RGB)

    assert result.hazard.label == "door"
    assert engine.settings.classifier_backend is LabelerBackend.DETECTOR
    with open(tmp_path / "settings.yaml") as f:
        assert yaml.safe_load(f)["classifier_backend"] == "detector"


def test_stop_is_idempotent():
    engine, _ = make_engine()
    engine.stop()
    engine.stop()
    assert not engine.is_running


class SlowLoadLabeler(AsyncLabeler):
    name = "slow"

    def __init__(self):
        super().__init__()
        self.loading = threading.Event()
        self.finish_loading = threading.Event()

    def _load_model(self):
        self.loading.set()
        self.finish_loading.wait(timeout=5.0)

    def _infer(self, image):
        return None


def test_backend_switch_does_not_wait_for_loading_model():
    slow = SlowLoadLabeler()
    engine, _ = make_engine(factory=lambda backend, cfg: slow)

    engine.provide_frame(obstacle_frame(), level_pose(), RGB)
    assert slow.loading.wait(timeout=2.0)

    start = time.perf_counter()
    engine.update_settings(RuntimeSettings(classifier_backend=LabelerBackend.DETECTOR))
    engine.update_settings(RuntimeSettings(classifier_backend=LabelerBackend.DETECTOR, detection_enabled=False))
    assert time.perf_counter() - start < 0.1

    # Frames keep flowing while the abandoned model finishes loading
    result = engine.provide_frame(obstacle_frame(), level_pose(), RGB)
    assert result.hazard.kind is HazardKind.OBSTACLE_CLOSE

    slow.finish_loading.set()
    assert slow.join(timeout=2.0)


def test_label_survives_a_long_obstacle():
    labeler = ImmediateLabeler(LabelCandidate("chair", 0.9))
    engine, clock = make_engine(labeler=labeler)

    # Labelled at t=0, then the obstacle stays in view until t=5
    engine.provide_frame(obstacle_frame(), level_pose(), RGB)
    labeler.candidate = None
    for t in (1.0, 2.0, 3.0, 4.0, 5.0):
        clock.now = t
        engine.provide_frame(obstacle_frame(), level_pose(), RGB)

    clock.now = 5.5
    result = engine.provide_frame(open_floor_frame(), level_pose())
    assert result.hazard.is_clear
    assert engine.label_cache.label == "chair"

    clock.now = 7.9
    engine.provide_frame(open_floor_frame(), level_pose())
    assert engine.label_cache.label == "chair"

    clock.now = 8.1
    engine.provide_frame(open_floor_frame(), level_pose())
    assert engine.label_cache.label is None


class DeferredLabeler(ImmediateLabeler):
    """Holds requests until the test answers them, like a backend slower than the cooldown."""

    def __init__(self):
        super().__init__()
        self.pending = []

    def identify(self, image, rotation_degrees, request_id, callback):
        self.requests += 1
        self.pending.append((request_id, callback))

    def answer_oldest(self, candidate):
        request_id, callback = self.pending.pop(0)
        callback(request_id, candidate)


def test_slow_backend_results_still_land():
    labeler = DeferredLabeler()
    engine, clock = make_engine(labeler=labeler)

    # Two requests in flight, 1 s cooldown apart
    engine.provide_frame(obstacle_frame(), level_pose(), RGB)
    clock.now = 1.0
    engine.provide_frame(obstacle_frame(), level_pose(), RGB)
    assert labeler.requests == 2

    clock.now = 1.5
    labeler.answer_oldest(LabelCandidate("chair", 0.9))
    result = engine.provide_frame(obstacle_frame(), level_pose(), RGB)
    assert result.hazard.label == "chair"

    clock.now = 2.5
    labeler.answer_oldest(LabelCandidate("table", 0.9))
    assert engine.label_cache.label == "table"
    assert engine.label_cache.rejected_count == 0
