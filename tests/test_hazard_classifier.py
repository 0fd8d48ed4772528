# tests/test_hazard_classifier.py
import pytest

from pathguard.core.config import HazardThresholds
from pathguard.core.contracts import ScanStatistics, HazardKind, HazardState
from pathguard.hazard.classifier import HazardClassifier


LEVEL = -0.6  # between the tilt thresholds


def stats(close=0, deep=0, total=1000, upper=0.0, lower=0.0):
    return ScanStatistics(
        close_pixel_count=close,
        deep_pixel_count=deep,
        total_scanned_pixels=total,
        upper_average_depth_mm=upper,
        lower_average_depth_mm=lower,
        upper_sample_count=total // 2,
        lower_sample_count=total // 2,
    )


def test_obstacle_over_fifteen_percent():
    result = HazardClassifier().classify(stats(close=200), LEVEL)
    assert result == HazardState(HazardKind.OBSTACLE_CLOSE)
    assert result.label is None


def test_fraction_must_be_strictly_exceeded():
    assert HazardClassifier().classify(stats(close=150), LEVEL).is_clear


def test_staircase_vs_drop_off():
    classifier = HazardClassifier()
    assert classifier.classify(stats(deep=450, upper=5200, lower=4000), LEVEL).kind is HazardKind.STAIRCASE
    assert classifier.classify(stats(deep=450, upper=4600, lower=4500), LEVEL).kind is HazardKind.DEEP_DROP_OFF


def test_zero_total_is_clear():
    assert HazardClassifier().classify(stats(close=5, total=0), 0.0).is_clear


def test_obstacle_outranks_tilt():
    assert HazardClassifier().classify(stats(close=900), 0.0).kind is HazardKind.OBSTACLE_CLOSE


def test_tilt_high_outranks_stairs():
    result = HazardClassifier().classify(stats(deep=900, upper=6000, lower=4100), -0.2)
    assert result.kind is HazardKind.TILT_TOO_HIGH


def test_drop_off_outranks_tilt_low():
    assert HazardClassifier().classify(stats(deep=900), -0.9).kind is HazardKind.DEEP_DROP_OFF
    assert HazardClassifier().classify(stats(), -0.9).kind is HazardKind.TILT_TOO_LOW


def test_missing_pose_disables_tilt_rules():
    classifier = HazardClassifier()
    assert classifier.classify(stats(), None).is_clear
    assert classifier.classify(stats(deep=900), None).kind is HazardKind.DEEP_DROP_OFF


def test_same_input_same_output():
    classifier = HazardClassifier()
    sample = stats(close=100, deep=500, upper=5000, lower=4200)
    assert len({classifier.classify(sample, -0.5) for _ in range(10)}) == 1


def test_custom_priority_order():
    thresholds = HazardThresholds(priority=[HazardKind.STAIRCASE, HazardKind.OBSTACLE_CLOSE])
    result = HazardClassifier(thresholds).classify(stats(close=900, deep=500, upper=6000, lower=4100), 0.0)
    assert result.kind is HazardKind.STAIRCASE


@pytest.mark.parametrize("priority", [
    [HazardKind.CLEAR],
    [HazardKind.STAIRCASE, HazardKind.STAIRCASE],
])
def test_invalid_priority_rejected(priority):
    with pytest.raises(ValueError):
        HazardClassifier(HazardThresholds(priority=priority))


def test_only_obstacles_carry_labels():
    assert HazardState(HazardKind.OBSTACLE_CLOSE, label="chair").label == "chair"
    with pytest.raises(ValueError):
        HazardState(HazardKind.STAIRCASE, label="chair")


# Stats and tilt that satisfy exactly one condition each
CONDITIONS = {
    HazardKind.OBSTACLE_CLOSE: ({"close": 900}, None),
    HazardKind.TILT_TOO_HIGH: ({}, -0.2),
    HazardKind.STAIRCASE: ({"deep": 450, "upper": 5200, "lower": 4000}, None),
    HazardKind.DEEP_DROP_OFF: ({"deep": 450, "upper": 4600, "lower": 4500}, None),
    HazardKind.TILT_TOO_LOW: ({}, -0.9),
}
DEFAULT_ORDER = list(CONDITIONS)
EXCLUSIVE = [
    {HazardKind.STAIRCASE, HazardKind.DEEP_DROP_OFF},
    {HazardKind.TILT_TOO_HIGH, HazardKind.TILT_TOO_LOW},
]
PAIRS = [
    (higher, lower)
    for i, higher in enumerate(DEFAULT_ORDER)
    for lower in DEFAULT_ORDER[i + 1:]
    if {higher, lower} not in EXCLUSIVE
]


@pytest.mark.parametrize("kind", DEFAULT_ORDER)
def test_each_condition_alone(kind):
    fields, tilt = CONDITIONS[kind]
    assert HazardClassifier().classify(stats(**fields), LEVEL if tilt is None else tilt).kind is kind


@pytest.mark.parametrize("higher,lower", PAIRS, ids=lambda kind: kind.name)
def test_default_priority_for_every_pair(higher, lower):
    fields = {**CONDITIONS[lower][0], **CONDITIONS[higher][0]}
    tilt = CONDITIONS[higher][1] or CONDITIONS[lower][1] or LEVEL

    assert HazardClassifier().classify(stats(**fields), tilt).kind is higher


def test_obstacle_outranks_drop_off_and_staircase():
    classifier = HazardClassifier()
    assert classifier.classify(stats(close=900, deep=900), LEVEL).kind is HazardKind.OBSTACLE_CLOSE
    assert classifier.classify(stats(close=600, deep=450, upper=5200, lower=4000), LEVEL).kind is HazardKind.OBSTACLE_CLOSE


def test_condition_table_follows_default_priority():
    assert DEFAULT_ORDER == HazardThresholds().priority
