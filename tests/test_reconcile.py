"""Tests for device and timeline reconciliation."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import pytest
from prometheus_client import CollectorRegistry

from surehub_exporter.models import Device, EventType, TimelineItem
from surehub_exporter.reconcile import reconcile_device, reconcile_timeline_item
from surehub_exporter.registry import MetricRegistry

pytestmark = pytest.mark.unit

FEEDER = {"device_id": "1", "device_name": "Feeder"}


def _sample(registry: CollectorRegistry, name: str, labels: dict[str, str]) -> float | None:
    return registry.get_sample_value(f"surehub_{name}", labels)


def _item(**overrides: Any) -> TimelineItem:
    payload: dict[str, Any] = {
        "id": 105,
        "type": 22,
        "devices": [{"id": 1, "name": "Feeder"}],
        "weights": [{"device_id": 1, "frames": [{"change": -3.5}]}],
        "pets": [{"id": 9, "name": "Rex"}],
    }
    payload.update(overrides)
    return TimelineItem.model_validate(payload)


# -----------------------------------------------------------------------------
# Device reconciliation
# -----------------------------------------------------------------------------


def test_device_battery_and_online(
    metric_registry: MetricRegistry, collector_registry: CollectorRegistry
) -> None:
    device = Device.model_validate(
        {"id": 1, "name": "Feeder", "status": {"battery": 72, "online": True}}
    )

    updates = reconcile_device(metric_registry, device)

    assert updates == 2
    assert _sample(collector_registry, "device_battery", FEEDER) == 72
    assert _sample(collector_registry, "device_online", FEEDER) == 1


def test_device_offline_sets_zero(
    metric_registry: MetricRegistry, collector_registry: CollectorRegistry
) -> None:
    device = Device.model_validate({"id": 1, "name": "Feeder", "status": {"online": False}})

    reconcile_device(metric_registry, device)

    assert _sample(collector_registry, "device_online", FEEDER) == 0
    assert _sample(collector_registry, "device_battery", FEEDER) is None


def test_device_timestamps_are_unix_seconds(
    metric_registry: MetricRegistry, collector_registry: CollectorRegistry
) -> None:
    device = Device.model_validate(
        {
            "id": 1,
            "name": "Feeder",
            "last_activity_at": "2024-02-15T12:00:00+00:00",
            "last_new_event_at": "2024-02-15T14:00:00+02:00",
        }
    )

    reconcile_device(metric_registry, device)

    expected = datetime(2024, 2, 15, 12, 0, tzinfo=UTC).timestamp()
    assert _sample(collector_registry, "device_last_activity_at_seconds", FEEDER) == expected
    assert _sample(collector_registry, "device_last_event_at_seconds", FEEDER) == expected


def test_device_naive_timestamp_is_treated_as_utc(
    metric_registry: MetricRegistry, collector_registry: CollectorRegistry
) -> None:
    device = Device.model_validate(
        {"id": 1, "name": "Feeder", "last_activity_at": "2024-02-15T12:00:00"}
    )

    reconcile_device(metric_registry, device)

    expected = datetime(2024, 2, 15, 12, 0, tzinfo=UTC).timestamp()
    assert _sample(collector_registry, "device_last_activity_at_seconds", FEEDER) == expected


def test_device_without_optional_fields_updates_nothing(
    metric_registry: MetricRegistry, collector_registry: CollectorRegistry
) -> None:
    device = Device.model_validate({"id": 1, "name": "Feeder"})

    updates = reconcile_device(metric_registry, device)

    assert updates == 0
    assert list(metric_registry.collect()) == []


@pytest.mark.parametrize(
    "status",
    [
        "online",
        ["battery", 50],
        {"battery": "72", "online": "true"},
        {"battery": True, "online": 1},
        {"unrelated": 1},
    ],
)
def test_device_unusable_status_values_are_ignored(
    metric_registry: MetricRegistry, status: Any
) -> None:
    device = Device.model_validate({"id": 1, "name": "Feeder", "status": status})

    assert reconcile_device(metric_registry, device) == 0


def test_device_without_name_uses_placeholder(
    metric_registry: MetricRegistry, collector_registry: CollectorRegistry
) -> None:
    device = Device.model_validate({"id": 7, "status": {"battery": 10.5}})

    reconcile_device(metric_registry, device)

    labels = {"device_id": "7", "device_name": "unnamed"}
    assert _sample(collector_registry, "device_battery", labels) == 10.5


def test_device_gauges_overwrite_on_each_poll(
    metric_registry: MetricRegistry, collector_registry: CollectorRegistry
) -> None:
    reconcile_device(
        metric_registry,
        Device.model_validate({"id": 1, "name": "Feeder", "status": {"battery": 80}}),
    )
    reconcile_device(
        metric_registry,
        Device.model_validate({"id": 1, "name": "Feeder", "status": {"battery": 79}}),
    )

    assert _sample(collector_registry, "device_battery", FEEDER) == 79


# -----------------------------------------------------------------------------
# Timeline reconciliation
# -----------------------------------------------------------------------------


def test_timeline_item_with_pet(
    metric_registry: MetricRegistry, collector_registry: CollectorRegistry
) -> None:
    updates = reconcile_timeline_item(metric_registry, _item())

    assert updates == 1
    labels = {**FEEDER, "event_type": "EAT", "pet_id": "9", "pet_name": "Rex"}
    assert _sample(collector_registry, "weight_change_total", labels) == -3.5


def test_timeline_item_without_pet_has_no_pet_labels(
    metric_registry: MetricRegistry, collector_registry: CollectorRegistry
) -> None:
    reconcile_timeline_item(
        metric_registry,
        _item(type=21, pets=[], weights=[{"device_id": 1, "frames": [{"change": 40}]}]),
    )

    labels = {**FEEDER, "event_type": "FOOD_FILLED"}
    assert _sample(collector_registry, "weight_change_total", labels) == 40


def test_timeline_only_first_pet_is_attributed(
    metric_registry: MetricRegistry, collector_registry: CollectorRegistry
) -> None:
    reconcile_timeline_item(
        metric_registry,
        _item(pets=[{"id": 9, "name": "Rex"}, {"id": 10, "name": "Fido"}]),
    )

    rex = {**FEEDER, "event_type": "EAT", "pet_id": "9", "pet_name": "Rex"}
    fido = {**FEEDER, "event_type": "EAT", "pet_id": "10", "pet_name": "Fido"}
    assert _sample(collector_registry, "weight_change_total", rex) == -3.5
    assert _sample(collector_registry, "weight_change_total", fido) is None


def test_timeline_zero_change_is_suppressed(metric_registry: MetricRegistry) -> None:
    item = _item(weights=[{"device_id": 1, "frames": [{"change": 0}, {"change": None}, {}]}])

    assert reconcile_timeline_item(metric_registry, item) == 0
    assert list(metric_registry.collect()) == []


def test_timeline_multiple_frames_accumulate(
    metric_registry: MetricRegistry, collector_registry: CollectorRegistry
) -> None:
    item = _item(
        pets=[],
        weights=[{"device_id": 1, "frames": [{"change": -2}, {"change": 0}, {"change": -1.25}]}],
    )

    assert reconcile_timeline_item(metric_registry, item) == 2
    labels = {**FEEDER, "event_type": "EAT"}
    assert _sample(collector_registry, "weight_change_total", labels) == -3.25


def test_timeline_unknown_device_uses_placeholder_labels(
    metric_registry: MetricRegistry, collector_registry: CollectorRegistry
) -> None:
    item = _item(pets=[], weights=[{"device_id": 99, "frames": [{"change": 5}]}])

    reconcile_timeline_item(metric_registry, item)

    labels = {"device_id": "0", "device_name": "unnamed", "event_type": "EAT"}
    assert _sample(collector_registry, "weight_change_total", labels) == 5


def test_timeline_unmapped_event_type_is_empty_label(
    metric_registry: MetricRegistry, collector_registry: CollectorRegistry
) -> None:
    reconcile_timeline_item(metric_registry, _item(type=999, pets=[]))

    labels = {**FEEDER, "event_type": ""}
    assert _sample(collector_registry, "weight_change_total", labels) == -3.5


def test_timeline_null_lists_are_tolerated(metric_registry: MetricRegistry) -> None:
    item = TimelineItem.model_validate(
        {"id": 5, "type": 22, "devices": None, "weights": None, "pets": None}
    )

    assert reconcile_timeline_item(metric_registry, item) == 0


def test_timeline_null_frames_are_tolerated(
    metric_registry: MetricRegistry, collector_registry: CollectorRegistry
) -> None:
    item = _item(
        pets=[],
        weights=[
            {"device_id": 1, "frames": None},
            {"device_id": 1, "frames": [{"change": -2}]},
        ],
    )

    assert item.weights[0].frames == []
    assert reconcile_timeline_item(metric_registry, item) == 1
    labels = {**FEEDER, "event_type": "EAT"}
    assert _sample(collector_registry, "weight_change_total", labels) == -2


@pytest.mark.parametrize(
    ("code", "label"),
    [
        (0, "UNKNOWN"),
        (21, "FOOD_FILLED"),
        (22, "EAT"),
        (24, "FEEDER_TARE"),
        (23, ""),
        (None, "UNKNOWN"),
    ],
)
def test_event_type_labels(code: int | None, label: str) -> None:
    assert EventType.label_for(code) == label
