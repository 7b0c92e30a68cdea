"""Map fetched devices and timeline items onto metric series."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from surehub_exporter.models import Device, EventType, TimelineItem

if TYPE_CHECKING:
    from surehub_exporter.registry import MetricRegistry

logger = logging.getLogger(__name__)

UNNAMED = "unnamed"

DEVICE_LAST_ACTIVITY_AT = "device_last_activity_at_seconds"
DEVICE_LAST_EVENT_AT = "device_last_event_at_seconds"
DEVICE_BATTERY = "device_battery"
DEVICE_ONLINE = "device_online"
WEIGHT_CHANGE = "weight_change"


def _unix_seconds(value: datetime) -> float:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return float(int(value.timestamp()))


def device_labels(device: Device) -> dict[str, str]:
    return {
        "device_id": str(device.id or 0),
        "device_name": device.name if device.name is not None else UNNAMED,
    }


def reconcile_device(registry: MetricRegistry, device: Device) -> int:
    """Set the device gauges for every populated field.

    Returns the number of gauges updated. Missing fields are skipped
    independently of each other.
    """
    labels = device_labels(device)
    updates: list[tuple[str, float]] = []

    if device.last_activity_at is not None:
        updates.append((DEVICE_LAST_ACTIVITY_AT, _unix_seconds(device.last_activity_at)))
    if device.last_new_event_at is not None:
        updates.append((DEVICE_LAST_EVENT_AT, _unix_seconds(device.last_new_event_at)))
    if device.status is not None:
        if device.status.battery is not None:
            updates.append((DEVICE_BATTERY, device.status.battery))
        if device.status.online is not None:
            updates.append((DEVICE_ONLINE, 1.0 if device.status.online else 0.0))

    for name, value in updates:
        registry.ensure_gauge(name, labels).set(value)
    return len(updates)


def reconcile_timeline_item(registry: MetricRegistry, item: TimelineItem) -> int:
    """Add every non-zero bowl weight change of *item* to ``weight_change``.

    Devices are resolved against the item's own embedded device list; an
    unknown device id yields placeholder labels. Only the first pet listed
    on the item is attributed. Returns the number of counter updates.
    """
    devices_by_id = {device.id or 0: device for device in item.devices}
    event_type = EventType.label_for(item.type)
    first_pet = item.pets[0] if item.pets else None

    updates = 0
    for weight in item.weights:
        device = devices_by_id.get(weight.device_id or 0, Device())
        for frame in weight.frames:
            change = frame.change or 0.0
            if change == 0:
                continue

            labels = device_labels(device)
            labels["event_type"] = event_type
            if first_pet is not None:
                labels["pet_id"] = str(first_pet.id or 0)
                labels["pet_name"] = first_pet.name if first_pet.name is not None else UNNAMED

            registry.ensure_counter(WEIGHT_CHANGE, labels).add(change)
            updates += 1

    if updates:
        logger.debug(
            "Reconciled timeline item",
            extra={"timeline_id": item.id, "event_type": event_type, "updates": updates},
        )
    return updates
