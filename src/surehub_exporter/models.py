"""Typed views of the SureHub API payloads consumed by the exporter.

Only the fields the poller reads are modelled. Everything is optional with
empty defaults so that a sparse or partially populated payload validates
instead of failing the whole cycle.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EventType(enum.IntEnum):
    """Timeline event codes the exporter knows how to label."""

    UNKNOWN = 0
    FOOD_FILLED = 21
    EAT = 22
    FEEDER_TARE = 24

    @classmethod
    def label_for(cls, code: int | None) -> str:
        """Return the textual name for *code*, or ``""`` when unmapped."""
        if code is None:
            return cls.UNKNOWN.name
        try:
            return cls(code).name
        except ValueError:
            return ""


class _ApiModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class DeviceStatus(_ApiModel):
    """The two fields read from the free-form device ``status`` object."""

    battery: float | None = None
    online: bool | None = None

    @field_validator("battery", mode="before")
    @classmethod
    def _numeric_battery(cls, value: Any) -> float | None:
        if isinstance(value, bool) or not isinstance(value, int | float):
            return None
        return float(value)

    @field_validator("online", mode="before")
    @classmethod
    def _boolean_online(cls, value: Any) -> bool | None:
        return value if isinstance(value, bool) else None


class Device(_ApiModel):
    id: int | None = None
    name: str | None = None
    last_activity_at: datetime | None = None
    last_new_event_at: datetime | None = None
    status: DeviceStatus | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _status_mapping_only(cls, value: Any) -> Any:
        # status is untyped upstream; anything but a mapping carries no readings
        return value if isinstance(value, dict) else None


class Pet(_ApiModel):
    id: int | None = None
    name: str | None = None


class BowlFrame(_ApiModel):
    change: float | None = None


class WeightEntry(_ApiModel):
    device_id: int | None = None
    frames: list[BowlFrame] = Field(default_factory=list)

    @field_validator("frames", mode="before")
    @classmethod
    def _null_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class TimelineItem(_ApiModel):
    id: int | None = None
    type: int | None = None
    devices: list[Device] = Field(default_factory=list)
    weights: list[WeightEntry] = Field(default_factory=list)
    pets: list[Pet] = Field(default_factory=list)

    @field_validator("devices", "weights", "pets", mode="before")
    @classmethod
    def _null_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class LoginData(_ApiModel):
    token: str = ""


class LoginResponse(_ApiModel):
    data: LoginData = Field(default_factory=LoginData)


class DeviceListResponse(_ApiModel):
    data: list[Device] = Field(default_factory=list)

    @field_validator("data", mode="before")
    @classmethod
    def _null_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class TimelineResponse(_ApiModel):
    data: list[TimelineItem] = Field(default_factory=list)

    @field_validator("data", mode="before")
    @classmethod
    def _null_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value
