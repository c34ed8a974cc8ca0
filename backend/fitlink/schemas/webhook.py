"""
Garmin push notification payloads.

Each element of a top-level list (`activities`, `dailies`, `sleeps`,
`deregistrations`) becomes one variant of `Notification`, selected by `kind`.
Numeric fields that are missing or not numbers validate to None.
"""

import math
from datetime import date
from typing import Annotated, Any, Literal, Union

from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

NOTIFICATION_KINDS = ("activities", "dailies", "sleeps", "deregistrations")


def coerce_float(v: Any) -> float | None:
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, (int, float)):
        f = float(v)
    elif isinstance(v, str):
        try:
            f = float(v.strip())
        except ValueError:
            return None
    else:
        return None
    return f if math.isfinite(f) else None


def coerce_int(v: Any) -> int | None:
    if isinstance(v, int) and not isinstance(v, bool):
        return v
    if isinstance(v, str) and v.strip().removeprefix("-").isdecimal():
        return int(v.strip())
    f = coerce_float(v)
    return int(f) if f is not None else None


def _to_str(v: Any) -> str | None:
    if v is None or isinstance(v, (dict, list)):
        return None
    s = str(v).strip()
    return s or None


def _to_date(v: Any) -> date | None:
    if isinstance(v, date):
        return v
    if not isinstance(v, str):
        return None
    try:
        return date.fromisoformat(v.strip()[:10])
    except ValueError:
        return None


LenientFloat = Annotated[float | None, BeforeValidator(coerce_float)]
LenientInt = Annotated[int | None, BeforeValidator(coerce_int)]
LenientStr = Annotated[str | None, BeforeValidator(_to_str)]
LenientDate = Annotated[date | None, BeforeValidator(_to_date)]


class _GarminElement(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    user_access_token: LenientStr = None
    user_id: LenientStr = None


class ActivityNotification(_GarminElement):
    kind: Literal["activities"] = "activities"
    callback_url: LenientStr = Field(None, validation_alias=AliasChoices("callbackURL", "callbackUrl", "callback_url"))
    summary_id: LenientStr = None
    activity_id: LenientInt = None
    activity_name: LenientStr = None
    activity_type: LenientStr = None
    start_time_in_seconds: LenientInt = None
    duration_in_seconds: LenientInt = None
    distance_in_meters: LenientFloat = None
    average_speed_in_meters_per_second: LenientFloat = None
    max_speed_in_meters_per_second: LenientFloat = None
    average_heart_rate_in_beats_per_minute: LenientFloat = None
    max_heart_rate_in_beats_per_minute: LenientFloat = None
    active_kilocalories: LenientFloat = None
    elevation_gain_in_meters: LenientFloat = Field(
        None,
        validation_alias=AliasChoices("totalElevationGainInMeters", "elevationGainInMeters", "elevation_gain_in_meters"),
    )

    @property
    def is_ping(self) -> bool:
        """Ping-mode element: data must be pulled from callbackURL."""
        return self.callback_url is not None and self.start_time_in_seconds is None

    @property
    def garmin_activity_id(self) -> int | None:
        if self.activity_id is not None:
            return self.activity_id
        return coerce_int(self.summary_id.split("-", 1)[0]) if self.summary_id else None


class DailyNotification(_GarminElement):
    kind: Literal["dailies"] = "dailies"
    summary_id: LenientStr = None
    calendar_date: LenientDate = None
    steps: LenientInt = None
    active_kilocalories: LenientInt = None
    resting_heart_rate_in_beats_per_minute: LenientInt = None
    average_stress_level: LenientInt = None


class SleepNotification(_GarminElement):
    kind: Literal["sleeps"] = "sleeps"
    summary_id: LenientStr = None
    calendar_date: LenientDate = None
    duration_in_seconds: LenientInt = None
    deep_sleep_duration_in_seconds: LenientInt = None
    light_sleep_duration_in_seconds: LenientInt = None
    rem_sleep_in_seconds: LenientInt = None
    awake_duration_in_seconds: LenientInt = None


class DeregistrationNotification(_GarminElement):
    kind: Literal["deregistrations"] = "deregistrations"


Notification = Annotated[
    Union[ActivityNotification, DailyNotification, SleepNotification, DeregistrationNotification],
    Field(discriminator="kind"),
]

notification_adapter: TypeAdapter[Notification] = TypeAdapter(Notification)


def parse_notification(kind: str, element: dict) -> Notification:
    """Validate one list element of a push payload as the variant named by `kind`."""
    return notification_adapter.validate_python({**element, "kind": kind})
