"""
Routing configuration for owned phone numbers.

Voice and SMS routing are tagged unions: each variant carries exactly the
target id its ``type`` requires, and pydantic picks the variant from the
tag. Stored documents are loaded through ``load_phone_number`` so a
malformed or unknown variant surfaces as InvalidConfiguration.
"""

from datetime import datetime, time
from enum import IntEnum
from typing import Annotated, Any, Literal, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from ..core.errors import InvalidConfiguration

E164_PATTERN = r"^\+[1-9]\d{1,14}$"

Identifier = Annotated[str, Field(min_length=1)]


class Weekday(IntEnum):
    """Day of week, Sunday first (matches stored schedule documents)."""
    SUNDAY = 0
    MONDAY = 1
    TUESDAY = 2
    WEDNESDAY = 3
    THURSDAY = 4
    FRIDAY = 5
    SATURDAY = 6

    @classmethod
    def of(cls, moment: datetime) -> "Weekday":
        return cls(moment.isoweekday() % 7)


_DAY_NAMES = {day.name.lower(): day for day in Weekday}
_DAY_NAMES.update({day.name.lower()[:3]: day for day in Weekday})


class Schedule(BaseModel):
    """A set of days plus a local time window in one timezone."""

    days_of_week: list[Weekday] = Field(default_factory=list)
    start_time: time
    end_time: time
    timezone: str = "UTC"

    @field_validator("days_of_week", mode="before")
    @classmethod
    def parse_days(cls, v: Any) -> Any:
        if not isinstance(v, (list, tuple, set)):
            return v
        days = []
        for day in v:
            if isinstance(day, str) and day.strip().isdigit():
                days.append(int(day))
            elif isinstance(day, str):
                key = day.strip().lower()
                if key not in _DAY_NAMES:
                    raise ValueError(f"Unknown day of week: {day}")
                days.append(_DAY_NAMES[key])
            else:
                days.append(day)
        return days

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {v}")
        return v

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


# === Targets shared by failover and after-hours routing ===


class VoicemailTarget(BaseModel):
    type: Literal["voicemail"] = "voicemail"
    message: Optional[str] = None  # Greeting; falls back to the configured prompt


class UserTarget(BaseModel):
    type: Literal["user"] = "user"
    user_id: Identifier


class TeamTarget(BaseModel):
    type: Literal["team"] = "team"
    team_id: Identifier


class MessageTarget(BaseModel):
    type: Literal["message"] = "message"
    message: str = Field(min_length=1)


FailoverTarget = Annotated[
    Union[VoicemailTarget, UserTarget, TeamTarget],
    Field(discriminator="type"),
]

AfterHoursRouting = Annotated[
    Union[VoicemailTarget, UserTarget, TeamTarget, MessageTarget],
    Field(discriminator="type"),
]


class Failover(BaseModel):
    """Secondary target used only when the primary target is unreachable."""

    enabled: bool = False
    target: FailoverTarget = Field(default_factory=VoicemailTarget)


class BusinessHours(BaseModel):
    """Schedules gating primary routing, with a target for after hours."""

    enabled: bool = False
    schedules: list[Schedule] = Field(default_factory=list)
    after_hours: AfterHoursRouting = Field(default_factory=VoicemailTarget)


# === Voice routing variants ===


class _VoiceRoutingBase(BaseModel):
    failover: Failover = Field(default_factory=Failover)
    business_hours: BusinessHours = Field(default_factory=BusinessHours)


class UserRouting(_VoiceRoutingBase):
    type: Literal["user"] = "user"
    user_id: Identifier


class TeamRouting(_VoiceRoutingBase):
    type: Literal["team"] = "team"
    team_id: Identifier


class IVRRouting(_VoiceRoutingBase):
    type: Literal["ivr"] = "ivr"
    ivr_id: Identifier
    welcome_message: Optional[str] = None


RoutingConfig = Annotated[
    Union[UserRouting, TeamRouting, IVRRouting],
    Field(discriminator="type"),
]


# === SMS routing variants ===


class SMSUserRouting(BaseModel):
    type: Literal["user"] = "user"
    user_id: Identifier


class SMSTeamRouting(BaseModel):
    type: Literal["team"] = "team"
    team_id: Identifier


class SMSRoundRobinRouting(BaseModel):
    type: Literal["round-robin"] = "round-robin"
    team_id: Identifier


SMSRouting = Annotated[
    Union[SMSUserRouting, SMSTeamRouting, SMSRoundRobinRouting],
    Field(discriminator="type"),
]


class AutoReply(BaseModel):
    enabled: bool = False
    message: str = ""
    only_after_hours: bool = False

    @model_validator(mode="after")
    def require_message(self) -> "AutoReply":
        if self.enabled and not self.message.strip():
            raise ValueError("Auto-reply is enabled but has no message")
        return self


class SMSConfig(BaseModel):
    enabled: bool = True
    routing: Optional[SMSRouting] = None
    auto_reply: AutoReply = Field(default_factory=AutoReply)


# === Phone number ===


class PhoneNumber(BaseModel):
    """An owned number and everything needed to route events to it."""

    number: str = Field(pattern=E164_PATTERN)
    org_id: Identifier
    label: Optional[str] = None

    # Direct assignment (drives the permission gate)
    assigned_user_id: Optional[str] = None
    assigned_team_id: Optional[str] = None

    routing: Optional[RoutingConfig] = None
    sms: SMSConfig = Field(default_factory=SMSConfig)

    # Capabilities
    voice_enabled: bool = True
    sms_enabled: bool = True
    voicemail_enabled: bool = True
    recording_enabled: bool = False

    # Retirement keeps history resolvable but stops routing
    active: bool = True
    released_at: Optional[datetime] = None

    @property
    def business_hours(self) -> BusinessHours:
        if self.routing is None:
            return BusinessHours()
        return self.routing.business_hours

    def referenced_user_ids(self) -> set[str]:
        """Every user id any routing path of this number can reach."""
        ids = set()
        for target in self._targets():
            user_id = getattr(target, "user_id", None)
            if user_id:
                ids.add(user_id)
        return ids

    def referenced_team_ids(self) -> set[str]:
        """Every team id any routing path of this number can reach."""
        ids = set()
        for target in self._targets():
            team_id = getattr(target, "team_id", None)
            if team_id:
                ids.add(team_id)
        return ids

    def _targets(self) -> list[BaseModel]:
        targets: list[BaseModel] = []
        if self.routing is not None:
            targets.append(self.routing)
            targets.append(self.routing.failover.target)
            targets.append(self.routing.business_hours.after_hours)
        if self.sms.routing is not None:
            targets.append(self.sms.routing)
        return targets


def load_phone_number(data: dict[str, Any]) -> PhoneNumber:
    """Validate a stored phone number document."""
    try:
        return PhoneNumber.model_validate(data)
    except ValidationError as e:
        raise InvalidConfiguration(
            f"Invalid configuration for {data.get('number', '<unknown>')}: {e}"
        ) from e
