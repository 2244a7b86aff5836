"""
Contact Rules Model
Tenant-configurable rules for automated outreach
"""
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime, time
import pytz

from outreach_engine.core.config import ConfigManager


class ContactRules(BaseModel):
    """
    Tenant-configurable contact rules.

    Stored on the organizations table as JSONB in the contact_rules column.
    Defaults follow the common 8am-9pm local-time window for automated
    texts and calls.
    """

    # Contact window, evaluated in the lead's local time
    contact_window_start: str = Field(
        default="08:00",
        description="Earliest local time for automated contact (HH:MM format)"
    )
    contact_window_end: str = Field(
        default="21:00",
        description="Latest local time for automated contact (HH:MM format)"
    )
    timezone: str = Field(
        default="America/New_York",
        description="Fallback timezone when the lead has none"
    )
    allowed_days: List[int] = Field(
        default=[0, 1, 2, 3, 4, 5, 6],
        description="Days when automated contact is allowed (0=Monday, 6=Sunday)"
    )

    # Channel policy
    consent_required_channels: List[str] = Field(
        default=["sms", "call", "email"],
        description="Channels that need an active consent record"
    )
    quiet_hours_channels: List[str] = Field(
        default=["sms", "call"],
        description="Channels restricted to the contact window"
    )

    def resolve_timezone(self, lead_timezone: Optional[str] = None):
        """Lead timezone if valid, else the configured fallback, else UTC."""
        for name in (lead_timezone, self.timezone):
            if not name:
                continue
            try:
                return pytz.timezone(name)
            except pytz.exceptions.UnknownTimeZoneError:
                continue
        return pytz.UTC

    def is_within_contact_window(
        self,
        check_time: Optional[datetime] = None,
        lead_timezone: Optional[str] = None
    ) -> tuple[bool, str]:
        """
        Check if a time falls inside the contact window.

        Args:
            check_time: Time to check (default: now)
            lead_timezone: IANA timezone of the lead

        Returns:
            (is_allowed, reason)
        """
        tz = self.resolve_timezone(lead_timezone)

        if check_time is None:
            check_time = datetime.now(tz)
        elif check_time.tzinfo is None:
            check_time = pytz.UTC.localize(check_time).astimezone(tz)
        else:
            check_time = check_time.astimezone(tz)

        current_day = check_time.weekday()
        if current_day not in self.allowed_days:
            day_names = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
            return False, f"contact_not_allowed_on_{day_names[current_day]}"

        try:
            start_hour, start_min = map(int, self.contact_window_start.split(":"))
            end_hour, end_min = map(int, self.contact_window_end.split(":"))
        except ValueError:
            return False, "invalid_contact_window"

        start_time = time(start_hour, start_min)
        end_time = time(end_hour, end_min)
        current_time = check_time.time()

        if start_time <= current_time < end_time:
            return True, "within_contact_window"
        return False, (
            f"outside_contact_window_{self.contact_window_start}_{self.contact_window_end}"
            f"_{check_time.strftime('%H:%M')}_{tz.zone}"
        )

    @classmethod
    def default(cls) -> "ContactRules":
        """Create default rules, applying any YAML overrides."""
        overrides = ConfigManager().get("contact_rules") or {}
        return cls(**overrides)

    def to_dict(self) -> dict:
        """Convert to dictionary for database storage."""
        return self.model_dump()

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "ContactRules":
        """Create from dictionary (database load)."""
        if not data:
            return cls.default()
        return cls(**data)
