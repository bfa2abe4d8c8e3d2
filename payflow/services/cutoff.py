"""
Cutoff compliance evaluation.

Two configurable variants:
- deadline: the request carries its own deadline; WITHIN only if submitted strictly before it
- fixed-hour: one daily cutoff hour; WITHIN only if the local hour is strictly before it

Boundary rule for both: equality counts as MISSED.
"""
from datetime import datetime, timezone, tzinfo
from typing import Optional

from payflow.config import Settings
from payflow.errors import ValidationRefusal
from payflow.models.enums import CutoffMode, CutoffStatus


def _zone(name: str) -> tzinfo:
    if name.upper() == "UTC":
        return timezone.utc
    from zoneinfo import ZoneInfo
    return ZoneInfo(name)


class CutoffPolicy:
    """Evaluates whether a submission (or payment) is within its cutoff."""

    def __init__(
        self,
        mode: CutoffMode = CutoffMode.DEADLINE,
        cutoff_hour: int = 14,
        tz_name: str = "UTC"
    ):
        if not 0 <= cutoff_hour <= 24:
            raise ValueError(f"cutoff_hour must be within 0-24, got {cutoff_hour}")
        self.mode = CutoffMode(mode)
        self.cutoff_hour = cutoff_hour
        self.zone = _zone(tz_name)

    @classmethod
    def from_settings(cls, settings: Settings) -> "CutoffPolicy":
        return cls(
            mode=CutoffMode(settings.cutoff_mode),
            cutoff_hour=settings.cutoff_hour,
            tz_name=settings.cutoff_timezone,
        )

    @property
    def requires_deadline(self) -> bool:
        return self.mode == CutoffMode.DEADLINE

    def evaluate(self, instant: datetime, deadline: Optional[datetime] = None) -> CutoffStatus:
        """
        Evaluate ``instant`` (naive UTC) against the configured cutoff.

        In deadline mode a missing deadline is a validation error, not a pass.
        """
        if self.mode == CutoffMode.DEADLINE:
            if deadline is None:
                raise ValidationRefusal("A payment deadline is required to evaluate the cutoff.")
            return within_deadline(instant, deadline)
        return self._within_hour(instant)

    def _within_hour(self, instant: datetime) -> CutoffStatus:
        local = instant.replace(tzinfo=timezone.utc).astimezone(self.zone)
        if local.hour < self.cutoff_hour:
            return CutoffStatus.WITHIN
        return CutoffStatus.MISSED


def within_deadline(submitted_at: datetime, deadline: datetime) -> CutoffStatus:
    """WITHIN only when ``submitted_at`` is strictly earlier than ``deadline``."""
    if submitted_at < deadline:
        return CutoffStatus.WITHIN
    return CutoffStatus.MISSED
