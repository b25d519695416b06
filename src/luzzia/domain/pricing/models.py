"""
Price domain models
===================

``RawPriceEntry`` is the normalized output of a provider transform.
``PriceRecord`` is the canonical stored unit, unique per (date, hour).
"""

import math
from dataclasses import dataclass
from datetime import date as date_type, datetime, time, timezone, timedelta
from typing import Optional, Union

from pydantic import BaseModel, Field, field_validator


def utc_midnight(value: Union[date_type, datetime]) -> datetime:
    """
    Normalize a calendar day to its UTC midnight.

    Aware datetimes keep their own calendar day (no conversion to UTC first),
    naive ones are taken as-is.
    """
    if isinstance(value, datetime):
        value = value.date()
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


@dataclass(frozen=True)
class RawPriceEntry:
    """Provider-independent price triple."""

    date: datetime  # UTC midnight
    hour: int
    price: float  # €/kWh


class PriceRecord(BaseModel):
    """Hourly electricity price for one calendar day."""

    date: datetime
    hour: int = Field(ge=0, le=23)
    price: float
    is_fallback: bool = False
    timestamp: Optional[datetime] = None

    @field_validator("date", mode="before")
    @classmethod
    def _normalize_date(cls, value):
        if isinstance(value, (date_type, datetime)):
            return utc_midnight(value)
        return value

    @field_validator("date")
    @classmethod
    def _force_midnight(cls, value: datetime) -> datetime:
        return utc_midnight(value)

    @field_validator("price")
    @classmethod
    def _finite_price(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("price must be a finite number")
        return value

    @property
    def key(self) -> tuple:
        """Uniqueness key in the price store."""
        return (self.date.date(), self.hour)

    @property
    def starts_at(self) -> datetime:
        """UTC instant of the hour this price applies to."""
        return self.date + timedelta(hours=self.hour)

    @classmethod
    def from_entry(cls, entry: RawPriceEntry, is_fallback: bool = False) -> "PriceRecord":
        return cls(
            date=entry.date,
            hour=entry.hour,
            price=entry.price,
            is_fallback=is_fallback
        )
