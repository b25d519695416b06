"""
Provider payload transforms
===========================

Map provider-specific JSON payloads to ``RawPriceEntry`` triples.

REE PVPC payload (``archives/70/download_json``)::

    {"PVPC": [{"Dia": "06/10/2025", "Hora": "00-01", "PCB": "90,00", ...}]}

- ``Dia`` is day/month/year, anchored at UTC midnight
- ``Hora`` is an "HH-HH+1" range, the first part is the hour
- ``PCB`` is €/MWh (decimal comma or point), divided by 1000 to get €/kWh

Malformed entries are dropped with a warning. A missing or empty top-level
price list raises ``InvalidProviderFormat``.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, List

from luzzia.core.exceptions import InvalidProviderFormat
from luzzia.domain.pricing.models import RawPriceEntry

logger = logging.getLogger(__name__)


def _parse_decimal(value: Any) -> float:
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        number = float(str(value).strip().replace(",", "."))
    if not math.isfinite(number):
        raise ValueError(f"non-finite number: {value!r}")
    return number


def _check_hour(hour: int) -> int:
    if not 0 <= hour <= 23:
        raise ValueError(f"hour out of range: {hour}")
    return hour


def _price_list(payload: Any, key: str, provider: str) -> List[Any]:
    if not isinstance(payload, dict):
        raise InvalidProviderFormat(provider, f"expected JSON object, got {type(payload).__name__}")
    items = payload.get(key)
    if not items:
        raise InvalidProviderFormat(provider, f"missing or empty '{key}' list")
    if not isinstance(items, list):
        raise InvalidProviderFormat(provider, f"'{key}' is not a list")
    return items


def transform_ree_pvpc(payload: Dict[str, Any]) -> List[RawPriceEntry]:
    """
    Normalize a REE PVPC payload.

    Example:
        >>> transform_ree_pvpc({"PVPC": [{"Dia": "06/10/2025", "Hora": "00-01", "PCB": "90.00"}]})
        [RawPriceEntry(date=datetime.datetime(2025, 10, 6, 0, 0, tzinfo=datetime.timezone.utc), hour=0, price=0.09)]
    """
    items = _price_list(payload, "PVPC", "REE")

    entries = []
    for item in items:
        try:
            day, month, year = item["Dia"].strip().split("/")
            entry_date = datetime(int(year), int(month), int(day), tzinfo=timezone.utc)
            hour = _check_hour(int(item["Hora"].split("-")[0]))
            price = _parse_decimal(item["PCB"]) / 1000
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            logger.warning(f"⚠️ Dropping malformed REE entry {item!r}: {e}")
            continue

        entries.append(RawPriceEntry(date=entry_date, hour=hour, price=price))

    if len(entries) < len(items):
        logger.warning(f"⚠️ REE payload: kept {len(entries)}/{len(items)} entries")

    return entries


def transform_alternative(payload: Dict[str, Any]) -> List[RawPriceEntry]:
    """
    Normalize the generic alternative provider payload.

    Expected shape::

        {"prices": [{"date": "2025-10-06", "hour": 0, "price": 0.09}]}

    Prices are already in €/kWh.
    """
    items = _price_list(payload, "prices", "ALTERNATIVE_API")

    entries = []
    for item in items:
        try:
            entry_date = datetime.strptime(str(item["date"])[:10], "%Y-%m-%d").replace(tzinfo=timezone.utc)
            hour = _check_hour(int(item["hour"]))
            price = _parse_decimal(item["price"])
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"⚠️ Dropping malformed alternative entry {item!r}: {e}")
            continue

        entries.append(RawPriceEntry(date=entry_date, hour=hour, price=price))

    return entries
