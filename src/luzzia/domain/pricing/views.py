"""
Derived price views
===================

Pure functions over ``PriceRecord`` collections:
- Dashboard stats (current / next hour, change, savings vs fixed tariff)
- Hourly series bucketed into quartile levels for a period
- Heuristic recommendations and a daily tip
- Absolute price level for push updates

No store access happens here; callers fetch the records first.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, Any, List, Optional, Sequence

from luzzia.core.exceptions import NoDataAvailable
from luzzia.domain.pricing.models import PriceRecord, utc_midnight

# Price levels, cheapest first
LEVEL_LOW = "bajo"
LEVEL_MEDIUM = "medio"
LEVEL_HIGH = "alto"
LEVEL_VERY_HIGH = "muy-alto"

PERIOD_DAYS = {
    "today": 0,
    "week": 7,
    "month": 30,
}

DEFAULT_FIXED_TARIFF = 0.20
DEFAULT_LEVEL_THRESHOLDS = (0.10, 0.15, 0.20)

# Recommendation thresholds relative to the day's average
IDEAL_RATIO = 0.8
AVOID_RATIO = 1.2

NO_DATA_TIP = "No hay datos de precios disponibles para generar recomendaciones."


def _find_hour(records: Sequence[PriceRecord], hour: int) -> Optional[PriceRecord]:
    return next((r for r in records if r.hour == hour), None)


def _average(records: Sequence[PriceRecord]) -> float:
    return sum(r.price for r in records) / len(records)


# =================================================================
# DASHBOARD
# =================================================================

def calculate_dashboard_stats(
    records: Sequence[PriceRecord],
    current_hour: int,
    fixed_tariff: float = DEFAULT_FIXED_TARIFF,
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Compute dashboard figures for a day's price series.

    When the series has no row for the current (or next) hour, the first
    (or second) record stands in for it, which keeps fallback and partial
    days usable.

    ``monthly_savings`` compares the day's average with a constant fixed
    tariff: ``(fixed - avg) / fixed * 100``.

    Args:
        records: One day's price records, sorted by hour
        current_hour: Local hour of day (0-23)
        fixed_tariff: Reference tariff in €/kWh
        now: Timestamp reported as ``last_updated`` (defaults to utcnow)

    Raises:
        NoDataAvailable: If ``records`` is empty
    """
    if not records:
        raise NoDataAvailable("no price records for the requested day")

    current = _find_hour(records, current_hour) or records[0]
    upcoming = _find_hour(records, current_hour + 1)
    if upcoming is None and len(records) > 1:
        upcoming = records[1]

    current_price = current.price
    next_hour_price = upcoming.price if upcoming else 0.0

    if next_hour_price > 0 and current_price != 0:
        change = (next_hour_price - current_price) / current_price * 100
    else:
        change = 0.0

    average = _average(records)
    monthly_savings = (fixed_tariff - average) / fixed_tariff * 100

    now = now or datetime.now(timezone.utc)
    return {
        "current_price": current_price,
        "next_hour_price": next_hour_price,
        "price_change_percentage": round(change, 2),
        "monthly_savings": round(monthly_savings, 2),
        "comparison_type": "tarifa fija",
        "last_updated": now.isoformat(),
        "is_fallback": any(r.is_fallback for r in records),
    }


# =================================================================
# HOURLY / LEVELED PRICES
# =================================================================

def period_start(period: str, today: datetime) -> datetime:
    """
    UTC-midnight start boundary of a period.

    Raises:
        ValueError: Unknown period
    """
    if period not in PERIOD_DAYS:
        raise ValueError(f"Unknown period '{period}', expected one of {sorted(PERIOD_DAYS)}")
    return utc_midnight(today) - timedelta(days=PERIOD_DAYS[period])


def classify_level(price: float, min_price: float, max_price: float) -> str:
    """
    Bucket a price into a quartile of the [min, max] range.

    Boundaries are inclusive on the upper side of each bucket.
    """
    quartile = (max_price - min_price) / 4
    if price <= min_price + quartile:
        return LEVEL_LOW
    if price <= min_price + 2 * quartile:
        return LEVEL_MEDIUM
    if price <= min_price + 3 * quartile:
        return LEVEL_HIGH
    return LEVEL_VERY_HIGH


def build_hourly_prices(records: Sequence[PriceRecord]) -> Dict[str, Any]:
    """
    Hourly series with quartile levels plus period average / min / max.

    Empty input yields an empty series with zeroed figures.
    """
    if not records:
        return {"prices": [], "average": 0, "min": 0, "max": 0}

    prices = [r.price for r in records]
    min_price = min(prices)
    max_price = max(prices)

    series = [
        {
            "timestamp": r.starts_at.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "hour": f"{r.hour:02d}",
            "price": r.price,
            "level": classify_level(r.price, min_price, max_price),
            "currency": "EUR",
        }
        for r in records
    ]

    return {
        "prices": series,
        "average": round(sum(prices) / len(prices), 3),
        "min": round(min_price, 3),
        "max": round(max_price, 3),
    }


def absolute_price_level(
    price: float,
    thresholds: Sequence[float] = DEFAULT_LEVEL_THRESHOLDS
) -> str:
    """Level against fixed €/kWh thresholds (low, medium, high)."""
    low, medium, high = thresholds
    if price < low:
        return LEVEL_LOW
    if price < medium:
        return LEVEL_MEDIUM
    if price < high:
        return LEVEL_HIGH
    return LEVEL_VERY_HIGH


# =================================================================
# RECOMMENDATIONS
# =================================================================

def _clamp_percentage(value: float) -> int:
    return int(round(min(max(value, 0.0), 100.0)))


def build_recommendations(
    records: Sequence[PriceRecord],
    current_hour: int
) -> Dict[str, Any]:
    """
    Heuristic appliance recommendations for today's series.

    - ideal: current price at or below 80% of the day's average
    - avoid: current price at or above 120% of the day's average
    - schedule: the day's cheapest hour is still ahead

    Always returns a ``daily_tip``; empty input gets a fixed no-data tip.
    """
    if not records:
        return {"recommendations": [], "daily_tip": NO_DATA_TIP}

    average = _average(records)
    current = _find_hour(records, current_hour) or records[0]
    cheapest = min(records, key=lambda r: r.price)
    most_expensive = max(records, key=lambda r: r.price)

    recommendations: List[Dict[str, Any]] = []

    if average > 0 and current.price <= average * IDEAL_RATIO:
        savings = _clamp_percentage((average - current.price) / average * 100)
        recommendations.append({
            "type": "ideal",
            "title": "Momento ideal",
            "description": "Pon la lavadora ahora, el precio está por debajo de la media del día",
            "time_range": "Próximas 2 horas",
            "percentage": f"{savings}%",
            "appliance": "lavadora",
            "savings_percentage": savings,
        })
    elif average > 0 and current.price >= average * AVOID_RATIO:
        savings = _clamp_percentage((current.price - average) / current.price * 100)
        recommendations.append({
            "type": "avoid",
            "title": "Evita consumos altos",
            "description": "El precio actual está muy por encima de la media, retrasa el horno y la secadora",
            "time_range": f"{current.hour:02d}:00 - {(current.hour + 1) % 24:02d}:00",
            "percentage": f"+{savings}%",
            "appliance": "horno",
            "savings_percentage": savings,
        })

    if cheapest.hour > current.hour and current.price > 0:
        savings = _clamp_percentage((current.price - cheapest.price) / current.price * 100)
        recommendations.append({
            "type": "schedule",
            "title": "Programa el lavavajillas",
            "description": f"La hora más barata de hoy será a las {cheapest.hour:02d}:00",
            "time_range": f"{cheapest.hour:02d}:00 - {(cheapest.hour + 1) % 24:02d}:00",
            "percentage": f"{savings}%",
            "appliance": "lavavajillas",
            "savings_percentage": savings,
        })

    daily_tip = (
        f"Los precios más baratos serán a las {cheapest.hour:02d}:00 "
        f"({cheapest.price:.3f} €/kWh) y los más caros a las "
        f"{most_expensive.hour:02d}:00 ({most_expensive.price:.3f} €/kWh)"
    )

    return {"recommendations": recommendations, "daily_tip": daily_tip}


# =================================================================
# PUSH UPDATES
# =================================================================

def build_price_update(
    dashboard_stats: Dict[str, Any],
    thresholds: Sequence[float] = DEFAULT_LEVEL_THRESHOLDS
) -> Dict[str, Any]:
    """Payload polled by the push-notification transport."""
    current_price = dashboard_stats["current_price"]
    return {
        "type": "price_update",
        "data": {
            "current_price": current_price,
            "timestamp": dashboard_stats["last_updated"],
            "level": absolute_price_level(current_price, thresholds),
        },
    }
