"""
Pricing domain module
"""

from .models import PriceRecord, RawPriceEntry, utc_midnight
from .views import (
    LEVEL_LOW,
    LEVEL_MEDIUM,
    LEVEL_HIGH,
    LEVEL_VERY_HIGH,
    NO_DATA_TIP,
    calculate_dashboard_stats,
    period_start,
    classify_level,
    build_hourly_prices,
    absolute_price_level,
    build_recommendations,
    build_price_update
)

__all__ = [
    'PriceRecord',
    'RawPriceEntry',
    'utc_midnight',
    'LEVEL_LOW',
    'LEVEL_MEDIUM',
    'LEVEL_HIGH',
    'LEVEL_VERY_HIGH',
    'NO_DATA_TIP',
    'calculate_dashboard_stats',
    'period_start',
    'classify_level',
    'build_hourly_prices',
    'absolute_price_level',
    'build_recommendations',
    'build_price_update'
]
