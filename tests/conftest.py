"""
Pytest Configuration and Shared Fixtures
=========================================

Test environment is set before any ``luzzia`` import so settings never
read a developer's real configuration.
"""
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

import pytest

# Allow running the suite without an editable install
src_dir = Path(__file__).parent.parent / "src"
if src_dir.exists():
    sys.path.insert(0, str(src_dir))

# Set test environment variables BEFORE any imports
os.environ["ENVIRONMENT"] = "testing"
os.environ["LOG_LEVEL"] = "ERROR"
os.environ["INFLUXDB_TOKEN"] = "test-token"
os.environ["SCHEDULER_TIMEZONE"] = "Europe/Madrid"
os.environ["ALTERNATIVE_API_URL"] = ""

from luzzia.domain.pricing import PriceRecord, utc_midnight  # noqa: E402
from luzzia.services.price_repository import SaveResult  # noqa: E402

MADRID = ZoneInfo("Europe/Madrid")


# =============================================================================
# IN-MEMORY PRICE STORE
# =============================================================================

class FakePriceRepository:
    """
    In-memory stand-in for ``PriceRepository`` keyed by (date, hour).

    ``fail_hours`` makes upserts for those hours raise, to exercise the
    partial save policy.
    """

    def __init__(self):
        self.rows: Dict[Tuple, PriceRecord] = {}
        self.fail_hours = set()
        self.upsert_calls = 0

    async def upsert(self, record: PriceRecord) -> PriceRecord:
        from luzzia.core.exceptions import InfluxDBWriteError

        self.upsert_calls += 1
        if record.hour in self.fail_hours:
            raise InfluxDBWriteError("electricity_prices", "simulated failure")
        stored = record.model_copy(update={"timestamp": datetime.now(timezone.utc)})
        self.rows[record.key] = stored
        return stored

    async def save_prices(self, records) -> SaveResult:
        from luzzia.core.exceptions import LuzziaException
        from luzzia.services.price_repository import PriceRepository

        items = list(records)
        saved = 0
        for item in items:
            try:
                await self.upsert(PriceRepository._coerce(item))
                saved += 1
            except (LuzziaException, ValueError):
                pass
        return SaveResult(requested=len(items), saved=saved, failed=len(items) - saved)

    async def find_by_date_range(self, start, end) -> List[PriceRecord]:
        start, end = utc_midnight(start), utc_midnight(end)
        return sorted(
            (r for r in self.rows.values() if start <= r.date < end),
            key=lambda r: (r.date, r.hour)
        )

    async def find_for_date(self, day) -> List[PriceRecord]:
        start = utc_midnight(day)
        return await self.find_by_date_range(start, start + timedelta(days=1))

    async def count_hours_for_date(self, day) -> int:
        return len(await self.find_for_date(day))

    async def find_latest_day_before(self, before, lookback_days: int = 7) -> List[PriceRecord]:
        stop = utc_midnight(before)
        start = stop - timedelta(days=lookback_days)
        days = sorted({r.date for r in self.rows.values() if start <= r.date < stop})
        if not days:
            return []
        return await self.find_for_date(days[-1])

    async def aggregate_daily_stats(self, since, until=None):
        return []


def make_day(day: datetime, prices: Optional[List[float]] = None, is_fallback: bool = False) -> List[PriceRecord]:
    """24 hourly records for ``day`` (default prices 0.10 .. 0.33)."""
    prices = prices or [round(0.10 + h * 0.01, 2) for h in range(24)]
    return [
        PriceRecord(date=day, hour=h, price=p, is_fallback=is_fallback)
        for h, p in enumerate(prices)
    ]


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def fake_repository():
    return FakePriceRepository()


@pytest.fixture
def madrid_now():
    """Fixed local time: 2025-10-06 21:30 Europe/Madrid."""
    return datetime(2025, 10, 6, 21, 30, tzinfo=MADRID)


@pytest.fixture
def today_utc():
    return datetime(2025, 10, 6, tzinfo=timezone.utc)


@pytest.fixture
def sample_ree_payload():
    """REE PVPC payload with one day of 24 hourly prices."""
    return {
        "PVPC": [
            {
                "Dia": "06/10/2025",
                "Hora": f"{h:02d}-{(h + 1) % 24:02d}",
                "PCB": f"{90 + h},00",
                "CYM": "91,00",
            }
            for h in range(24)
        ]
    }


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow tests")
