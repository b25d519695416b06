"""
Unit Tests for Price Repository
================================

Coverage:
- ✅ Point layout (measurement, fields, time = date + hour)
- ✅ Upsert identity: same (date, hour) -> same series and timestamp
- ✅ Partial batch saves (invalid and failing records skipped)
- ✅ Row -> record mapping and ordering
- ✅ Hour counts, latest stored day lookup, daily stats
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from luzzia.core.exceptions import InfluxDBWriteError
from luzzia.domain.pricing import PriceRecord, RawPriceEntry
from luzzia.infrastructure.influxdb import InfluxDBClientWrapper
from luzzia.services.price_repository import PriceRepository, SaveResult

DAY = datetime(2025, 10, 6, tzinfo=timezone.utc)
DAY_EPOCH = 1759708800


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def mock_influxdb():
    client = MagicMock(spec=InfluxDBClientWrapper)
    client.write_points.return_value = 1
    client.query.return_value = []
    return client


@pytest.fixture
def repository(mock_influxdb):
    return PriceRepository(mock_influxdb, bucket="prices", measurement="electricity_prices")


def written_lines(mock_influxdb):
    lines = []
    for call in mock_influxdb.write_points.call_args_list:
        lines.extend(point.to_line_protocol() for point in call.args[0])
    return lines


def price_row(hour, price, is_fallback=False, day=DAY):
    return {
        "_time": day.replace(hour=hour),
        "price_eur_kwh": price,
        "is_fallback": is_fallback,
        "written_at": "2025-10-05T20:15:03+00:00",
    }


# =============================================================================
# WRITES
# =============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
class TestPriceRepositoryWrites:

    async def test_upsert_writes_point_at_date_plus_hour(self, repository, mock_influxdb):
        stored = await repository.upsert(PriceRecord(date=DAY, hour=5, price=0.09))

        line = written_lines(mock_influxdb)[0]
        assert line.startswith("electricity_prices ")
        assert "price_eur_kwh=0.09" in line
        assert "is_fallback=false" in line
        assert line.endswith(f" {DAY_EPOCH + 5 * 3600}")
        assert stored.timestamp is not None
        assert mock_influxdb.write_points.call_args.kwargs["bucket"] == "prices"

    async def test_upsert_same_key_targets_same_point(self, repository, mock_influxdb):
        """Second write for (date, hour) lands on the same series and time."""
        await repository.upsert(PriceRecord(date=DAY, hour=0, price=0.09))
        await repository.upsert(PriceRecord(date=DAY, hour=0, price=0.11, is_fallback=True))

        first, second = written_lines(mock_influxdb)
        first_series, first_time = first.split(" ")[0], first.split(" ")[-1]
        second_series, second_time = second.split(" ")[0], second.split(" ")[-1]

        assert first_series == second_series == "electricity_prices"
        assert first_time == second_time == str(DAY_EPOCH)
        assert "price_eur_kwh=0.11" in second

    async def test_save_prices_skips_invalid_records(self, repository, mock_influxdb):
        records = [PriceRecord(date=DAY, hour=h, price=0.1) for h in range(3)]
        records.append({"date": DAY, "hour": 24, "price": 0.1})
        records.append({"date": DAY, "hour": 4, "price": "not a number"})

        result = await repository.save_prices(records)

        assert result == SaveResult(requested=5, saved=3, failed=2)
        assert result.partial
        assert mock_influxdb.write_points.call_count == 3

    async def test_save_prices_continues_after_write_failure(self, repository, mock_influxdb):
        mock_influxdb.write_points.side_effect = [
            1, InfluxDBWriteError("electricity_prices", "timeout"), 1
        ]
        entries = [RawPriceEntry(date=DAY, hour=h, price=0.1) for h in range(3)]

        result = await repository.save_prices(entries)

        assert result.saved == 2
        assert result.failed == 1

    async def test_save_prices_empty_batch(self, repository, mock_influxdb):
        result = await repository.save_prices([])

        assert result == SaveResult(requested=0, saved=0, failed=0)
        assert not result.partial
        mock_influxdb.write_points.assert_not_called()


# =============================================================================
# READS
# =============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
class TestPriceRepositoryReads:

    async def test_find_for_date_maps_and_sorts(self, repository, mock_influxdb):
        mock_influxdb.query.return_value = [
            price_row(2, 0.12),
            price_row(0, 0.10, is_fallback=True),
            price_row(1, 0.11),
        ]

        records = await repository.find_for_date(datetime(2025, 10, 6, 15, 30, tzinfo=timezone.utc))

        assert [r.hour for r in records] == [0, 1, 2]
        assert records[0].is_fallback is True
        assert records[0].date == DAY
        assert records[0].timestamp == datetime(2025, 10, 5, 20, 15, 3, tzinfo=timezone.utc)

        query = mock_influxdb.query.call_args.args[0]
        assert "start: 2025-10-06T00:00:00Z" in query
        assert "stop: 2025-10-07T00:00:00Z" in query

    async def test_count_hours_for_date(self, repository, mock_influxdb):
        mock_influxdb.query.return_value = [{"_value": 24}]

        assert await repository.count_hours_for_date(DAY) == 24

    async def test_count_hours_for_empty_day(self, repository, mock_influxdb):
        assert await repository.count_hours_for_date(DAY) == 0

    async def test_find_latest_day_before(self, repository, mock_influxdb):
        previous = datetime(2025, 10, 4, tzinfo=timezone.utc)
        mock_influxdb.query.side_effect = [
            [{"_time": previous.replace(hour=23), "_value": 0.1}],
            [price_row(h, 0.1, day=previous) for h in range(24)],
        ]

        records = await repository.find_latest_day_before(DAY, lookback_days=7)

        assert len(records) == 24
        assert all(r.date == previous for r in records)
        latest_query = mock_influxdb.query.call_args_list[0].args[0]
        assert "start: 2025-09-29T00:00:00Z" in latest_query
        assert "stop: 2025-10-06T00:00:00Z" in latest_query

    async def test_find_latest_day_before_without_history(self, repository, mock_influxdb):
        assert await repository.find_latest_day_before(DAY) == []

    async def test_aggregate_daily_stats(self, repository, mock_influxdb):
        yesterday = datetime(2025, 10, 5, tzinfo=timezone.utc)
        mock_influxdb.query.return_value = [
            {"result": "mean", "_time": yesterday, "_value": 0.12},
            {"result": "min", "_time": yesterday, "_value": 0.08},
            {"result": "max", "_time": yesterday, "_value": 0.19},
            {"result": "mean", "_time": DAY, "_value": 0.15},
            {"result": "min", "_time": DAY, "_value": 0.10},
            {"result": "max", "_time": DAY, "_value": 0.22},
        ]

        stats = await repository.aggregate_daily_stats(yesterday, DAY)

        assert stats == [
            {"day": "2025-10-06", "avg": 0.15, "min": 0.10, "max": 0.22},
            {"day": "2025-10-05", "avg": 0.12, "min": 0.08, "max": 0.19},
        ]
