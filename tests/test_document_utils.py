import asyncio
from datetime import datetime

from document_utils import (
    average,
    count_by,
    fan_out,
    format_file_size,
    pagination,
    percentage,
    period_days,
    parse_timestamp,
    rating_distribution,
    time_series,
)


def test_format_file_size():
    assert format_file_size(0) == "0 Bytes"
    assert format_file_size(None) == "0 Bytes"
    assert format_file_size(512) == "512 Bytes"
    assert format_file_size(1536) == "1.5 KB"
    assert format_file_size(1024 * 1024) == "1 MB"
    assert format_file_size(5 * 1024 ** 3) == "5 GB"


def test_pagination():
    assert pagination(1, 10, 0) == {"page": 1, "limit": 10, "total": 0, "totalPages": 0}
    assert pagination(2, 10, 25)["totalPages"] == 3
    assert pagination(1, 5, 5)["totalPages"] == 1


def test_aggregations():
    rows = [
        {"status": "completed", "size": 10},
        {"status": "completed", "size": 5},
        {"status": "failed", "size": None},
    ]
    assert count_by(rows, "status") == {"completed": 2, "failed": 1}
    assert count_by([1, 2, 3, 4], lambda n: n % 2) == {1: 2, 0: 2}


def test_parse_timestamp_normalises_to_naive_utc():
    assert parse_timestamp("2024-03-01") == datetime(2024, 3, 1)
    assert parse_timestamp("2024-03-01T10:30:00Z") == datetime(2024, 3, 1, 10, 30)
    assert parse_timestamp("2024-03-01T10:30:00.123Z") == datetime(2024, 3, 1, 10, 30, 0, 123000)
    assert parse_timestamp("2024-03-01T12:30:00+02:00") == datetime(2024, 3, 1, 10, 30)


def test_average_and_percentage():
    assert average([]) == 0
    assert average([4, 5, None]) == 4.5
    assert average([1, 2, 2]) == 1.67
    assert percentage(1, 0) == 0
    assert percentage(1, 3) == 33.33


def test_rating_distribution_always_has_five_buckets():
    assert rating_distribution([5, 5, 1, 7]) == {1: 1, 2: 0, 3: 0, 4: 0, 5: 2}


def test_period_days():
    assert period_days("7d") == 7
    assert period_days("24h") == 1
    assert period_days("12d") == 12
    assert period_days(None, 30) == 30
    assert period_days("forever", 30) == 30


def test_daily_time_series_keeps_empty_buckets():
    start = datetime(2024, 3, 1, 15, 30)
    end = datetime(2024, 3, 4, 9, 0)
    stamps = [datetime(2024, 3, 1, 18), datetime(2024, 3, 3, 1), datetime(2024, 3, 3, 23), datetime(2024, 2, 1)]

    series = time_series(stamps, start, end)

    assert series["labels"] == ["2024-03-01", "2024-03-02", "2024-03-03", "2024-03-04"]
    assert series["data"] == [1, 0, 2, 0]


def test_time_series_sums_values():
    start = datetime(2024, 3, 1, 10)
    end = datetime(2024, 3, 1, 12, 59)
    stamps = [datetime(2024, 3, 1, 10, 5), datetime(2024, 3, 1, 10, 50), datetime(2024, 3, 1, 12, 1)]

    series = time_series(stamps, start, end, "hourly", values=[100, 50, 25])

    assert series["labels"] == ["2024-03-01T10:00", "2024-03-01T11:00", "2024-03-01T12:00"]
    assert series["data"] == [150, 0, 25]


def test_weekly_buckets_start_on_monday():
    series = time_series([datetime(2024, 3, 6)], datetime(2024, 3, 6), datetime(2024, 3, 12), "weekly")
    assert series["labels"] == ["2024-03-04", "2024-03-11"]
    assert series["data"] == [1, 0]


def test_fan_out_isolates_failures():
    def boom():
        raise RuntimeError("section unavailable")

    results = asyncio.run(fan_out(ok=lambda: {"value": 1}, broken=boom))

    assert results == {"ok": {"value": 1}, "broken": {"error": "section unavailable"}}
