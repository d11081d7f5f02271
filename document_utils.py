import asyncio
import logging
import math
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from starlette.concurrency import run_in_threadpool

import database
from validation import QUERYABLE_MIME_TYPES

logger = logging.getLogger(__name__)

SIZE_UNITS = ["Bytes", "KB", "MB", "GB"]

PERIOD_DAYS = {"24h": 1, "1d": 1, "7d": 7, "30d": 30, "90d": 90}

Key = Union[str, Callable[[Any], Any]]


def format_file_size(size: Optional[int]) -> str:
    """Human readable size with at most two decimals, e.g. ``1.5 KB``."""
    if not size:
        return "0 Bytes"
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(SIZE_UNITS) - 1:
        value /= 1024
        unit += 1
    return f"{round(value, 2):g} {SIZE_UNITS[unit]}"


def _getter(key: Key) -> Callable[[Any], Any]:
    if callable(key):
        return key
    return lambda row: row.get(key) if isinstance(row, dict) else getattr(row, key, None)


def count_by(rows: Iterable[Any], key: Key) -> Dict[Any, int]:
    get = _getter(key)
    counts: Dict[Any, int] = {}
    for row in rows:
        value = get(row)
        counts[value] = counts.get(value, 0) + 1
    return counts


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp into naive UTC, accepting a trailing ``Z``."""
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def average(values: Iterable[Optional[float]], digits: int = 2) -> float:
    present = [v for v in values if v is not None]
    if not present:
        return 0
    return round(sum(present) / len(present), digits)


def rating_distribution(ratings: Iterable[int]) -> Dict[int, int]:
    distribution = {score: 0 for score in range(1, 6)}
    for rating in ratings:
        if rating in distribution:
            distribution[rating] += 1
    return distribution


def percentage(part: float, whole: float) -> float:
    if not whole:
        return 0
    return round(part / whole * 100, 2)


def offset(page: int, limit: int) -> int:
    return (page - 1) * limit


def pagination(page: int, limit: int, total: int) -> dict:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": math.ceil(total / limit) if limit else 0,
    }


def days_since(moment: Optional[datetime], now: Optional[datetime] = None) -> int:
    if moment is None:
        return 0
    now = now or datetime.utcnow()
    return max((now - moment).days, 0)


def is_queryable(document) -> bool:
    return document.upload_status == "completed" and document.file_type in QUERYABLE_MIME_TYPES


def enrich_document(document, now: Optional[datetime] = None) -> dict:
    """Document row as a dict plus the derived fields every listing returns."""
    data = document.to_dict()
    queryable = is_queryable(document)
    data.update({
        "file_size_formatted": format_file_size(document.file_size),
        "is_accessible": document.upload_status == "completed",
        "can_query": queryable,
        "can_extract_clauses": queryable,
        "days_since_upload": days_since(document.created_at, now),
    })
    return data


def period_days(period: Optional[str], default: int = 30) -> int:
    if not period:
        return default
    if period in PERIOD_DAYS:
        return PERIOD_DAYS[period]
    if period.endswith("d") and period[:-1].isdigit():
        return int(period[:-1]) or default
    return default


def period_start(period: Optional[str], default: int = 30, now: Optional[datetime] = None) -> datetime:
    now = now or datetime.utcnow()
    return now - timedelta(days=period_days(period, default))


def _bucket(moment: datetime, granularity: str) -> datetime:
    if granularity == "hourly":
        return moment.replace(minute=0, second=0, microsecond=0)
    day = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    if granularity == "weekly":
        return day - timedelta(days=day.weekday())
    return day


def _step(granularity: str) -> timedelta:
    return {"hourly": timedelta(hours=1), "weekly": timedelta(weeks=1)}.get(granularity, timedelta(days=1))


def time_series(
    timestamps: Iterable[datetime],
    start: datetime,
    end: datetime,
    granularity: str = "daily",
    values: Optional[Iterable[float]] = None,
) -> dict:
    """Bucket timestamps into contiguous hourly, daily or weekly slots.

    With ``values`` each bucket sums the paired value instead of counting rows.
    Empty buckets are kept so the series can be charted directly.
    """
    buckets: "OrderedDict[datetime, float]" = OrderedDict()
    cursor, last = _bucket(start, granularity), _bucket(end, granularity)
    step = _step(granularity)
    while cursor <= last:
        buckets[cursor] = 0
        cursor += step

    paired = zip(timestamps, values) if values is not None else ((t, 1) for t in timestamps)
    for moment, amount in paired:
        if moment is None:
            continue
        slot = _bucket(moment, granularity)
        if slot in buckets:
            buckets[slot] += amount or 0

    label_format = "%Y-%m-%dT%H:00" if granularity == "hourly" else "%Y-%m-%d"
    return {
        "labels": [slot.strftime(label_format) for slot in buckets],
        "data": list(buckets.values()),
    }


def in_session(fn: Callable, *args, **kwargs) -> Callable[[], Any]:
    """Bind ``fn(db, ...)`` to a session of its own, opened when the call runs."""
    def call():
        db = database.SessionLocal()
        try:
            return fn(db, *args, **kwargs)
        finally:
            db.close()
    return call


async def fan_out(**calls: Callable[[], Any]) -> Dict[str, Any]:
    """Run independent blocking calls concurrently in the thread pool.

    A failing call does not cancel its siblings; its slot holds
    ``{"error": message}`` instead of a result.
    """
    async def run(name: str, call: Callable[[], Any]):
        try:
            return await run_in_threadpool(call)
        except Exception as e:
            logger.error("Report section %s failed: %s", name, e)
            return {"error": str(e)}

    results: List[Any] = await asyncio.gather(*(run(name, call) for name, call in calls.items()))
    return dict(zip(calls.keys(), results))
