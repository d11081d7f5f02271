from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from document_utils import count_by, format_file_size, percentage, time_series
from models import Document

MB = 1024 * 1024


def _file_summary(doc: Document) -> dict:
    return {
        "id": doc.id,
        "title": doc.title,
        "file_name": doc.file_name,
        "size": doc.file_size,
        "size_formatted": format_file_size(doc.file_size),
    }


def get_document_analytics(db: Session, user_id: str, start: datetime, end: datetime) -> dict:
    documents = (
        db.query(Document)
        .filter(Document.user_id == user_id, Document.created_at >= start, Document.created_at <= end)
        .all()
    )

    total_size = sum(doc.file_size or 0 for doc in documents)
    average_size = total_size / len(documents) if documents else 0
    sized = [doc for doc in documents if doc.file_size]

    return {
        "total_documents": len(documents),
        "total_size": total_size,
        "total_size_formatted": format_file_size(total_size),
        "average_file_size": average_size,
        "average_file_size_formatted": format_file_size(int(average_size)),
        "status_breakdown": count_by(documents, "upload_status"),
        "category_breakdown": count_by(documents, "category"),
        "file_type_breakdown": count_by(documents, "file_type"),
        "daily_uploads": count_by(documents, lambda doc: doc.created_at.date().isoformat()),
        "largest_file": _file_summary(max(sized, key=lambda d: d.file_size)) if sized else None,
        "smallest_file": _file_summary(min(sized, key=lambda d: d.file_size)) if sized else None,
        "period": {"start_date": start.isoformat(), "end_date": end.isoformat()},
    }


def get_document_trends(db: Session, user_id: str, days: int = 30, now: Optional[datetime] = None) -> dict:
    """One entry per calendar day in the window, including days with no uploads."""
    end = now or datetime.utcnow()
    start = end - timedelta(days=days)
    documents = (
        db.query(Document)
        .filter(Document.user_id == user_id, Document.created_at >= start, Document.created_at <= end)
        .order_by(Document.created_at.asc())
        .all()
    )

    labels = time_series([], start, end)["labels"]
    daily = {
        label: {"date": label, "uploads": 0, "total_size": 0, "completed": 0, "failed": 0, "categories": {}}
        for label in labels
    }
    for doc in documents:
        day = daily.get(doc.created_at.date().isoformat())
        if day is None:
            continue
        day["uploads"] += 1
        day["total_size"] += doc.file_size or 0
        if doc.upload_status in ("completed", "failed"):
            day[doc.upload_status] += 1
        day["categories"][doc.category] = day["categories"].get(doc.category, 0) + 1

    trends = []
    for day in daily.values():
        day["total_size_formatted"] = format_file_size(day["total_size"])
        day["success_rate"] = round(percentage(day["completed"], day["uploads"]), 1)
        trends.append(day)

    return {
        "trends": trends,
        "summary": {
            "total_days": days,
            "total_uploads": len(documents),
            "average_daily_uploads": round(len(documents) / days, 2) if days else 0,
            "total_size": sum(doc.file_size or 0 for doc in documents),
        },
    }


def get_document_performance(db: Session, user_id: str) -> dict:
    documents = db.query(Document).filter(Document.user_id == user_id).all()

    completed = [doc for doc in documents if doc.upload_status == "completed"]
    processing_times = []
    for doc in completed:
        if doc.created_at and doc.updated_at:
            seconds = (doc.updated_at - doc.created_at).total_seconds()
            if seconds > 0:
                processing_times.append({
                    "file_type": doc.file_type,
                    "file_size": doc.file_size,
                    "processing_time": seconds,
                })

    sizes = {"small_files": 0, "medium_files": 0, "large_files": 0}
    for doc in documents:
        size_mb = (doc.file_size or 0) / MB
        if size_mb < 1:
            sizes["small_files"] += 1
        elif size_mb <= 10:
            sizes["medium_files"] += 1
        else:
            sizes["large_files"] += 1

    success_rate = percentage(len(completed), len(documents))
    average_time = (
        sum(p["processing_time"] for p in processing_times) / len(processing_times)
        if processing_times else 0
    )

    return {
        "total_documents": len(documents),
        "success_rate": success_rate,
        "success_rate_formatted": f"{success_rate:.1f}%",
        "average_processing_time": average_time,
        "average_processing_time_formatted": f"{average_time:.2f} seconds",
        "file_type_performance": count_by(documents, "file_type"),
        "size_performance": sizes,
        "processing_times": processing_times,
    }
