"""Platform-wide reports and administrative actions.

Report helpers take their own ``db`` session so the admin routes can run
them side by side through ``document_utils.fan_out``.
"""
import logging
import secrets
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from fastapi import HTTPException
from sqlalchemy import func
from sqlalchemy.orm import Session

import database
from auth_providers import AuthError, UserRecord
from document_service import delete_user_data
from document_utils import (
    average,
    count_by,
    format_file_size,
    percentage,
    rating_distribution,
    time_series,
)
from models import AdminLog, ClauseFeedback, Document, DocumentClause, DocumentFeedback, DocumentQuery, QueryFeedback
from storage import Bucket

logger = logging.getLogger(__name__)

VALID_ACTIONS = [
    "suspend_user",
    "activate_user",
    "delete_user",
    "reset_user_password",
    "cleanup_orphaned_files",
]
USER_SORT_FIELDS = ["created_at", "last_sign_in_at", "email"]
USER_STATUSES = ["active", "inactive", "suspended", "confirmed", "unconfirmed"]
# uploads store the object before inserting its row
ORPHAN_GRACE_PERIOD = timedelta(minutes=10)


def _in_window(moment: Optional[datetime], start: datetime, end: datetime) -> bool:
    return moment is not None and start <= moment <= end


def _count(db: Session, model, start: Optional[datetime] = None, end: Optional[datetime] = None) -> int:
    query = db.query(func.count(model.id))
    if start is not None:
        query = query.filter(model.created_at >= start, model.created_at <= end)
    return query.scalar() or 0


# ---- dashboard sections ----

def user_metrics(users: List[UserRecord], start: datetime, end: datetime) -> dict:
    return {
        "total_users": len(users),
        "new_users": sum(1 for user in users if _in_window(user.created_at, start, end)),
        "active_users": sum(1 for user in users if _in_window(user.last_sign_in_at, start, end)),
        "suspended_users": sum(1 for user in users if not user.is_active),
    }


def document_metrics(db: Session, start: datetime, end: datetime) -> dict:
    statuses = (
        db.query(Document.upload_status)
        .filter(Document.created_at >= start, Document.created_at <= end)
        .all()
    )
    return {
        "total_documents": _count(db, Document),
        "new_documents": len(statuses),
        "status_breakdown": count_by(statuses, "upload_status"),
    }


def query_metrics(db: Session, start: datetime, end: datetime) -> dict:
    return {
        "total_queries": _count(db, DocumentQuery),
        "new_queries": _count(db, DocumentQuery, start, end),
    }


def clause_metrics(db: Session, start: datetime, end: datetime) -> dict:
    return {
        "total_clauses": _count(db, DocumentClause),
        "new_clauses": _count(db, DocumentClause, start, end),
    }


def feedback_metrics(db: Session, start: datetime, end: datetime) -> dict:
    ratings = [
        rating for (rating,) in db.query(QueryFeedback.rating)
        .filter(QueryFeedback.created_at >= start, QueryFeedback.created_at <= end)
        .all()
    ]
    return {
        "total_feedback": _count(db, QueryFeedback),
        "new_feedback": len(ratings),
        "average_rating": average(ratings),
    }


def storage_metrics(db: Session) -> dict:
    total_files, total_size = db.query(func.count(Document.id), func.coalesce(func.sum(Document.file_size), 0)).one()
    average_size = total_size / total_files if total_files else 0
    return {
        "total_storage_bytes": total_size,
        "total_storage_formatted": format_file_size(total_size),
        "total_files": total_files,
        "average_file_size": average_size,
        "average_file_size_formatted": format_file_size(int(average_size)),
    }


def system_status(checks: Dict[str, dict]) -> dict:
    """Collapse health probe results into per-service states."""
    states = {
        name: "healthy" if check.get("status") == "healthy" else "error"
        for name, check in checks.items()
    }
    states["overall"] = "healthy" if all(state == "healthy" for state in states.values()) else "degraded"
    return states


# ---- users ----

def user_statistics(db: Session, user_ids: Iterable[str]) -> Dict[str, dict]:
    user_ids = list(user_ids)
    if not user_ids:
        return {}

    def counts(model) -> Dict[str, int]:
        rows = db.query(model.user_id, func.count(model.id)).filter(model.user_id.in_(user_ids)).group_by(model.user_id)
        return dict(rows.all())

    documents, queries = counts(Document), counts(DocumentQuery)
    clauses, feedback = counts(DocumentClause), counts(QueryFeedback)
    return {
        user_id: {
            "total_documents": documents.get(user_id, 0),
            "total_queries": queries.get(user_id, 0),
            "total_clauses": clauses.get(user_id, 0),
            "total_feedback": feedback.get(user_id, 0),
        }
        for user_id in user_ids
    }


def describe_user(user: UserRecord) -> dict:
    data = user.to_dict()
    data["username"] = user.username or "N/A"
    data["full_name"] = user.full_name or "N/A"
    data["is_confirmed"] = user.email_confirmed_at is not None
    return data


def filter_users(users: List[UserRecord], status: Optional[str], search: Optional[str],
                 sort_by: str, sort_order: str) -> List[UserRecord]:
    if status == "active":
        users = [u for u in users if u.is_active and u.last_sign_in_at is not None]
    elif status == "inactive":
        users = [u for u in users if u.last_sign_in_at is None]
    elif status == "suspended":
        users = [u for u in users if not u.is_active]
    elif status == "confirmed":
        users = [u for u in users if u.email_confirmed_at is not None]
    elif status == "unconfirmed":
        users = [u for u in users if u.email_confirmed_at is None]

    if search:
        term = search.lower()
        users = [u for u in users if term in u.email.lower() or term in (u.username or "").lower()]

    # Users that never signed in sort last in either direction
    present = [u for u in users if getattr(u, sort_by) is not None]
    missing = [u for u in users if getattr(u, sort_by) is None]
    present.sort(key=lambda u: getattr(u, sort_by), reverse=sort_order != "asc")
    return present + missing


def last_activity(*groups: Iterable) -> Optional[dict]:
    latest = None
    for kind, rows in groups:
        for row in rows:
            if row.created_at and (latest is None or row.created_at > latest[1]):
                latest = (kind, row.created_at)
    if latest is None:
        return None
    return {"type": latest[0], "date": latest[1].isoformat()}


def user_details(db: Session, user: UserRecord) -> dict:
    documents = db.query(Document).filter(Document.user_id == user.id).order_by(Document.created_at.desc()).all()

    def recent(model, limit: int = 10):
        return db.query(model).filter(model.user_id == user.id).order_by(model.created_at.desc()).limit(limit).all()

    queries, clauses, feedback = recent(DocumentQuery), recent(DocumentClause), recent(QueryFeedback)
    stats = user_statistics(db, [user.id])[user.id]
    total_storage = sum(doc.file_size or 0 for doc in documents)

    return {
        "user": describe_user(user),
        "statistics": {
            **stats,
            "total_storage_bytes": total_storage,
            "total_storage_formatted": format_file_size(total_storage),
            "average_query_rating": average(item.rating for item in feedback),
            "last_activity": last_activity(
                ("document", documents), ("query", queries), ("clause", clauses), ("feedback", feedback),
            ),
        },
        "recent_activity": {
            "documents": [doc.to_dict() for doc in documents[:5]],
            "queries": [item.to_dict() for item in queries[:5]],
            "clauses": [item.to_dict() for item in clauses[:5]],
            "feedback": [item.to_dict() for item in feedback[:5]],
        },
    }


# ---- time series ----

def _timestamps(db: Session, column, start: datetime, end: datetime) -> List[datetime]:
    return [value for (value,) in db.query(column).filter(column >= start, column <= end).all()]


def user_growth(users: List[UserRecord], start: datetime, end: datetime, granularity: str) -> dict:
    return time_series([user.created_at for user in users], start, end, granularity)


def login_activity(users: List[UserRecord], start: datetime, end: datetime, granularity: str) -> dict:
    return time_series([user.last_sign_in_at for user in users], start, end, granularity)


def document_uploads(db: Session, start: datetime, end: datetime, granularity: str) -> dict:
    return time_series(_timestamps(db, Document.created_at, start, end), start, end, granularity)


def query_activity(db: Session, start: datetime, end: datetime, granularity: str) -> dict:
    return time_series(_timestamps(db, DocumentQuery.created_at, start, end), start, end, granularity)


def storage_usage(db: Session, start: datetime, end: datetime, granularity: str) -> dict:
    rows = (
        db.query(Document.created_at, Document.file_size)
        .filter(Document.created_at >= start, Document.created_at <= end)
        .all()
    )
    return time_series([r.created_at for r in rows], start, end, granularity, values=[r.file_size for r in rows])


def feedback_trends(db: Session, start: datetime, end: datetime, granularity: str) -> dict:
    return time_series(_timestamps(db, QueryFeedback.created_at, start, end), start, end, granularity)


def peak_usage_times(db: Session, start: datetime, end: datetime) -> dict:
    moments = _timestamps(db, DocumentQuery.created_at, start, end) + _timestamps(db, Document.created_at, start, end)
    hours = count_by(moments, lambda moment: moment.hour)
    data = [{"hour": hour, "count": hours.get(hour, 0)} for hour in range(24)]
    return {"data": sorted(data, key=lambda item: item["count"], reverse=True)[:5]}


# ---- file handling ----

def file_statistics(db: Session, start: datetime, end: datetime) -> dict:
    files = (
        db.query(Document.user_id, Document.file_type, Document.file_size, Document.upload_status)
        .filter(Document.created_at >= start, Document.created_at <= end)
        .all()
    )
    sizes = [row.file_size or 0 for row in files]
    positive = [size for size in sizes if size > 0]
    total = sum(sizes)
    mean = total / len(files) if files else 0

    by_user: Dict[str, int] = {}
    for row in files:
        by_user[row.user_id] = by_user.get(row.user_id, 0) + (row.file_size or 0)
    top_users = sorted(by_user.items(), key=lambda item: item[1], reverse=True)[:10]

    return {
        "file_statistics": {
            "total_files": len(files),
            "file_types": count_by(files, "file_type"),
            "upload_status": count_by(files, "upload_status"),
            "size_statistics": {
                "total_bytes": total,
                "total_formatted": format_file_size(total),
                "average_bytes": mean,
                "average_formatted": format_file_size(int(mean)),
                "largest_bytes": max(sizes, default=0),
                "largest_formatted": format_file_size(max(sizes, default=0)),
                "smallest_bytes": min(positive, default=0),
                "smallest_formatted": format_file_size(min(positive, default=0)),
            },
        },
        "top_users_by_storage": [
            {"user_id": user_id, "storage_bytes": size, "storage_formatted": format_file_size(size)}
            for user_id, size in top_users
        ],
    }


# ---- AI quality ----

def query_performance(db: Session, start: datetime, end: datetime) -> dict:
    confidences = [
        value for (value,) in db.query(DocumentQuery.confidence)
        .filter(DocumentQuery.created_at >= start, DocumentQuery.created_at <= end)
        .all()
    ]
    answered = [value for value in confidences if value is not None]
    return {
        "total_queries": len(confidences),
        "average_confidence": average(answered),
        "high_confidence_rate": percentage(sum(1 for value in answered if value >= 0.7), len(answered)),
    }


def clause_extraction_performance(db: Session, start: datetime, end: datetime) -> dict:
    statuses = (
        db.query(DocumentClause.extraction_status)
        .filter(DocumentClause.created_at >= start, DocumentClause.created_at <= end)
        .all()
    )
    completed = sum(1 for (state,) in statuses if state == "completed")
    return {
        "total_clauses": len(statuses),
        "completed_clauses": completed,
        "failed_clauses": len(statuses) - completed,
        "success_rate": percentage(completed, len(statuses)),
    }


def response_quality(db: Session, start: datetime, end: datetime) -> dict:
    ratings = [
        rating for (rating,) in db.query(QueryFeedback.rating)
        .filter(QueryFeedback.created_at >= start, QueryFeedback.created_at <= end)
        .all()
    ]
    return {
        "total_feedback": len(ratings),
        "average_rating": average(ratings),
        "rating_distribution": rating_distribution(ratings),
        "satisfaction_rate": percentage(sum(1 for rating in ratings if rating >= 4), len(ratings)),
    }


def ai_error_analysis(db: Session, start: datetime, end: datetime) -> dict:
    failed = (
        db.query(DocumentClause.extracted_data)
        .filter(
            DocumentClause.created_at >= start,
            DocumentClause.created_at <= end,
            DocumentClause.extraction_status == "failed",
        )
        .all()
    )
    errors = count_by(failed, lambda row: (row.extracted_data or {}).get("error", "Unknown error"))
    return {"error_types": list(errors.keys()), "error_counts": list(errors.values())}


def access_logs(db: Session, start: datetime, end: datetime, limit: int = 50) -> dict:
    logs = (
        db.query(AdminLog)
        .filter(AdminLog.created_at >= start, AdminLog.created_at <= end)
        .order_by(AdminLog.created_at.desc())
        .limit(limit)
        .all()
    )
    return {"logs": [log.to_dict() for log in logs]}


def system_snapshot(db: Session, users: List[UserRecord]) -> dict:
    """Live counts handed to the recommendation model."""
    week_ago = datetime.utcnow() - timedelta(days=7)
    failed = db.query(func.count(Document.id)).filter(Document.upload_status == "failed").scalar() or 0
    total_documents = _count(db, Document)
    return {
        "user_count": len(users),
        "document_count": total_documents,
        "query_count": _count(db, DocumentQuery),
        "clause_count": _count(db, DocumentClause),
        "feedback_count": _count(db, QueryFeedback) + _count(db, ClauseFeedback) + _count(db, DocumentFeedback),
        "failed_upload_rate": percentage(failed, total_documents),
        "weekly_uploads": _count(db, Document, week_ago, datetime.utcnow()),
        "storage": storage_metrics(db),
    }


# ---- actions ----

def _target(provider, target_id: Optional[str]) -> UserRecord:
    if not target_id:
        raise HTTPException(status_code=400, detail="targetId is required for this action")
    user = provider.get_user(target_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def suspend_user(provider, target_id: Optional[str]) -> dict:
    user = provider.update_user(_target(provider, target_id).id, is_active=False)
    return {"user": describe_user(user)}


def activate_user(provider, target_id: Optional[str]) -> dict:
    user = _target(provider, target_id)
    user = provider.update_user(
        user.id,
        is_active=True,
        email_confirmed_at=user.email_confirmed_at or datetime.utcnow(),
    )
    return {"user": describe_user(user)}


def delete_user(provider, db: Session, storage: Bucket, target_id: Optional[str]) -> dict:
    user = _target(provider, target_id)
    removed = delete_user_data(db, storage, user.id)
    provider.delete_user(user.id)
    return {"deleted_user": {"id": user.id, "email": user.email}, **removed}


def reset_user_password(provider, target_id: Optional[str]) -> dict:
    user = _target(provider, target_id)
    temporary_password = secrets.token_urlsafe(12)
    try:
        provider.set_password(user.id, temporary_password)
    except AuthError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"user_id": user.id, "temporary_password": temporary_password}


def cleanup_orphaned_files(db: Session, storage: Bucket, now: Optional[datetime] = None) -> dict:
    cutoff = (now or datetime.utcnow()) - ORPHAN_GRACE_PERIOD
    referenced = {path for (path,) in db.query(Document.file_path).all()}
    orphaned = [
        entry["key"]
        for entry in storage.list_objects()
        if entry["key"] not in referenced and (entry["updated_at"] is None or entry["updated_at"] < cutoff)
    ]
    removed = storage.remove(orphaned)
    logger.info("Removed %d orphaned storage objects", len(removed))
    return {"orphaned_files": len(orphaned), "removed_files": removed}


def perform_action(action: str, target_id: Optional[str], reason: Optional[str], admin: UserRecord,
                   provider, db: Session, storage: Bucket) -> dict:
    if action not in VALID_ACTIONS:
        raise HTTPException(status_code=400, detail={"message": "Invalid action", "valid_actions": VALID_ACTIONS})
    if target_id and target_id == admin.id and action in ("suspend_user", "delete_user"):
        raise HTTPException(status_code=400, detail="Administrators cannot perform this action on themselves")

    if action == "suspend_user":
        result = suspend_user(provider, target_id)
    elif action == "activate_user":
        result = activate_user(provider, target_id)
    elif action == "delete_user":
        result = delete_user(provider, db, storage, target_id)
    elif action == "reset_user_password":
        result = reset_user_password(provider, target_id)
    else:
        result = cleanup_orphaned_files(db, storage)

    logger.info("Admin %s performed %s on %s (%s)", admin.id, action, target_id or "-", reason or "no reason")
    return {"action": action, "target_id": target_id, "reason": reason, "admin_id": admin.id, **result}


def record_admin_log(**fields) -> None:
    """Persist one audit row in a session of its own."""
    with database.SessionLocal() as db:
        db.add(AdminLog(**fields))
        db.commit()
