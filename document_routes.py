import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import or_
from sqlalchemy.orm import Session

from auth import get_current_user
from auth_providers import UserRecord
from database import get_db
from document_analytics import get_document_analytics, get_document_performance, get_document_trends
from document_service import get_owned_document
from document_utils import count_by, format_file_size, offset, pagination, parse_timestamp
from models import DOCUMENT_CATEGORIES, UPLOAD_STATUSES, Document

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/documents", tags=["documents"])

STATUS_MESSAGES = {
    "pending": "Document is queued for processing",
    "processing": "Document is being processed",
    "completed": "Document is ready for use",
    "failed": "Document processing failed",
}


def _with_size(doc: Document) -> dict:
    data = doc.to_dict()
    data["file_size_formatted"] = format_file_size(doc.file_size)
    data["is_accessible"] = doc.upload_status == "completed"
    return data


def _parse_date(value: str, end_of_day: bool = False) -> datetime:
    try:
        parsed = parse_timestamp(value)
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail={"message": f"Invalid date: {value}", "example": "?start_date=2024-01-01&end_date=2024-01-31"},
        )
    if end_of_day and len(value) == 10:
        parsed += timedelta(days=1, microseconds=-1)
    return parsed


@router.get("/metadata/{document_id}")
def get_document_metadata(
    document_id: str,
    current_user: UserRecord = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    document = get_owned_document(db, document_id, current_user.id)
    return {"success": True, "data": {"document": _with_size(document)}}


@router.get("/status/{document_id}")
def get_document_status(
    document_id: str,
    current_user: UserRecord = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    document = get_owned_document(db, document_id, current_user.id)
    return {
        "success": True,
        "data": {
            "document_id": document.id,
            "title": document.title,
            "status": document.upload_status,
            "status_message": STATUS_MESSAGES.get(document.upload_status, "Unknown status"),
            "created_at": document.created_at.isoformat() if document.created_at else None,
            "updated_at": document.updated_at.isoformat() if document.updated_at else None,
            "is_ready": document.upload_status == "completed",
        },
    }


@router.get("/category/{category}")
def get_documents_by_category(
    category: str,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: UserRecord = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if category not in DOCUMENT_CATEGORIES:
        raise HTTPException(
            status_code=400,
            detail={"message": "Invalid category", "valid_categories": DOCUMENT_CATEGORIES},
        )

    query = db.query(Document).filter(Document.user_id == current_user.id, Document.category == category)
    total = query.count()
    rows = query.order_by(Document.created_at.desc()).offset(offset(page, limit)).limit(limit).all()

    return {
        "success": True,
        "data": {
            "category": category,
            "documents": [_with_size(doc) for doc in rows],
            "pagination": pagination(page, limit, total),
        },
    }


@router.get("/statistics")
def get_document_statistics(
    current_user: UserRecord = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    rows = (
        db.query(Document.upload_status, Document.category, Document.file_size, Document.created_at)
        .filter(Document.user_id == current_user.id)
        .all()
    )
    total_size = sum(row.file_size or 0 for row in rows)
    week_ago = datetime.utcnow() - timedelta(days=7)
    status_counts = count_by(rows, "upload_status")

    return {
        "success": True,
        "data": {
            "total_documents": len(rows),
            "total_size": format_file_size(total_size),
            "recent_uploads": sum(1 for row in rows if row.created_at and row.created_at >= week_ago),
            "status_breakdown": {name: status_counts.get(name, 0) for name in UPLOAD_STATUSES},
            "category_breakdown": count_by(rows, "category"),
            "average_file_size": format_file_size(int(total_size / len(rows))) if rows else "0 Bytes",
        },
    }


@router.get("/search")
def search_documents(
    q: Optional[str] = None,
    category: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: UserRecord = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    term = (q or "").strip()
    if len(term) < 2:
        raise HTTPException(status_code=400, detail="Search term must be at least 2 characters long")

    pattern = f"%{term}%"
    query = db.query(Document).filter(
        Document.user_id == current_user.id,
        or_(
            Document.title.ilike(pattern),
            Document.description.ilike(pattern),
            Document.file_name.ilike(pattern),
        ),
    )
    if category:
        query = query.filter(Document.category == category)

    total = query.count()
    rows = query.order_by(Document.created_at.desc()).offset(offset(page, limit)).limit(limit).all()

    return {
        "success": True,
        "data": {
            "search_term": term,
            "documents": [_with_size(doc) for doc in rows],
            "pagination": pagination(page, limit, total),
            "filters": {"category": category},
        },
    }


@router.get("/analytics")
def get_document_analytics_period(
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    current_user: UserRecord = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not start_date or not end_date:
        raise HTTPException(
            status_code=400,
            detail={
                "message": "Start date and end date are required",
                "example": "?start_date=2024-01-01&end_date=2024-01-31",
            },
        )

    analytics = get_document_analytics(
        db,
        current_user.id,
        _parse_date(start_date),
        _parse_date(end_date, end_of_day=True),
    )
    return {"success": True, "data": analytics}


@router.get("/trends")
def get_document_trends_data(
    days: int = Query(30, ge=1, le=365),
    current_user: UserRecord = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return {"success": True, "data": get_document_trends(db, current_user.id, days)}


@router.get("/performance")
def get_document_performance_data(
    current_user: UserRecord = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return {"success": True, "data": get_document_performance(db, current_user.id)}
