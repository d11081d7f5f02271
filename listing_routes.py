import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import or_
from sqlalchemy.orm import Session

from auth import get_current_user
from auth_providers import UserRecord
from database import get_db
from document_utils import enrich_document, format_file_size, offset, pagination, percentage
from models import DOCUMENT_CATEGORIES, UPLOAD_STATUSES, Document

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/documents/all", tags=["documents"])


def _validation_error(message: str):
    return HTTPException(status_code=400, detail={"message": "Validation error", "errors": [message]})


@router.get("")
def get_all_documents(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    category: Optional[str] = None,
    search: Optional[str] = Query(None, min_length=1, max_length=100),
    current_user: UserRecord = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if category and category not in DOCUMENT_CATEGORIES:
        raise _validation_error(f"Category must be one of: {', '.join(DOCUMENT_CATEGORIES)}")

    query = db.query(Document).filter(Document.user_id == current_user.id)
    if category:
        query = query.filter(Document.category == category)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            Document.title.ilike(pattern),
            Document.description.ilike(pattern),
            Document.file_name.ilike(pattern),
        ))

    total = query.count()
    rows = query.order_by(Document.created_at.desc()).offset(offset(page, limit)).limit(limit).all()
    now = datetime.utcnow()
    documents = [enrich_document(doc, now) for doc in rows]

    return {
        "success": True,
        "data": {
            "documents": documents,
            "pagination": pagination(page, limit, total),
            "filters": {"category": category, "search": search},
            "summary": {
                "total_documents": total,
                "accessible_documents": sum(1 for doc in documents if doc["is_accessible"]),
                "queryable_documents": sum(1 for doc in documents if doc["can_query"]),
                "clause_extractable_documents": sum(1 for doc in documents if doc["can_extract_clauses"]),
            },
        },
    }


@router.get("/status/{upload_status}")
def get_documents_by_status(
    upload_status: str,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: UserRecord = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if upload_status not in UPLOAD_STATUSES:
        raise HTTPException(
            status_code=400,
            detail={"message": "Invalid status", "valid_statuses": UPLOAD_STATUSES},
        )

    query = db.query(Document).filter(
        Document.user_id == current_user.id,
        Document.upload_status == upload_status,
    )
    total = query.count()
    rows = query.order_by(Document.created_at.desc()).offset(offset(page, limit)).limit(limit).all()

    return {
        "success": True,
        "data": {
            "status": upload_status,
            "documents": [
                {**doc.to_dict(), "file_size_formatted": format_file_size(doc.file_size)}
                for doc in rows
            ],
            "pagination": pagination(page, limit, total),
        },
    }


@router.get("/recent")
def get_recent_documents(
    days: int = Query(7, ge=1, le=365),
    limit: int = Query(10, ge=1, le=100),
    current_user: UserRecord = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    now = datetime.utcnow()
    rows = (
        db.query(Document)
        .filter(Document.user_id == current_user.id, Document.created_at >= now - timedelta(days=days))
        .order_by(Document.created_at.desc())
        .limit(limit)
        .all()
    )
    documents = []
    for doc in rows:
        data = enrich_document(doc, now)
        data["days_ago"] = data.pop("days_since_upload")
        documents.append(data)

    return {
        "success": True,
        "data": {"period_days": days, "documents": documents, "total_found": len(documents)},
    }


@router.get("/categories")
def get_document_categories(
    current_user: UserRecord = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    rows = (
        db.query(Document.category, Document.file_size, Document.upload_status)
        .filter(Document.user_id == current_user.id)
        .all()
    )
    total_size = sum(size or 0 for _, size, _ in rows)

    stats = {}
    for category, size, upload_status in rows:
        entry = stats.setdefault(category, {
            "count": 0,
            "total_size": 0,
            "status_breakdown": {name: 0 for name in UPLOAD_STATUSES},
        })
        entry["count"] += 1
        entry["total_size"] += size or 0
        if upload_status in entry["status_breakdown"]:
            entry["status_breakdown"][upload_status] += 1

    categories = [
        {
            "category": category,
            "count": entry["count"],
            "total_size": entry["total_size"],
            "total_size_formatted": format_file_size(entry["total_size"]),
            "percentage_of_total": round(percentage(entry["total_size"], total_size), 1),
            "status_breakdown": entry["status_breakdown"],
        }
        for category, entry in stats.items()
    ]

    return {
        "success": True,
        "data": {
            "categories": categories,
            "total_documents": len(rows),
            "total_size_formatted": format_file_size(total_size),
        },
    }
