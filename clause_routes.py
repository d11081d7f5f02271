import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from auth import get_current_user
from auth_providers import UserRecord
from clause_engine import ClauseEngine, count_clauses
from database import get_db
from document_service import get_owned_document, load_document_text
from document_utils import count_by, offset, pagination, percentage
from gemini_client import GeminiGateway, get_ai_gateway
from models import Document, DocumentClause
from saga import Saga
from storage import Bucket, get_storage
from validation import ClauseAnalysisRequest, ClauseExtractionRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/clauses", tags=["clauses"])


def _save_extraction(db: Session, **fields) -> DocumentClause:
    record = DocumentClause(**fields)
    try:
        db.add(record)
        db.commit()
        db.refresh(record)
    except SQLAlchemyError:
        db.rollback()
        raise
    return record


def _matches(extracted: Optional[dict], term: str) -> bool:
    """Case-insensitive match against clause titles, text and summaries."""
    if not isinstance(extracted, dict):
        return False
    term = term.lower()
    candidates = [extracted.get("title"), extracted.get("text")]
    for clause in extracted.get("clauses") or []:
        if isinstance(clause, dict):
            candidates.extend([clause.get("title"), clause.get("text"), clause.get("summary")])
    return any(isinstance(value, str) and term in value.lower() for value in candidates)


@router.post("/extract/{document_id}")
def extract_clauses(
    document_id: str,
    request: ClauseExtractionRequest = ClauseExtractionRequest(),
    current_user: UserRecord = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: Bucket = Depends(get_storage),
    gateway: GeminiGateway = Depends(get_ai_gateway),
):
    document = get_owned_document(db, document_id, current_user.id)
    text = load_document_text(document, storage, purpose="processing")

    clause_types = request.clause_type_list()
    clauses = ClauseEngine(gateway).extract(text, clause_types, request.language)
    extraction_status = "failed" if "error" in clauses else "completed"

    saga = Saga("clause extraction")
    saved = saga.best_effort(
        "save extracted clauses",
        lambda: _save_extraction(
            db,
            document_id=document.id,
            user_id=current_user.id,
            clause_types=clause_types,
            language=request.language,
            extracted_data=clauses,
            extraction_status=extraction_status,
        ),
    )
    saga.complete()
    logger.info("Extracted %d clauses from document %s", count_clauses(clauses), document.id)

    return {
        "success": True,
        "message": "Clauses extracted successfully",
        "data": {
            "document_id": document.id,
            "document_title": document.title,
            "clause_id": saved.id if saved else None,
            "clauses": clauses,
            "extraction_metadata": {
                "clause_types": clause_types,
                "language": request.language,
                "total_clauses": count_clauses(clauses),
                "extraction_status": extraction_status,
                "extraction_date": datetime.utcnow().isoformat(),
            },
        },
    }


@router.get("/document/{document_id}")
def get_document_clauses(
    document_id: str,
    current_user: UserRecord = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    clauses = (
        db.query(DocumentClause)
        .filter(DocumentClause.document_id == document_id, DocumentClause.user_id == current_user.id)
        .order_by(DocumentClause.created_at.desc())
        .all()
    )
    return {
        "success": True,
        "data": {
            "document_id": document_id,
            "clauses": [clause.to_dict() for clause in clauses],
            "total_extractions": len(clauses),
        },
    }


@router.post("/analyze/{clause_id}")
def analyze_clause(
    clause_id: str,
    request: ClauseAnalysisRequest = ClauseAnalysisRequest(),
    current_user: UserRecord = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: GeminiGateway = Depends(get_ai_gateway),
):
    clause = (
        db.query(DocumentClause)
        .filter(DocumentClause.id == clause_id, DocumentClause.user_id == current_user.id)
        .first()
    )
    if clause is None:
        raise HTTPException(status_code=404, detail="Clause not found")

    analysis = ClauseEngine(gateway).analyze(clause.to_dict(), request.analysisType)

    return {
        "success": True,
        "message": "Clause analyzed successfully",
        "data": {
            "clause_id": clause.id,
            "analysis_type": request.analysisType,
            "analysis": analysis,
            "analyzed_at": datetime.utcnow().isoformat(),
        },
    }


@router.get("/search")
def search_clauses(
    q: Optional[str] = None,
    clauseType: Optional[str] = None,
    documentId: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: UserRecord = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    term = (q or "").strip()
    if len(term) < 2:
        raise HTTPException(status_code=400, detail="Search term must be at least 2 characters long")

    query = (
        db.query(DocumentClause, Document.title, Document.file_name)
        .join(Document, Document.id == DocumentClause.document_id)
        .filter(DocumentClause.user_id == current_user.id)
    )
    if documentId:
        query = query.filter(DocumentClause.document_id == documentId)

    matches = []
    for clause, title, file_name in query.order_by(DocumentClause.created_at.desc()).all():
        if clauseType and clauseType not in (clause.clause_types or []):
            continue
        if not _matches(clause.extracted_data, term):
            continue
        data = clause.to_dict()
        data["documents"] = {"title": title, "file_name": file_name}
        matches.append(data)

    start = offset(page, limit)
    return {
        "success": True,
        "data": {
            "search_term": term,
            "clauses": matches[start:start + limit],
            "pagination": pagination(page, limit, len(matches)),
            "filters": {"clause_type": clauseType, "document_id": documentId},
        },
    }


@router.get("/statistics")
def get_clause_statistics(
    current_user: UserRecord = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    rows = (
        db.query(DocumentClause.clause_types, DocumentClause.extraction_status)
        .filter(DocumentClause.user_id == current_user.id)
        .all()
    )

    type_counts = {}
    for row in rows:
        types = row.clause_types if isinstance(row.clause_types, list) else [row.clause_types]
        for clause_type in types:
            type_counts[clause_type] = type_counts.get(clause_type, 0) + 1
    status_counts = count_by(rows, "extraction_status")

    return {
        "success": True,
        "data": {
            "total_clauses": len(rows),
            "type_breakdown": type_counts,
            "status_breakdown": status_counts,
            "success_rate": round(percentage(status_counts.get("completed", 0), len(rows)), 1),
        },
    }
