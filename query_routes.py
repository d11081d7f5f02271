import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from auth import get_current_user
from auth_providers import UserRecord
from database import get_db
from document_service import get_owned_document, load_document_text
from document_utils import offset, pagination
from gemini_client import GeminiGateway, get_ai_gateway
from models import Document, DocumentQuery
from query_engine import QueryEngine
from saga import Saga
from storage import Bucket, get_storage
from validation import QueryRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/query", tags=["query"])


def _save_query(db: Session, **fields) -> DocumentQuery:
    record = DocumentQuery(**fields)
    try:
        db.add(record)
        db.commit()
        db.refresh(record)
    except SQLAlchemyError:
        db.rollback()
        raise
    return record


@router.post("/document/{document_id}")
def query_document(
    document_id: str,
    request: QueryRequest,
    current_user: UserRecord = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: Bucket = Depends(get_storage),
    gateway: GeminiGateway = Depends(get_ai_gateway),
):
    document = get_owned_document(db, document_id, current_user.id)
    text = load_document_text(document, storage, purpose="querying")

    result = QueryEngine(gateway).answer(
        text,
        request.question,
        context=request.context,
        language=request.language,
        title=document.title,
    )

    saga = Saga("document query")
    saved = saga.best_effort(
        "save query",
        lambda: _save_query(
            db,
            document_id=document.id,
            user_id=current_user.id,
            question=request.question,
            answer=result["answer"],
            confidence=result["confidence"],
            context=request.context,
            language=request.language,
        ),
    )
    saga.complete()

    return {
        "success": True,
        "message": "Query processed successfully",
        "data": {
            "document_id": document.id,
            "document_title": document.title,
            "question": request.question,
            "answer": result["answer"],
            "confidence": result["confidence"],
            "sources": result["sources"],
            "key_points": result["key_points"],
            "follow_up_questions": result["follow_up_questions"],
            "summary": result["summary"],
            "context": request.context,
            "language": request.language,
            "query_id": saved.id if saved else None,
            "timestamp": datetime.utcnow().isoformat(),
        },
    }


@router.get("/document/{document_id}/history")
def get_document_query_history(
    document_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: UserRecord = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    query = db.query(DocumentQuery).filter(
        DocumentQuery.document_id == document_id,
        DocumentQuery.user_id == current_user.id,
    )
    total = query.count()
    queries = query.order_by(DocumentQuery.created_at.desc()).offset(offset(page, limit)).limit(limit).all()

    return {
        "success": True,
        "data": {
            "document_id": document_id,
            "queries": [q.to_dict() for q in queries],
            "pagination": pagination(page, limit, total),
        },
    }


@router.get("/all")
def get_all_user_queries(
    documentId: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: UserRecord = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    query = (
        db.query(DocumentQuery, Document.title, Document.file_name)
        .join(Document, Document.id == DocumentQuery.document_id)
        .filter(DocumentQuery.user_id == current_user.id)
    )
    if documentId:
        query = query.filter(DocumentQuery.document_id == documentId)

    total = query.count()
    rows = query.order_by(DocumentQuery.created_at.desc()).offset(offset(page, limit)).limit(limit).all()

    return {
        "success": True,
        "data": {
            "queries": [
                {**q.to_dict(), "documents": {"title": title, "file_name": file_name}}
                for q, title, file_name in rows
            ],
            "pagination": pagination(page, limit, total),
            "filters": {"document_id": documentId},
        },
    }
