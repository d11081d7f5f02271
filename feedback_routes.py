import logging
from datetime import datetime, timedelta
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from auth import get_current_user
from auth_providers import UserRecord
from database import get_db
from document_service import get_owned_document
from document_utils import average, rating_distribution
from feedback_engine import FeedbackEngine
from gemini_client import GeminiGateway, get_ai_gateway
from models import ClauseFeedback, DocumentClause, DocumentFeedback, DocumentQuery, QueryFeedback
from validation import ClauseFeedbackRequest, DocumentFeedbackRequest, QueryFeedbackRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/feedback", tags=["feedback"])

FEEDBACK_MODELS = {
    "queries": QueryFeedback,
    "clauses": ClauseFeedback,
    "documents": DocumentFeedback,
}


def _save(db: Session, record):
    try:
        db.add(record)
        db.commit()
        db.refresh(record)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Failed to save feedback: %s", e)
        raise HTTPException(status_code=500, detail={"message": "Failed to save feedback", "error": str(e)})
    return record


def feedback_metrics(rows: List) -> dict:
    if not rows:
        return {"total": 0, "average_rating": 0, "rating_distribution": {}, "trend": "stable"}
    return {
        "total": len(rows),
        "average_rating": average(row.rating for row in rows),
        "rating_distribution": rating_distribution(row.rating for row in rows),
        "trend": "stable",
    }


def clause_feedback_metrics(rows: List) -> dict:
    metrics = feedback_metrics(rows)
    if rows:
        for field in ("accuracy", "relevance", "completeness"):
            metrics[f"{field}_average"] = round(sum(getattr(row, field) or 0 for row in rows) / len(rows), 2)
    return metrics


@router.post("/query/{query_id}")
def submit_query_feedback(
    query_id: str,
    request: QueryFeedbackRequest,
    current_user: UserRecord = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: GeminiGateway = Depends(get_ai_gateway),
):
    query = (
        db.query(DocumentQuery)
        .filter(DocumentQuery.id == query_id, DocumentQuery.user_id == current_user.id)
        .first()
    )
    if query is None:
        raise HTTPException(status_code=404, detail="Query not found")

    record = _save(db, QueryFeedback(
        query_id=query.id,
        user_id=current_user.id,
        rating=request.rating,
        feedback=request.feedback,
        feedback_type=request.feedbackType,
    ))
    analysis = FeedbackEngine(gateway).analyze_feedback(
        request.feedback,
        request.rating,
        f"Query: {query.question}\nAnswer: {query.answer}",
    )

    return {
        "success": True,
        "message": "Feedback submitted successfully",
        "data": {
            "feedback_id": record.id,
            "query_id": query.id,
            "rating": record.rating,
            "feedback": record.feedback,
            "feedback_type": record.feedback_type,
            "ai_analysis": analysis,
            "submitted_at": record.created_at.isoformat(),
        },
    }


@router.post("/clause/{clause_id}")
def submit_clause_feedback(
    clause_id: str,
    request: ClauseFeedbackRequest,
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

    record = _save(db, ClauseFeedback(
        clause_id=clause.id,
        user_id=current_user.id,
        rating=request.rating,
        feedback=request.feedback,
        accuracy=request.accuracy,
        relevance=request.relevance,
        completeness=request.completeness,
    ))
    analysis = None
    if record.feedback:
        analysis = FeedbackEngine(gateway).analyze_feedback(
            record.feedback,
            record.rating,
            f"Clause extraction for document {clause.document_id}",
        )

    return {
        "success": True,
        "message": "Clause feedback submitted successfully",
        "data": {
            "feedback_id": record.id,
            "clause_id": clause.id,
            "rating": record.rating,
            "feedback": record.feedback,
            "metrics": {
                "accuracy": record.accuracy,
                "relevance": record.relevance,
                "completeness": record.completeness,
            },
            "ai_analysis": analysis,
            "submitted_at": record.created_at.isoformat(),
        },
    }


@router.post("/document/{document_id}")
def submit_document_feedback(
    document_id: str,
    request: DocumentFeedbackRequest,
    current_user: UserRecord = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: GeminiGateway = Depends(get_ai_gateway),
):
    document = get_owned_document(db, document_id, current_user.id)

    record = _save(db, DocumentFeedback(
        document_id=document.id,
        user_id=current_user.id,
        rating=request.rating,
        feedback=request.feedback,
        aspect=request.aspect,
    ))
    analysis = None
    if record.feedback:
        analysis = FeedbackEngine(gateway).analyze_feedback(
            record.feedback,
            record.rating,
            f"Document: {document.title} (aspect: {record.aspect})",
        )

    return {
        "success": True,
        "message": "Document feedback submitted successfully",
        "data": {
            "feedback_id": record.id,
            "document_id": document.id,
            "document_title": document.title,
            "rating": record.rating,
            "feedback": record.feedback,
            "aspect": record.aspect,
            "ai_analysis": analysis,
            "submitted_at": record.created_at.isoformat(),
        },
    }


@router.get("/analytics")
def get_feedback_analytics(
    type: str = "all",
    days: int = Query(30, ge=1, le=365),
    current_user: UserRecord = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if type != "all" and type not in FEEDBACK_MODELS:
        raise HTTPException(
            status_code=400,
            detail={"message": "Invalid feedback type", "valid_types": ["all"] + list(FEEDBACK_MODELS)},
        )

    since = datetime.utcnow() - timedelta(days=days)
    analytics = {}
    for kind, model in FEEDBACK_MODELS.items():
        if type not in ("all", kind):
            continue
        rows = db.query(model).filter(model.user_id == current_user.id, model.created_at >= since).all()
        analytics[kind] = clause_feedback_metrics(rows) if kind == "clauses" else feedback_metrics(rows)

    ratings = [metric["average_rating"] for metric in analytics.values() if metric["average_rating"]]

    return {
        "success": True,
        "data": {
            "period_days": days,
            "analytics": analytics,
            "summary": {
                "total_feedback": sum(metric["total"] for metric in analytics.values()),
                "average_rating": average(ratings),
            },
        },
    }


@router.get("/suggestions")
def get_feedback_suggestions(
    type: str = "queries",
    current_user: UserRecord = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: GeminiGateway = Depends(get_ai_gateway),
):
    model = FEEDBACK_MODELS.get(type)
    if model is None:
        raise HTTPException(
            status_code=400,
            detail={"message": "Invalid feedback type", "valid_types": list(FEEDBACK_MODELS)},
        )

    rows = (
        db.query(model)
        .filter(model.user_id == current_user.id, model.rating <= 3)
        .order_by(model.created_at.desc())
        .limit(10)
        .all()
    )
    if not rows:
        return {
            "success": True,
            "data": {"suggestions": [], "message": "No low-rated feedback found for analysis"},
        }

    suggestions = FeedbackEngine(gateway).suggest_improvements(
        [{"rating": row.rating, "feedback": row.feedback} for row in rows],
        type,
    )

    return {
        "success": True,
        "data": {"type": type, "suggestions": suggestions, "analyzed_feedback_count": len(rows)},
    }
