import logging
from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

import admin_service
from auth import require_admin
from auth_providers import get_auth_provider
from database import get_db
from document_utils import period_days, period_start
from gemini_client import GeminiGateway, get_ai_gateway
from health_routes import check_database, check_gemini, check_memory, check_storage, uptime
from models import Document, DocumentQuery
from rate_limiter import rate_limit
from recommendation_engine import RecommendationEngine
from storage import Bucket, get_storage

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/admin/analytics",
    tags=["admin-analytics"],
    dependencies=[Depends(require_admin), Depends(rate_limit(50, 900, "admin_analytics"))],
)

ACTIVITY_PERIODS = ["1d", "7d", "30d"]
RECOMMENDATION_FOCUS = ["all", "performance", "security", "scalability", "user_experience"]


def _alerts(system: dict, memory: dict) -> list:
    alerts = []
    if system["overall"] != "healthy":
        failing = [name for name, state in system.items() if name != "overall" and state != "healthy"]
        alerts.append({
            "type": "system",
            "severity": "high",
            "message": f"Degraded services: {', '.join(failing)}",
        })
    if memory["status"] != "healthy":
        alerts.append({
            "type": "memory",
            "severity": "high" if memory["status"] == "critical" else "medium",
            "message": memory["message"],
        })
    return alerts


@router.get("/realtime")
def get_realtime_metrics(
    db: Session = Depends(get_db),
    storage: Bucket = Depends(get_storage),
    gateway: GeminiGateway = Depends(get_ai_gateway),
    provider=Depends(get_auth_provider),
):
    now = datetime.utcnow()
    hour_ago = now - timedelta(hours=1)

    system = admin_service.system_status({
        "database": check_database(),
        "storage": check_storage(storage),
        "ai_service": check_gemini(gateway),
    })
    memory = check_memory()
    active_users = sum(
        1 for user in provider.list_users()
        if user.last_sign_in_at is not None and user.last_sign_in_at >= hour_ago
    )
    queries = db.query(DocumentQuery).filter(DocumentQuery.created_at >= hour_ago).count()
    uploads = db.query(Document).filter(Document.created_at >= hour_ago).count()

    return {
        "success": True,
        "data": {
            "timestamp": now.isoformat(),
            "system_status": system,
            "live_activity": {
                "active_users_last_hour": active_users,
                "queries_last_hour": queries,
                "uploads_last_hour": uploads,
            },
            "recent_errors": {"count": 0, "errors": []},
            "performance": {
                "uptime_seconds": uptime(),
                "memory_usage_percent": memory["process_memory"]["usage_percent"],
                "system_memory_percent": memory["system_memory"]["usage_percent"],
            },
            "alerts": _alerts(system, memory),
        },
    }


@router.get("/user-activity")
def get_user_activity(
    period: str = "7d",
    granularity: str = "hourly",
    db: Session = Depends(get_db),
    provider=Depends(get_auth_provider),
):
    if period not in ACTIVITY_PERIODS:
        raise HTTPException(
            status_code=400,
            detail={"message": "Invalid period", "valid_periods": ACTIVITY_PERIODS},
        )
    end = datetime.utcnow()
    start = period_start(period, 7, end)
    users = provider.list_users()

    return {
        "success": True,
        "data": {
            "period": period,
            "granularity": granularity,
            "date_range": {"start": start.isoformat(), "end": end.isoformat()},
            "activity": {
                "login_patterns": admin_service.login_activity(users, start, end, granularity),
                "document_activity": admin_service.document_uploads(db, start, end, granularity),
                "query_patterns": admin_service.query_activity(db, start, end, granularity),
                "peak_usage_times": admin_service.peak_usage_times(db, start, end),
                "user_retention": {"retention_rate": None, "cohorts": []},
            },
        },
    }


@router.get("/ai-performance")
def get_ai_performance(period: str = "7d", db: Session = Depends(get_db)):
    end = datetime.utcnow()
    start = period_start(period, 7, end)

    return {
        "success": True,
        "data": {
            "period": period,
            "period_days": period_days(period, 7),
            "performance": {
                "query_performance": admin_service.query_performance(db, start, end),
                "clause_extraction": admin_service.clause_extraction_performance(db, start, end),
                "response_quality": admin_service.response_quality(db, start, end),
                "error_analysis": admin_service.ai_error_analysis(db, start, end),
                "usage_patterns": admin_service.query_activity(db, start, end, "daily"),
            },
        },
    }


@router.get("/security")
def get_security_report(period: str = "7d", db: Session = Depends(get_db)):
    end = datetime.utcnow()
    start = period_start(period, 7, end)

    return {
        "success": True,
        "data": {
            "period": period,
            "security": {
                "access_logs": admin_service.access_logs(db, start, end),
                "failed_logins": {"attempts": 0, "suspicious_ips": []},
                "suspicious_activity": {"flagged_events": []},
                "data_retention": {"policy": "retain_until_deleted", "expired_records": 0},
                "compliance": {"status": "not_evaluated"},
            },
        },
    }


@router.get("/recommendations")
def get_recommendations(
    focus: str = "all",
    db: Session = Depends(get_db),
    gateway: GeminiGateway = Depends(get_ai_gateway),
    provider=Depends(get_auth_provider),
):
    if focus not in RECOMMENDATION_FOCUS:
        raise HTTPException(
            status_code=400,
            detail={"message": "Invalid focus", "valid_focus": RECOMMENDATION_FOCUS},
        )

    system_data = admin_service.system_snapshot(db, provider.list_users())
    recommendations = RecommendationEngine(gateway).recommend(system_data, focus)

    return {
        "success": True,
        "data": {
            "focus": focus,
            "system_data": system_data,
            "recommendations": recommendations,
            "generated_at": datetime.utcnow().isoformat(),
        },
    }
