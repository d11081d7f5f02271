import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

import admin_service
from auth import require_admin, require_super_admin
from auth_providers import UserRecord, get_auth_provider
from database import get_db
from document_utils import fan_out, in_session, offset, pagination, period_days, period_start
from gemini_client import GeminiGateway, get_ai_gateway
from health_routes import check_database, check_gemini, check_storage
from rate_limiter import rate_limit
from storage import Bucket, get_storage
from validation import AdminActionRequest

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin), Depends(rate_limit(100, 900, "admin"))],
)

DASHBOARD_PERIODS = ["7d", "30d", "90d"]
GRANULARITIES = ["hourly", "daily", "weekly"]


@router.get("/dashboard")
async def get_dashboard(
    period: str = "7d",
    storage: Bucket = Depends(get_storage),
    gateway: GeminiGateway = Depends(get_ai_gateway),
    provider=Depends(get_auth_provider),
):
    if period not in DASHBOARD_PERIODS:
        period = "7d"
    end = datetime.utcnow()
    start = period_start(period, 7, end)

    sections = await fan_out(
        users=lambda: admin_service.user_metrics(provider.list_users(), start, end),
        documents=in_session(admin_service.document_metrics, start, end),
        queries=in_session(admin_service.query_metrics, start, end),
        clauses=in_session(admin_service.clause_metrics, start, end),
        feedback=in_session(admin_service.feedback_metrics, start, end),
        storage=in_session(admin_service.storage_metrics),
        system=lambda: admin_service.system_status({
            "database": check_database(),
            "storage": check_storage(storage),
            "ai_service": check_gemini(gateway),
        }),
    )

    return {
        "success": True,
        "data": {
            "period": period,
            "date_range": {"start": start.isoformat(), "end": end.isoformat()},
            "metrics": sections,
            "generated_at": datetime.utcnow().isoformat(),
        },
    }


@router.get("/users")
def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: str = None,
    search: str = None,
    sortBy: str = "created_at",
    sortOrder: str = "desc",
    db: Session = Depends(get_db),
    provider=Depends(get_auth_provider),
):
    if status and status not in admin_service.USER_STATUSES:
        raise HTTPException(
            status_code=400,
            detail={"message": "Invalid status", "valid_statuses": admin_service.USER_STATUSES},
        )
    if sortBy not in admin_service.USER_SORT_FIELDS:
        sortBy = "created_at"

    users = admin_service.filter_users(provider.list_users(), status, search, sortBy, sortOrder)
    page_users = users[offset(page, limit):offset(page, limit) + limit]
    stats = admin_service.user_statistics(db, [user.id for user in page_users])

    return {
        "success": True,
        "data": {
            "users": [
                {**admin_service.describe_user(user), "statistics": stats[user.id]}
                for user in page_users
            ],
            "pagination": pagination(page, limit, len(users)),
            "filters": {"status": status, "search": search, "sortBy": sortBy, "sortOrder": sortOrder},
        },
    }


@router.get("/users/{user_id}")
def get_user_details(user_id: str, db: Session = Depends(get_db), provider=Depends(get_auth_provider)):
    user = provider.get_user(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return {"success": True, "data": admin_service.user_details(db, user)}


@router.get("/analytics")
async def get_system_analytics(
    period: str = "30d",
    granularity: str = "daily",
    provider=Depends(get_auth_provider),
):
    if granularity not in GRANULARITIES:
        raise HTTPException(
            status_code=400,
            detail={"message": "Invalid granularity", "valid_granularities": GRANULARITIES},
        )
    end = datetime.utcnow()
    start = period_start(period, 30, end)

    analytics = await fan_out(
        user_growth=lambda: admin_service.user_growth(provider.list_users(), start, end, granularity),
        document_uploads=in_session(admin_service.document_uploads, start, end, granularity),
        query_activity=in_session(admin_service.query_activity, start, end, granularity),
        storage_usage=in_session(admin_service.storage_usage, start, end, granularity),
        feedback_trends=in_session(admin_service.feedback_trends, start, end, granularity),
    )

    return {
        "success": True,
        "data": {
            "period": period,
            "period_days": period_days(period, 30),
            "granularity": granularity,
            "date_range": {"start": start.isoformat(), "end": end.isoformat()},
            "analytics": analytics,
        },
    }


@router.get("/file-stats")
def get_file_statistics(period: str = "30d", db: Session = Depends(get_db)):
    end = datetime.utcnow()
    start = period_start(period, 30, end)
    return {
        "success": True,
        "data": {
            "period": period,
            **admin_service.file_statistics(db, start, end),
        },
    }


@router.post("/actions")
def perform_system_action(
    request: AdminActionRequest,
    admin: UserRecord = Depends(require_admin),
    db: Session = Depends(get_db),
    storage: Bucket = Depends(get_storage),
    provider=Depends(get_auth_provider),
):
    result = admin_service.perform_action(
        request.action, request.targetId, request.reason, admin, provider, db, storage,
    )
    return {
        "success": True,
        "message": f"Action '{request.action}' completed successfully",
        "data": {**result, "timestamp": datetime.utcnow().isoformat()},
    }


@router.post("/actions/critical")
def perform_critical_action(
    request: AdminActionRequest,
    admin: UserRecord = Depends(require_super_admin),
    db: Session = Depends(get_db),
    storage: Bucket = Depends(get_storage),
    provider=Depends(get_auth_provider),
):
    logger.warning("Super admin %s requested critical action %s", admin.id, request.action)
    result = admin_service.perform_action(
        request.action, request.targetId, request.reason, admin, provider, db, storage,
    )
    return {
        "success": True,
        "message": f"Critical action '{request.action}' completed successfully",
        "data": {**result, "timestamp": datetime.utcnow().isoformat()},
    }
