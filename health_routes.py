import logging
import os
import platform
import time
from datetime import datetime
from pathlib import Path

import psutil
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

import database
from auth import get_current_user
from auth_providers import UserRecord
from database import get_db
from document_utils import fan_out
from gemini_client import GEMINI_FLASH_MODEL, GeminiGateway, get_ai_gateway
from models import Document, DocumentClause, DocumentQuery, QueryFeedback
from storage import Bucket, get_storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/health", tags=["health"])

APP_VERSION = os.getenv("APP_VERSION", "1.0.0")
APP_ENV = os.getenv("APP_ENV", "development")
STARTED_AT = time.monotonic()

MEMORY_WARNING_PERCENT = 80
MEMORY_CRITICAL_PERCENT = 90


def uptime() -> float:
    return round(time.monotonic() - STARTED_AT, 3)


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def check_database() -> dict:
    start = time.perf_counter()
    try:
        database.ping()
    except Exception as e:
        return {
            "status": "unhealthy",
            "message": "Database connection failed",
            "error": str(e),
            "response_time_ms": _elapsed_ms(start),
        }
    return {
        "status": "healthy",
        "message": "Database connection successful",
        "response_time_ms": _elapsed_ms(start),
        "connection_pool": "active",
    }


def check_storage(storage: Bucket) -> dict:
    start = time.perf_counter()
    try:
        storage.list("", limit=1)
    except Exception as e:
        return {
            "status": "unhealthy",
            "message": "Storage access failed",
            "error": str(e),
            "response_time_ms": _elapsed_ms(start),
        }
    return {
        "status": "healthy",
        "message": "Storage access successful",
        "response_time_ms": _elapsed_ms(start),
        "bucket": storage.name,
    }


def check_gemini(gateway: GeminiGateway) -> dict:
    start = time.perf_counter()
    result = gateway.test_connection()
    if not result.get("success"):
        return {
            "status": "unhealthy",
            "message": "Gemini API connection failed",
            "error": result.get("error") or "Unknown error",
            "response_time_ms": _elapsed_ms(start),
        }
    return {
        "status": "healthy",
        "message": "Gemini API connection successful",
        "response_time_ms": _elapsed_ms(start),
        "model": GEMINI_FLASH_MODEL,
    }


def check_system() -> dict:
    process = psutil.Process()
    cpu = process.cpu_times()
    memory = process.memory_info()
    return {
        "status": "healthy",
        "message": "System resources normal",
        "cpu_usage": {"user": cpu.user, "system": cpu.system},
        "memory_usage": {"rss": memory.rss, "vms": memory.vms},
        "uptime_seconds": uptime(),
        "python_version": platform.python_version(),
        "platform": platform.system().lower(),
        "arch": platform.machine(),
    }


def memory_status(system_percent: float, process_percent: float) -> str:
    if system_percent > MEMORY_CRITICAL_PERCENT or process_percent > MEMORY_CRITICAL_PERCENT:
        return "critical"
    if system_percent > MEMORY_WARNING_PERCENT or process_percent > MEMORY_WARNING_PERCENT:
        return "warning"
    return "healthy"


def check_memory() -> dict:
    system = psutil.virtual_memory()
    process = psutil.Process()
    process_percent = process.memory_percent()
    state = memory_status(system.percent, process_percent)
    return {
        "status": state,
        "message": "Memory usage normal" if state == "healthy" else "Memory usage high",
        "system_memory": {
            "total": system.total,
            "used": system.total - system.available,
            "free": system.available,
            "usage_percent": round(system.percent, 2),
        },
        "process_memory": {
            "rss": process.memory_info().rss,
            "usage_percent": round(process_percent, 2),
        },
    }


def check_disk(upload_dir: str = None) -> dict:
    upload_dir = upload_dir or os.getenv("UPLOAD_DIR", "uploads")
    path = Path(upload_dir)
    if not path.exists():
        uploads_status = "not_exists"
    elif os.access(path, os.W_OK):
        uploads_status = "writable"
    else:
        uploads_status = "not_writable"

    usage = psutil.disk_usage(str(path if path.exists() else Path.cwd()))
    return {
        "status": "healthy" if uploads_status == "writable" else "warning",
        "message": "Disk access normal" if uploads_status == "writable" else "Disk access issues detected",
        "uploads_directory": {"status": uploads_status, "path": upload_dir},
        "disk_usage": {"total": usage.total, "free": usage.free, "usage_percent": usage.percent},
    }


@router.get("")
def basic_health_check():
    return {
        "success": True,
        "data": {
            "status": "healthy",
            "timestamp": datetime.utcnow().isoformat(),
            "uptime": uptime(),
            "version": APP_VERSION,
            "environment": APP_ENV,
        },
    }


@router.get("/comprehensive")
async def comprehensive_health_check(
    storage: Bucket = Depends(get_storage),
    gateway: GeminiGateway = Depends(get_ai_gateway),
):
    checks = await fan_out(
        database=check_database,
        storage=lambda: check_storage(storage),
        gemini=lambda: check_gemini(gateway),
        system=check_system,
        memory=check_memory,
        disk=check_disk,
    )
    for name, check in checks.items():
        if "status" not in check:
            checks[name] = {"status": "unhealthy", "message": f"{name} health check failed", **check}

    unhealthy = [name for name, check in checks.items() if check["status"] != "healthy"]
    if unhealthy:
        logger.warning("Health checks not healthy: %s", ", ".join(unhealthy))

    return {
        "success": True,
        "data": {
            "status": "degraded" if unhealthy else "healthy",
            "timestamp": datetime.utcnow().isoformat(),
            "uptime": uptime(),
            "version": APP_VERSION,
            "environment": APP_ENV,
            "checks": checks,
            "unhealthy_services": unhealthy,
            "summary": {
                "total_checks": len(checks),
                "healthy_checks": len(checks) - len(unhealthy),
                "unhealthy_checks": len(unhealthy),
            },
        },
    }


@router.get("/metrics")
def get_service_metrics(
    current_user: UserRecord = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    documents = db.query(Document).filter(Document.user_id == current_user.id).count()
    queries = db.query(DocumentQuery).filter(DocumentQuery.user_id == current_user.id).count()
    clauses = db.query(DocumentClause).filter(DocumentClause.user_id == current_user.id).count()
    feedback = db.query(QueryFeedback).filter(QueryFeedback.user_id == current_user.id).count()

    return {
        "success": True,
        "data": {
            "user_metrics": {
                "documents": {"total": documents, "status": "success"},
                "queries": {"total": queries, "status": "success"},
                "clauses": {"total": clauses, "status": "success"},
                "feedback": {"total": feedback, "status": "success"},
            },
            "timestamp": datetime.utcnow().isoformat(),
            "user_id": current_user.id,
        },
    }


@router.get("/status")
def get_api_status():
    database_state = "operational" if check_database()["status"] == "healthy" else "degraded"
    return {
        "success": True,
        "data": {
            "api": "operational",
            "database": database_state,
            "storage": "operational",
            "ai_service": "operational",
            "timestamp": datetime.utcnow().isoformat(),
            "version": APP_VERSION,
            "uptime": uptime(),
        },
    }
