"""
Audit trail for administrative requests.

Every state-changing call under ``/api/admin`` made by an authenticated
administrator is recorded in the ``admin_logs`` table once the response
is known. A failed write is logged and never affects the response.
"""
import json
import logging
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from admin_service import record_admin_log

logger = logging.getLogger(__name__)

AUDIT_PREFIX = "/api/admin"
AUDIT_METHODS = ("POST", "PUT", "PATCH", "DELETE")
REDACTED_FIELDS = ("password", "temporary_password", "token", "refresh_token")


def action_for(method: str, path: str) -> str:
    """``POST /api/admin/actions/critical`` becomes ``post_actions_critical``."""
    tail = path[len(AUDIT_PREFIX):].strip("/").replace("/", "_") or "root"
    return f"{method.lower()}_{tail}"


def _redact(body):
    if isinstance(body, dict):
        return {key: "***" if key in REDACTED_FIELDS else value for key, value in body.items()}
    return body


async def _json_body(request: Request) -> Optional[dict]:
    if "application/json" not in request.headers.get("content-type", ""):
        return None
    raw = await request.body()
    if not raw:
        return None
    try:
        return _redact(json.loads(raw))
    except ValueError:
        return None


class AdminAuditMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if request.method not in AUDIT_METHODS or not path.startswith(AUDIT_PREFIX):
            return await call_next(request)

        body = await _json_body(request)
        response = await call_next(request)

        # Set by require_admin; absent when authentication or authorization failed
        admin = getattr(request.state, "admin_user", None)
        if admin is None:
            return response

        try:
            await run_in_threadpool(
                record_admin_log,
                admin_id=admin.id,
                action=action_for(request.method, path),
                endpoint=path,
                method=request.method,
                ip_address=request.client.host if request.client else None,
                user_agent=request.headers.get("user-agent"),
                request_body=body,
                response_status=response.status_code,
                response_success=response.status_code < 400,
            )
        except SQLAlchemyError as e:
            logger.warning("Failed to write admin audit log for %s %s: %s", request.method, path, e)
        return response
