import logging
import os

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from admin_analytics_routes import router as admin_analytics_router
from admin_audit import AdminAuditMiddleware
from admin_routes import router as admin_router
from auth_providers import get_auth_provider
from auth_routes import router as auth_router
from clause_routes import router as clause_router
from database import create_tables
from delete_routes import router as delete_router
from document_routes import router as document_router
from feedback_routes import router as feedback_router
from gemini_client import AIGatewayError, GeminiGateway, get_ai_gateway
from health_routes import router as health_router
from listing_routes import router as listing_router
from query_routes import router as query_router
from storage import LocalBucket, get_storage
from upload_routes import router as upload_router
from validation import error_messages

logger = logging.getLogger(__name__)

DEFAULT_CORS_ORIGINS = "http://localhost:3000,http://localhost:3001,http://127.0.0.1:3000,http://127.0.0.1:3001"
CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", DEFAULT_CORS_ORIGINS).split(",") if origin.strip()]

app = FastAPI(title="LexiDocs API", version=os.getenv("APP_VERSION", "1.0.0"))

app.add_middleware(AdminAuditMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    content = {"success": False}
    if isinstance(exc.detail, dict):
        content.update(exc.detail)
    else:
        content["message"] = exc.detail
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"success": False, "message": "Validation error", "errors": error_messages(exc.errors())},
    )


@app.exception_handler(AIGatewayError)
async def ai_gateway_exception_handler(request: Request, exc: AIGatewayError):
    logger.error("AI gateway failure on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": "AI service error", "error": str(exc)},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": "Internal server error", "error": str(exc)},
    )


# /api/documents/all must be registered before the broader /api/documents routes
app.include_router(auth_router)
app.include_router(upload_router)
app.include_router(listing_router)
app.include_router(document_router)
app.include_router(clause_router)
app.include_router(query_router)
app.include_router(delete_router)
app.include_router(feedback_router)
app.include_router(health_router)
app.include_router(admin_router)
app.include_router(admin_analytics_router)

storage = get_storage()
if isinstance(storage, LocalBucket):
    app.mount(storage.mount_path, StaticFiles(directory=storage.base_dir), name="storage")

create_tables()
logger.info("Identity backend: %s", get_auth_provider().name)
logger.info("Gemini API key %s", "configured" if os.getenv("GEMINI_API_KEY") else "not configured")


@app.get("/", response_class=PlainTextResponse)
def root():
    return "LexiDocs backend is running"


@app.get("/test-gemini")
def test_gemini(gateway: GeminiGateway = Depends(get_ai_gateway)):
    result = gateway.test_connection()
    if not result.get("success"):
        return JSONResponse(
            status_code=500,
            content={"success": False, "message": "Gemini API test failed", "error": result.get("error")},
        )
    return result


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", 5100)))
