from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from dashboard_api.api.api import api_router
from dashboard_api.core.config import get_settings
from dashboard_api.core.errors import DashboardError
from dashboard_api.core.logging import configure_logging, get_logger
from dashboard_api.core.middleware import RequestIDMiddleware, SecurityHeadersMiddleware
from dashboard_api.core.rate_limit import limiter

settings = get_settings()
configure_logging()
_LOGGER = get_logger(__name__)

app = FastAPI(
    title=settings.PROJECT_NAME,
    docs_url="/docs" if settings.ENABLE_API_DOCS else None,
    redoc_url="/redoc" if settings.ENABLE_API_DOCS else None,
    openapi_url="/openapi.json" if settings.ENABLE_API_DOCS else None,
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(RequestIDMiddleware)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.ALLOWED_HOSTS)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    # Supabase tokens travel in the Authorization header, never in cookies.
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Client-Info", "x-request-id"],
)


@app.get("/health")
@limiter.limit("60/minute")
def health(request: Request):
    return {"status": "ok"}


@app.get("/api", include_in_schema=False)
def api_root():
    return {
        "name": settings.PROJECT_NAME,
        "version": "v1",
        "base": settings.API_V1_STR,
        "health": "/health",
        "endpoints": [
            "/dashboard",
            "/dashboard/summary",
            "/dashboard/process",
        ],
    }


@app.exception_handler(DashboardError)
async def dashboard_error_handler(request: Request, exc: DashboardError):
    _LOGGER.warning("request_failed", path=request.url.path, error=type(exc).__name__, detail=str(exc))
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc), "data": []})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    messages = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()]
    return JSONResponse(status_code=400, content={"error": "; ".join(messages), "data": []})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404:
        return JSONResponse(
            status_code=404,
            content={"error": "Not Found", "path": str(request.url.path), "data": []},
        )
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail, "data": []})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    _LOGGER.error("unhandled_error", path=request.url.path, error=type(exc).__name__, detail=str(exc))
    return JSONResponse(status_code=500, content={"error": "Internal server error", "data": []})


app.include_router(api_router, prefix=settings.API_V1_STR)
