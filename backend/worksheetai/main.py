import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException as StarletteHTTPException

from .cleanup import fail_interrupted_analyses
from .db import Base, SessionLocal, engine, ensure_schema
from .job_queue import log_queue_stats
from .logger import setup_logging
from .settings import settings
from .storage import verify_storage_config
from .routers import health, diagnostics
from .routers import auth
from .routers import templates
from .routers import worksheets
from .routers import universities
from .routers import admin

setup_logging(settings.log_level)
logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])

_SECURITY_HEADERS = {
	"X-Content-Type-Options": "nosniff",
	"X-Frame-Options": "SAMEORIGIN",
	"Referrer-Policy": "no-referrer",
	"Cross-Origin-Opener-Policy": "same-origin",
	"Strict-Transport-Security": "max-age=15552000; includeSubDomains",
}

app = FastAPI(title="WorksheetAI API")
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(
	CORSMiddleware,
	allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()],
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)
app.include_router(health.router)
app.include_router(diagnostics.router)
app.include_router(auth.router)
app.include_router(templates.router)
app.include_router(worksheets.router)
app.include_router(universities.router)
app.include_router(admin.router)


@app.middleware("http")
async def security_headers(request: Request, call_next):
	response = await call_next(request)
	for name, value in _SECURITY_HEADERS.items():
		response.headers.setdefault(name, value)
	return response


# Plain def: the rate limit middleware calls this handler without awaiting it
@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded):
	logger.warning("Rate limit exceeded for %s on %s", get_remote_address(request), request.url.path)
	return JSONResponse(
		status_code=429,
		content={"success": False, "message": "Too many requests from this IP, please try again later."},
	)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
	if exc.status_code == 404 and exc.detail == "Not Found":
		return JSONResponse(status_code=404, content={"success": False, "message": "API endpoint not found"})
	if isinstance(exc.detail, dict):
		content = {"success": False, **exc.detail}
	else:
		content = {"success": False, "message": exc.detail}
	return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
	errors = [
		{"field": ".".join(str(p) for p in err.get("loc", ())[1:]), "msg": err.get("msg", "")}
		for err in exc.errors()
	]
	return JSONResponse(status_code=400, content={"success": False, "message": "Validation failed", "errors": errors})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
	logger.exception("Unhandled error on %s %s", request.method, request.url.path)
	return JSONResponse(status_code=500, content={"success": False, "message": "Something went wrong!"})


@app.on_event("startup")
async def startup_event():
	# Initialize DB schema
	Base.metadata.create_all(bind=engine)
	# Apply lightweight migrations for databases created by older releases
	ensure_schema()
	db = SessionLocal()
	try:
		fail_interrupted_analyses(db)
	finally:
		db.close()
	verify_storage_config()
	asyncio.create_task(log_queue_stats())
	logger.info("WorksheetAI API started")
