"""
Quiz Attempt Engine - FastAPI Application Entry Point.

This is the main application module that:
1. Initializes the FastAPI app with CORS middleware
2. Sets up structured JSON logging
3. Implements request ID middleware (X-Request-ID header)
4. Maps engine errors to HTTP responses
5. Registers all API route handlers
6. Opens the store at startup and disposes it on shutdown

The application follows a modular architecture:
- routes/: API endpoint handlers
- models/: SQLAlchemy ORM models
- services/: Attempt state logic (locking, durations, gaps, grading, completion)
- logging_config.py: Structured logging configuration
- database.py: Database connection management
"""

import time
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from quizengine.config import CORS_ORIGINS
from quizengine.logging_config import (
    setup_logging, get_logger, log_with_context,
    request_id_var, generate_request_id
)
from quizengine.errors import QuizEngineError
from quizengine.routes import attempts, quizzes
from quizengine.database import DATABASE_URL, create_tables, dispose_engine

# ──────────────────────────────────────────────────────────────
# Initialize structured logging BEFORE anything else
# ──────────────────────────────────────────────────────────────
setup_logging()
logger = get_logger("http")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Auto-create tables for SQLite local development
    if DATABASE_URL.startswith("sqlite"):
        logger.info("Using SQLite, creating tables directly")
        create_tables()
    yield
    dispose_engine()
    logger.info("Database engine disposed")


# ──────────────────────────────────────────────────────────────
# Create FastAPI application
# ──────────────────────────────────────────────────────────────
app = FastAPI(
    title="Quiz Attempt Engine",
    description=(
        "Tracks in-progress quiz attempts, reconciles time-on-task reported by "
        "unreliable client signals, records progressive question results and "
        "computes final scores under per-quiz grading strategies."
    ),
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# ──────────────────────────────────────────────────────────────
# CORS Middleware
#
# In production, restrict origins to the actual frontend domain via CORS_ORIGINS.
# ──────────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"]
)


# ──────────────────────────────────────────────────────────────
# Request ID Middleware
#
# Generates a unique UUID per incoming request and:
# 1. Stores it in a context variable (available to all log entries)
# 2. Returns it in the X-Request-ID response header
# 3. Logs request start/end with latency measurement
# ──────────────────────────────────────────────────────────────
@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """
    Middleware that generates a unique request ID for every HTTP request.

    This enables end-to-end request tracing across all log entries.
    """
    req_id = generate_request_id()
    request_id_var.set(req_id)

    start_time = time.time()

    log_with_context(logger, "INFO",
        f"Request started: {request.method} {request.url.path}",
        context={"request_id": req_id},
        extra_data={
            "ip": request.client.host if request.client else "unknown",
            "user_agent": request.headers.get("user-agent", ""),
            "query_params": dict(request.query_params)
        })

    response = await call_next(request)

    duration_ms = (time.time() - start_time) * 1000
    response.headers["X-Request-ID"] = req_id

    log_with_context(logger, "INFO",
        f"Request completed: {request.method} {request.url.path} → {response.status_code}",
        context={"request_id": req_id},
        extra_data={
            "duration_ms": round(duration_ms, 2),
            "status_code": response.status_code
        })

    return response


# ──────────────────────────────────────────────────────────────
# Engine errors → HTTP
#
# Not-found, tenant mismatch and missing completion data propagate from the
# services unmodified; only the transport mapping happens here.
# ──────────────────────────────────────────────────────────────
@app.exception_handler(QuizEngineError)
async def quiz_engine_error_handler(request: Request, exc: QuizEngineError):
    log_with_context(logger, "WARNING" if exc.status_code < 500 else "ERROR",
        f"{type(exc).__name__}: {exc.message}",
        context={k: str(v) for k, v in exc.context.items()},
        extra_data={"status_code": exc.status_code, "path": request.url.path})
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": type(exc).__name__}
    )


# ──────────────────────────────────────────────────────────────
# Register API routes
# ──────────────────────────────────────────────────────────────
app.include_router(quizzes.router, tags=["Quizzes"])
app.include_router(attempts.router, tags=["Attempts"])


@app.get("/health", tags=["Health"])
def health_check():
    """Health check endpoint for Docker health checks and monitoring."""
    return {"status": "healthy", "service": "quiz-attempt-engine", "version": "1.0.0"}


@app.get("/", tags=["Root"])
def root():
    """Root endpoint with API information."""
    return {
        "service": "Quiz Attempt Engine",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "create_attempt": "POST /api/quizzes/{quiz_id}/attempts",
            "quiz_score": "GET /api/quizzes/{quiz_id}/score",
            "attempt_detail": "GET /api/attempts/{id}",
            "durations": "POST /api/attempts/{id}/durations",
            "modal_closed": "POST /api/attempts/{id}/modal-closed",
            "reconcile_gap": "POST /api/attempts/{id}/reconcile-gap",
            "question_results": "POST /api/attempts/{id}/question-results",
            "complete": "POST /api/attempts/{id}/complete"
        }
    }
