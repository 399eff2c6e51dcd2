"""
Assessment Portal API - Main Application
Practice and exam session engine
FILE: main.py
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging
import time

from app.core.config import settings
from app.db.mongodb import connect_to_mongo, close_mongo_connection, ensure_indexes, get_database
from app.api.sessions import router as sessions_router
from app.services.session_registry import get_session_registry

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    # Startup
    logger.info("🚀 Starting Assessment Portal API...")

    try:
        await connect_to_mongo()
        logger.info("✓ MongoDB connected")

        try:
            await ensure_indexes()
        except Exception as e:
            logger.warning(f"⚠ Index setup warning: {e}")

        logger.info("✓ All connections initialized")

    except Exception as e:
        logger.error(f"❌ Startup error: {e}")
        raise

    yield

    # Shutdown
    logger.info("🛑 Shutting down Assessment Portal API...")

    try:
        closed = get_session_registry().close_all()
        logger.info(f"✓ Stopped {closed} live session(s)")

        await close_mongo_connection()
        logger.info("✓ MongoDB disconnected")

        logger.info("✓ Cleanup complete")

    except Exception as e:
        logger.error(f"❌ Shutdown error: {e}")


app = FastAPI(
    title="Assessment Portal API",
    description="""
    Practice and exam session engine for the assessment portal.

    ## Features
    - **Practice sessions**: Difficulty-mixed question sets with per-question check
    - **Exams**: Ordered, individually timed sections that lock once finished
    - **Timers**: Overall and section countdowns with time-up policy
    - **Submission**: Exactly-once scoring with retry on failure

    ## Endpoints
    - **Sessions**: `/api/sessions/*` - Start, answer, navigate, finish, submit
    - **Health**: `/health` - Overall service health check
    """,
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)


# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request timing middleware
@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    """Add processing time to response headers"""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000  # Convert to ms
    response.headers["X-Process-Time-Ms"] = str(round(process_time, 2))
    return response


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all incoming requests"""
    logger.info(f"📨 {request.method} {request.url.path}")
    response = await call_next(request)
    logger.info(
        f"📤 {request.method} {request.url.path} - "
        f"Status: {response.status_code}"
    )
    return response


# ==================== INCLUDE ROUTERS ====================

app.include_router(sessions_router)


# ==================== ROOT ENDPOINTS ====================

@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information"""
    return {
        "message": "Assessment Portal API",
        "version": "1.0.0",
        "status": "operational",
        "endpoints": {
            "docs": "/docs",
            "redoc": "/redoc",
            "sessions": "/api/sessions",
            "health": "/health"
        }
    }


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check for the API and MongoDB

    Returns:
        Health status for all components
    """
    health_status = {
        "status": "healthy",
        "timestamp": time.time(),
        "components": {}
    }

    overall_healthy = True

    # Check MongoDB
    try:
        db = get_database()
        await db.command("ping")
        health_status["components"]["mongodb"] = {
            "status": "healthy",
            "message": "Connected and responsive",
            "database": settings.database_name
        }
        logger.debug("✓ MongoDB health check passed")

    except Exception as e:
        overall_healthy = False
        health_status["components"]["mongodb"] = {
            "status": "unhealthy",
            "message": str(e)
        }
        logger.error(f"❌ MongoDB health check failed: {e}")

    health_status["components"]["sessions"] = {
        "status": "healthy",
        "live_sessions": len(get_session_registry())
    }

    # Set overall status
    health_status["status"] = "healthy" if overall_healthy else "degraded"

    # Add API info
    health_status["api"] = {
        "title": app.title,
        "version": app.version,
        "status": "operational"
    }

    # Return appropriate status code
    status_code = 200 if overall_healthy else 503

    return JSONResponse(
        status_code=status_code,
        content=health_status
    )


# ==================== RUN APPLICATION ====================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8080,
        reload=True,
        log_level="info"
    )
