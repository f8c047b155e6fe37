# threatlens/main.py
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import load_settings
from .routes import analyze
from .services.threat_engine import ThreatEngine

settings = load_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the engine once per process and release it on shutdown"""
    logger.info("🚀 ThreatLens API starting up...")
    app.state.settings = settings
    app.state.engine = ThreatEngine.from_settings(settings)
    logger.info("✅ Threat engine initialized")

    yield

    logger.info("👋 ThreatLens API shutting down...")
    await app.state.engine.aclose()


# Create FastAPI app
app = FastAPI(
    title="ThreatLens API",
    description="Multi-signal domain threat scoring",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# ============================================================================
# CORS
# ============================================================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

# ============================================================================
# REQUEST LOGGING MIDDLEWARE
# ============================================================================

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all requests with timing"""
    start_time = time.time()

    logger.info(f"Request: {request.method} {request.url.path}")

    response = await call_next(request)

    process_time = time.time() - start_time
    logger.info(f"Response: {response.status_code} - {process_time:.3f}s")

    return response

# ============================================================================
# ROUTES
# ============================================================================

app.include_router(analyze.router, prefix="/api", tags=["analyze"])

# ============================================================================
# ROOT ENDPOINT
# ============================================================================

@app.get("/")
async def root():
    """Service description"""
    return {
        "service": "ThreatLens API",
        "version": "1.0.0",
        "status": "healthy",
        "endpoints": {
            "analyze": "/api/analyze",
            "signal_status": "/api/signals/status",
        }
    }


@app.get("/health")
async def health():
    """Simple health check"""
    return {"status": "ok"}

# ============================================================================
# ERROR HANDLERS
# ============================================================================

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch-all exception handler"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc) if settings.debug else "An error occurred"
        }
    )

# ============================================================================
# DEVELOPMENT SERVER
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "threatlens.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level=settings.log_level.lower(),
    )
