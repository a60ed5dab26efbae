"""FastAPI application entry point"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.core.config import settings
from app.core.logging import setup_logging
from app.core.middleware import setup_cors_middleware, setup_error_handlers, security_middleware
from app.db.session import init_db
from app.db.redis import get_redis_client

# Import routers
from app.api import auth, admin, dashboard, links

# Configure logging
setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    # Startup
    logger.info("Initializing database...")
    try:
        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    logger.info("Testing Redis connection...")
    try:
        get_redis_client().ping()
        logger.info("Redis connection successful")
    except Exception as e:
        # Rate limiting fails open; login and CSRF checks will error until Redis is back
        logger.error(f"Redis connection failed: {e}")

    yield

    # Shutdown
    logger.info("Shutting down...")


# Create FastAPI app
app = FastAPI(
    title="LinkSwap Backend",
    description="Affiliate link tracking with per-user rewards",
    version="1.0.0",
    lifespan=lifespan
)

# CORS is added last so it wraps the security middleware and also decorates 429 responses
app.middleware("http")(security_middleware)
setup_cors_middleware(app)
setup_error_handlers(app)

# Include routers
app.include_router(auth.router)
app.include_router(dashboard.router)
app.include_router(admin.router)
app.include_router(links.router)


# Health check endpoint
@app.get("/health")
def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "environment": settings.ENVIRONMENT}
