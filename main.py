"""
LabFulfil - Diagnostic Test Ordering API
Order fulfillment backend for home sample collection lab tests
"""

# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
import uvicorn
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from contextlib import asynccontextmanager
import logging
from datetime import datetime

from app.config import CORS_ORIGINS, RATE_LIMIT_ENABLED, UPLOAD_DIR
from app.database import engine, Base, get_db
from app.routers import auth, catalog, cart, orders
from app.services.activity_logger import ActivityLogger
from app.utils.error_handler import ErrorContext, ErrorHandler, register_exception_handlers

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Rate limiting
limiter = Limiter(key_func=get_remote_address, enabled=RATE_LIMIT_ENABLED)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management"""
    logger.info("Starting LabFulfil API...")
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created/verified")

    yield

    logger.info("Shutting down LabFulfil API...")

app = FastAPI(
    title="LabFulfil Diagnostic Ordering API",
    description="Catalog, cart, slot booking, order workflow and lab report delivery",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
register_exception_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router, prefix="/api/v1/auth", tags=["authentication"])
app.include_router(catalog.router, prefix="/api/v1/catalog", tags=["catalog"])
app.include_router(cart.router, prefix="/api/v1/cart", tags=["cart"])
app.include_router(orders.router, prefix="/api/v1/orders", tags=["orders"])

# Uploaded reports are served from {PUBLIC_BASE_URL}/uploads/{category}/{handle}
app.mount("/uploads", StaticFiles(directory=UPLOAD_DIR, check_dir=False), name="uploads")

@app.get("/")
@limiter.limit("10/minute")
async def root(request: Request):
    """Root endpoint with API information - publicly accessible"""
    return {
        "message": "LabFulfil Diagnostic Ordering API",
        "version": "1.0.0",
        "docs": "/docs",
        "redoc": "/redoc",
        "timestamp": datetime.utcnow().isoformat()
    }

@app.get("/health")
@limiter.limit("30/minute")
async def health_check(request: Request, db: Session = Depends(get_db)):
    """Liveness plus a database round trip"""
    try:
        db.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError as e:
        logger.error(f"Health check database round trip failed: {e}")
        database = "unavailable"

    return {
        "status": "healthy" if database == "ok" else "degraded",
        "database": database,
        "timestamp": datetime.utcnow().isoformat()
    }

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Errors outside the workflow taxonomy: generic 500, recorded in the activity log"""
    error_context = ErrorContext(request)
    response = ErrorHandler.create_error_response(error_context, exc, status_code=500)

    try:
        db = next(get_db())
        try:
            await ActivityLogger(db).log_activity(
                endpoint=error_context.endpoint,
                method=error_context.method,
                status_code=500,
                ip_address=error_context.client_ip,
                user_agent=error_context.user_agent,
                error_message=f"[{error_context.request_id}] {type(exc).__name__}: {exc}"
            )
        finally:
            db.close()
    except Exception as log_error:
        logger.error(f"Failed to log error activity: {log_error}")

    return response

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
