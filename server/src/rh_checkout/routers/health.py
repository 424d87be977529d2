from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException
from sqlmodel import Session, text

from rh_checkout.config import config
from rh_checkout.models.database import engine

health = APIRouter()


@health.get("/health")
async def health_check():
    """Basic health check endpoint"""
    return {
        "status": "healthy",
        "service": "rh-checkout",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": config["environment"],
    }


@health.get("/health/detailed")
async def detailed_health_check():
    """Detailed health check with database and configuration checks"""
    health_status = {
        "status": "healthy",
        "service": "rh-checkout",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": config["environment"],
        "checks": {},
    }

    # Database connectivity check
    try:
        with Session(engine) as session:
            result = session.exec(text("SELECT 1")).first()
            health_status["checks"]["database"] = "healthy" if result else "unhealthy"
    except Exception as e:
        health_status["checks"]["database"] = f"unhealthy: {str(e)}"
        health_status["status"] = "unhealthy"

    health_status["checks"]["stripe"] = (
        "configured" if config["stripe_secret_key"] else "not configured"
    )
    health_status["checks"]["sessionStore"] = config["session_store_backend"]

    if health_status["status"] == "unhealthy":
        raise HTTPException(status_code=503, detail=health_status)

    return health_status
