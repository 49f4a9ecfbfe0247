"""
Health check endpoints for production monitoring
"""
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
import time
import psutil
from datetime import datetime
from typing import Dict, Any

from formsync.core.config import get_settings
from formsync.db.database import check_database_connection

router = APIRouter(tags=["health"])


@router.get("/health", response_model=Dict[str, Any])
async def basic_health_check():
    """
    Basic health check endpoint for load balancers
    """
    settings = get_settings()
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "service": settings.app_name,
        "version": settings.app_version
    }


@router.get("/health/detailed", response_model=Dict[str, Any])
async def detailed_health_check(request: Request):
    """
    Detailed health check with all system components
    """
    settings = get_settings()
    server = request.app.state.collaboration
    health_status = {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "service": settings.app_name,
        "version": settings.app_version,
        "checks": {}
    }

    # Database connectivity check
    start_time = time.time()
    if await check_database_connection(server.engine):
        health_status["checks"]["database"] = {
            "status": "healthy",
            "response_time_ms": round((time.time() - start_time) * 1000, 2),
            "dialect": server.engine.dialect.name
        }
    else:
        health_status["checks"]["database"] = {
            "status": "unhealthy",
            "error": "Database connection check failed"
        }
        health_status["status"] = "degraded"

    # System resources check
    try:
        memory = psutil.virtual_memory()
        disk = psutil.disk_usage('/')
        health_status["checks"]["system"] = {
            "status": "healthy",
            "memory_usage_percent": memory.percent,
            "memory_available_gb": round(memory.available / (1024**3), 2),
            "disk_usage_percent": disk.percent,
            "disk_free_gb": round(disk.free / (1024**3), 2),
            "cpu_count": psutil.cpu_count()
        }

        # Check if resources are critically low
        if memory.percent > 90 or disk.percent > 90:
            health_status["checks"]["system"]["status"] = "warning"
            health_status["status"] = "degraded"

    except Exception as e:
        health_status["checks"]["system"] = {
            "status": "unhealthy",
            "error": str(e)
        }
        health_status["status"] = "degraded"

    # Lock expiry sweeper
    sweeper = server.sweeper.get_statistics()
    health_status["checks"]["lock_sweeper"] = {
        "status": "healthy" if sweeper["running"] else "stopped",
        **sweeper
    }
    if not sweeper["running"]:
        health_status["status"] = "degraded"

    health_status["checks"]["realtime"] = {
        "status": "healthy",
        "active_connections": server.connection_manager.get_statistics()["active_connections"]
    }

    return health_status


@router.get("/health/readiness")
async def readiness_check(request: Request):
    """
    Readiness probe - the service can reach its database
    """
    server = request.app.state.collaboration
    if not await check_database_connection(server.engine):
        raise HTTPException(status_code=503, detail="Database not reachable")

    return JSONResponse(
        status_code=200,
        content={
            "status": "ready",
            "timestamp": datetime.utcnow().isoformat()
        }
    )


@router.get("/health/liveness")
async def liveness_check():
    """
    Liveness probe - basic service availability
    """
    return JSONResponse(
        status_code=200,
        content={
            "status": "alive",
            "timestamp": datetime.utcnow().isoformat()
        }
    )
