"""
Health API Routes
"""
from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from app.database import database_health
from app.schemas.refund_daemon import DaemonStatusSchema

router = APIRouter()


@router.get("/health")
async def health_check(request: Request) -> JSONResponse:
    """Database health and refund daemon status"""
    db = database_health()
    ok = bool(db.get("ok"))

    daemon = getattr(request.app.state, "refund_daemon", None)
    daemon_status = DaemonStatusSchema(**daemon.status()).model_dump(mode="json") if daemon else None

    return JSONResponse(
        status_code=status.HTTP_200_OK if ok else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "healthy" if ok else "degraded",
            "database": db,
            "refund_daemon": daemon_status,
        },
    )
