from fastapi import APIRouter
from fastapi.responses import JSONResponse

from app.core.health import live_payload, ready_payload

router = APIRouter(tags=["health"])


@router.get("/health/live", summary="Service liveness check")
async def health_live() -> dict:
    return await live_payload()


@router.get("/health/ready", summary="Service readiness check")
async def health_ready():
    payload = await ready_payload()
    if not payload["ready"]:
        return JSONResponse(
            status_code=503,
            content={
                "code": "service_unavailable",
                "message": "Service is not ready",
                "data": payload,
                "details": {},
            },
        )
    return payload
