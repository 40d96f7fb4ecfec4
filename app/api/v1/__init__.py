from fastapi import APIRouter

from app.api.v1.routers import health, loan_workflow, notifications, rbac

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(loan_workflow.router)
api_router.include_router(notifications.router)
api_router.include_router(rbac.router)

__all__ = ["api_router"]
