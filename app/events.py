import logging

from fastapi import FastAPI

from app.core.settings import settings
from app.db.init_db import init_db
from app.db.session import engine
from app.utils.redis_client import get_redis_client

logger = logging.getLogger(__name__)


def register_event_handlers(app: FastAPI) -> None:
    @app.on_event("startup")
    async def on_startup() -> None:
        logger.info(
            "Loan workflow service starting environment=%s prefix=%s push=%s email=%s",
            settings.environment,
            settings.api_prefix,
            "on" if settings.fcm_server_key else "off",
            "on" if settings.smtp_host else "off",
        )
        await init_db()

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        logger.info("Loan workflow service stopping")
        await get_redis_client().aclose()
        await engine.dispose()
