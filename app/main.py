from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.v1 import api_router
from app.core.errors import register_exception_handlers
from app.core.health import APP_VERSION
from app.core.logging import configure_logging
from app.core.response_envelope import register_response_envelope
from app.core.settings import settings
from app.events import register_event_handlers
from app.middlewares.request_context import RequestContextMiddleware
from app.middlewares.security_headers import SecurityHeadersMiddleware

OPENAPI_TAGS = [
    {"name": "loan-workflow", "description": "Submit loans, apply review actions and read history."},
    {"name": "notifications", "description": "In-app inbox and push device registration."},
    {"name": "rbac", "description": "Menu catalog and role grants."},
    {"name": "health", "description": "Liveness and readiness probes."},
]


def create_app() -> FastAPI:
    configure_logging()
    interactive_docs = settings.environment != "production"
    app = FastAPI(
        title="Loan Workflow Backend",
        version=APP_VERSION,
        openapi_tags=OPENAPI_TAGS,
        docs_url="/docs" if interactive_docs else None,
        redoc_url="/redoc" if interactive_docs else None,
    )
    register_exception_handlers(app)
    register_response_envelope(app)
    # Outermost: the request id is bound before any other middleware logs.
    app.add_middleware(SecurityHeadersMiddleware, enable_hsts=settings.enable_hsts)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
    )
    app.add_middleware(RequestContextMiddleware)
    app.include_router(api_router, prefix=settings.api_prefix)
    register_event_handlers(app)
    return app


app = create_app()
