import os
from typing import Callable, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from .config import Settings, settings as default_settings
from .db import build_engine
from .errors import BusinessRuleError, CycleCommitError, InvalidFormError, NotFoundError, PlanningError
from .logging import RequestIdMiddleware, setup_logging
from .routes.planning import admin_router as planning_admin_router
from .routes.planning import router as planning_router
from .routes.projects import router as projects_router
from .services.background import BackgroundRunner
from .services.notifications import MailDispatcher, MailMessage, NotificationBatcher, SmtpTransport
from .services.orchestrator import CycleOrchestrator
from .services.planning import PlanningService
from .services.reconciler import AssignmentReconciler
from .services.store import TenantRegistry
from .services.users import UserDirectory
from .services.validation import EntryValidator


log = structlog.get_logger(__name__)


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(InvalidFormError)
    async def _invalid_form(request: Request, exc: InvalidFormError):
        return JSONResponse(status_code=400, content={"detail": "invalid form", "messages": exc.messages})

    @app.exception_handler(BusinessRuleError)
    async def _business_rule(request: Request, exc: BusinessRuleError):
        return JSONResponse(status_code=400, content={"detail": exc.message})

    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"detail": exc.message})

    @app.exception_handler(CycleCommitError)
    async def _cycle_commit(request: Request, exc: CycleCommitError):
        log.error("planning_cycle_commit_failed", error=exc.message, committed=len(exc.committed))
        return JSONResponse(
            status_code=500,
            content={"detail": exc.message, "committed": [e.id for e in exc.committed]},
        )

    @app.exception_handler(PlanningError)
    async def _planning_error(request: Request, exc: PlanningError):
        return JSONResponse(status_code=500, content={"detail": exc.message})


def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[Callable[[MailMessage], None]] = None,
) -> FastAPI:
    """
    Build the application and wire every planning service onto ``app.state``.

    ``transport`` replaces SMTP delivery (tests pass a recorder).
    """
    settings = settings or default_settings
    setup_logging(settings.log_level)
    app = FastAPI(title=settings.app_name)
    app.state.settings = settings

    # Ensure local SQLite directory exists
    if settings.database_url.startswith("sqlite:///./"):
        os.makedirs("var", exist_ok=True)
    registry = TenantRegistry(build_engine(settings.database_url))
    if settings.auto_create_db:
        registry.create_schema()
    registry.load_groups()

    directory = UserDirectory(registry)
    validator = EntryValidator(registry, directory)
    reconciler = AssignmentReconciler(registry, directory, validator)
    mailer = MailDispatcher(
        transport or SmtpTransport(settings),
        maxsize=settings.mail_queue_size,
        enabled=settings.enable_email,
    )
    background = BackgroundRunner()
    planning = PlanningService(registry, directory, validator, reconciler, NotificationBatcher(mailer), background)

    app.state.registry = registry
    app.state.directory = directory
    app.state.mailer = mailer
    app.state.background = background
    app.state.planning = planning
    app.state.orchestrator = CycleOrchestrator(planning)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    _register_error_handlers(app)

    # Routers
    app.include_router(projects_router)
    app.include_router(planning_admin_router)
    app.include_router(planning_router)

    # Metrics
    if settings.expose_metrics:
        Instrumentator().instrument(app).expose(app)

    @app.on_event("startup")
    async def _startup():
        mailer.start()
        log.info("startup_complete", app=settings.app_name, groups=len(registry.groups))

    @app.on_event("shutdown")
    async def _shutdown():
        # Let in-flight reconciliations queue their mails before the mailer drains
        await background.drain()
        await mailer.stop()
        registry.dispose()

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app
