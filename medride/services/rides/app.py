# medride/services/rides/app.py
"""
FastAPI приложение ядра диспетчеризации.

REST (префикс /api/v1):
- /rides ... - создание, поиск, захват, переходы, оценка, оплата, тариф
- /pricing - конфигурация тарифов
- /location - позиции водителя и их история
- /admin/reconcile - внеплановая очистка поездок-сирот

Прочее:
- WS /ws - realtime-события
- GET /health, GET /stats
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, WebSocket
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from medride.common.exceptions import DispatchError
from medride.common.logger import log_error, log_info, setup_logging
from medride.config import Settings, settings as default_settings
from medride.services.auth.tokens import TokenAuthenticator
from medride.services.locations.repository import LocationRepository
from medride.services.locations.routes import router as locations_router
from medride.services.locations.service import LocationService
from medride.services.pricing.repository import PricingConfigRepository
from medride.services.pricing.routes import router as pricing_router
from medride.services.realtime.fanout import FanoutService
from medride.services.realtime.presence import PresenceRegistry
from medride.services.realtime.redis_bridge import RedisBridge
from medride.services.realtime.ws import serve_connection
from medride.services.reconciler.routes import router as reconciler_router
from medride.services.reconciler.service import OrphanReconciler
from medride.services.reconciler.worker import ReconcilerWorker
from medride.services.rides.dependencies import AppContainer
from medride.services.rides.repository import RideRepository
from medride.services.rides.routes import router as rides_router
from medride.services.rides.service import RideService
from medride.services.users.repository import UserDirectory
from medride.shared.models.common import ErrorResponse, HealthStatus

SERVICE_NAME = "medride_dispatch"


async def build_container(config: Settings) -> AppContainer:
    """Подключает инфраструктуру и собирает сервисы процесса."""
    from medride.infra.database import init_db
    from medride.infra.redis_client import init_redis

    db = await init_db()

    presence = PresenceRegistry(
        sweep_interval=config.presence.SWEEP_INTERVAL_SECONDS,
        idle_timeout=config.presence.IDLE_TIMEOUT_SECONDS,
    )

    bridge: RedisBridge | None = None
    if config.redis.FANOUT_BRIDGE_ENABLED:
        redis_client = await init_redis()
        bridge = RedisBridge(redis_client, presence.deliver)
        await bridge.start()

    fanout = FanoutService(presence, bridge)
    rides = RideRepository(db)
    users = UserDirectory(db)
    pricing = PricingConfigRepository(db, config.fares)
    reconciler = OrphanReconciler(rides, users, batch_size=config.reconciler.RECONCILER_BATCH_SIZE)

    worker: ReconcilerWorker | None = None
    if config.reconciler.RECONCILER_ENABLED:
        worker = ReconcilerWorker(
            reconciler,
            run_at_hour=config.reconciler.RECONCILER_RUN_AT_HOUR,
            interval_hours=config.reconciler.RECONCILER_INTERVAL_HOURS,
            timezone=config.domain.TIMEZONE,
        )

    return AppContainer(
        presence=presence,
        fanout=fanout,
        rides=RideService(
            rides,
            users,
            pricing,
            fanout,
            timezone=config.domain.TIMEZONE,
            holidays=config.fares.HOLIDAYS,
            dispatch=config.dispatch,
        ),
        pricing=pricing,
        authenticator=TokenAuthenticator(users, config.auth.JWT_SECRET, config.auth.JWT_ALGORITHM),
        reconciler=reconciler,
        locations=LocationService(
            LocationRepository(db),
            rides,
            fanout,
            history_limit=config.dispatch.LOCATION_HISTORY_LIMIT,
        ),
        db=db,
        bridge=bridge,
        worker=worker,
    )


async def shutdown_container(container: AppContainer, owns_infra: bool) -> None:
    await container.presence.close()
    if container.worker is not None:
        await container.worker.stop()
    if container.bridge is not None:
        await container.bridge.stop()
    if owns_infra:
        from medride.infra.database import close_db
        from medride.infra.redis_client import close_redis

        if container.bridge is not None:
            await close_redis()
        await close_db()


def _error_response(error: DispatchError) -> JSONResponse:
    body = ErrorResponse(error_code=error.error_code, message=error.message, details=error.details or None)
    return JSONResponse(status_code=error.status_code, content=body.model_dump(mode="json"))


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(DispatchError)
    async def dispatch_error_handler(request: Request, exc: DispatchError) -> JSONResponse:
        return _error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [
            {"field": ".".join(str(part) for part in err.get("loc", ())), "message": err.get("msg", "")}
            for err in exc.errors()
        ]
        body = ErrorResponse(error_code="validation_error", message="Invalid request", details={"errors": errors})
        return JSONResponse(status_code=422, content=body.model_dump(mode="json"))

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        await log_error(
            f"Необработанная ошибка: {exc}",
            extra={"path": request.url.path, "method": request.method},
            exc_info=True,
        )
        body = ErrorResponse(error_code="internal_error", message="Internal server error")
        return JSONResponse(status_code=500, content=body.model_dump(mode="json"))


def create_app(container: AppContainer | None = None, config: Settings | None = None) -> FastAPI:
    """
    Создаёт приложение.

    Args:
        container: Готовые сервисы (тесты); если None, собираются из инфраструктуры
        config: Настройки; по умолчанию из config.json
    """
    config = config or default_settings
    owns_infra = container is None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging()
        app.state.started_at = time.monotonic()
        if app.state.container is None:
            app.state.container = await build_container(config)

        current: AppContainer = app.state.container
        await current.presence.start()
        if current.worker is not None:
            await current.worker.start()
        await log_info(f"{SERVICE_NAME} запущен")

        yield

        await shutdown_container(current, owns_infra)
        await log_info(f"{SERVICE_NAME} остановлен")

    app = FastAPI(
        title="MedRide Dispatch",
        description="Жизненный цикл поездок медицинского транспорта: тарифы, назначение водителей, realtime.",
        version=config.system.VERSION,
        lifespan=lifespan,
    )
    app.state.container = container
    app.state.started_at = time.monotonic()

    register_exception_handlers(app)

    app.include_router(rides_router, prefix="/api/v1")
    app.include_router(pricing_router, prefix="/api/v1")
    app.include_router(reconciler_router, prefix="/api/v1")
    app.include_router(locations_router, prefix="/api/v1")

    @app.get("/health", response_model=HealthStatus, tags=["Health"])
    async def health_check() -> HealthStatus:
        current: AppContainer = app.state.container
        dependencies: dict[str, str] = {}
        if current.db is not None:
            dependencies["postgres"] = "healthy" if await current.db.health_check() else "unhealthy"
        status = "healthy" if all(v == "healthy" for v in dependencies.values()) else "degraded"
        return HealthStatus(
            service=SERVICE_NAME,
            status=status,
            version=config.system.VERSION,
            uptime_seconds=round(time.monotonic() - app.state.started_at, 1),
            dependencies=dependencies,
        )

    @app.get("/stats", tags=["Stats"])
    async def get_stats() -> dict[str, Any]:
        return app.state.container.presence.get_stats()

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket) -> None:
        current: AppContainer = websocket.app.state.container
        await serve_connection(websocket, current.presence, current.authenticator)

    return app


app = create_app()
