# medride/services/rides/dependencies.py
"""
Зависимости FastAPI: сервисы берутся из контейнера, созданного в lifespan.
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Depends, Request

from medride.services.auth.tokens import TokenAuthenticator, extract_bearer
from medride.services.locations.service import LocationService
from medride.services.pricing.repository import PricingConfigRepository
from medride.services.realtime.fanout import FanoutService
from medride.services.realtime.presence import PresenceRegistry
from medride.services.realtime.redis_bridge import RedisBridge
from medride.services.reconciler.service import OrphanReconciler
from medride.services.reconciler.worker import ReconcilerWorker
from medride.services.rides.service import RideService
from medride.infra.database import DatabaseManager
from medride.shared.models.user import Identity


@dataclass
class AppContainer:
    """Объекты процесса, разделяемые обработчиками запросов."""
    presence: PresenceRegistry
    fanout: FanoutService
    rides: RideService
    pricing: PricingConfigRepository
    authenticator: TokenAuthenticator
    reconciler: OrphanReconciler
    locations: LocationService
    db: DatabaseManager | None = None
    bridge: RedisBridge | None = None
    worker: ReconcilerWorker | None = None


def get_container(request: Request) -> AppContainer:
    return request.app.state.container


def get_ride_service(container: AppContainer = Depends(get_container)) -> RideService:
    return container.rides


def get_pricing_repository(container: AppContainer = Depends(get_container)) -> PricingConfigRepository:
    return container.pricing


def get_location_service(container: AppContainer = Depends(get_container)) -> LocationService:
    return container.locations


def get_reconciler(container: AppContainer = Depends(get_container)) -> OrphanReconciler:
    return container.reconciler


async def get_current_identity(
    request: Request,
    container: AppContainer = Depends(get_container),
) -> Identity:
    """Идентичность по заголовку Authorization: Bearer; иначе AuthError (401)."""
    token = extract_bearer(request.headers.get("authorization"))
    return await container.authenticator.authenticate(token)
