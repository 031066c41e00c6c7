# medride/shared/models/__init__.py
"""Pydantic модели, общие для сервисов."""

from medride.shared.models.common import (
    CamelModel,
    ErrorResponse,
    HealthStatus,
    PaginatedResponse,
    PaginationParams,
)
from medride.shared.models.pricing import PricingConfig, PricingUpdateRequest
from medride.shared.models.ride import Fare, GeoPoint, Place, Ride
from medride.shared.models.user import Identity

__all__ = [
    "CamelModel",
    "ErrorResponse",
    "HealthStatus",
    "PaginatedResponse",
    "PaginationParams",
    "PricingConfig",
    "PricingUpdateRequest",
    "Fare",
    "GeoPoint",
    "Place",
    "Ride",
    "Identity",
]
