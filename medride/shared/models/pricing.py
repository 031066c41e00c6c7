# medride/shared/models/pricing.py
"""
Каноническая конфигурация тарифов и запрос на её изменение.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import Field, model_validator

from medride.shared.models.common import CamelModel


class AdditionalFees(CamelModel):
    """Именованные надбавки, добавляются до применения минимального тарифа."""

    night_charge: float = Field(default=0.0, ge=0)
    peak_hour_charge: float = Field(default=0.0, ge=0)
    holiday_charge: float = Field(default=0.0, ge=0)


class PricingConfig(CamelModel):
    base_fare: float = Field(ge=0)
    per_mile_rate: float = Field(ge=0)
    minimum_fare: float = Field(ge=0)
    cancellation_fee: float = Field(default=0.0, ge=0)
    surge_multiplier_min: float = Field(default=1.0, ge=1.0)
    surge_multiplier_max: float = Field(default=3.0, ge=1.0)
    additional_fees: AdditionalFees = Field(default_factory=AdditionalFees)
    last_updated: datetime | None = None
    updated_by: UUID | None = None

    @model_validator(mode="after")
    def check_surge_bounds(self) -> "PricingConfig":
        if self.surge_multiplier_min > self.surge_multiplier_max:
            raise ValueError("surgeMultiplierMin must not exceed surgeMultiplierMax")
        return self


class AdditionalFeesUpdate(CamelModel):
    night_charge: float | None = Field(default=None, ge=0)
    peak_hour_charge: float | None = Field(default=None, ge=0)
    holiday_charge: float | None = Field(default=None, ge=0)


class PricingUpdateRequest(CamelModel):
    """Частичное обновление: переданные поля заменяют текущие значения."""

    base_fare: float | None = Field(default=None, ge=0)
    per_mile_rate: float | None = Field(default=None, ge=0)
    minimum_fare: float | None = Field(default=None, ge=0)
    cancellation_fee: float | None = Field(default=None, ge=0)
    surge_multiplier_min: float | None = Field(default=None, ge=1.0)
    surge_multiplier_max: float | None = Field(default=None, ge=1.0)
    additional_fees: AdditionalFeesUpdate | None = None
