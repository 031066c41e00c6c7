# medride/services/pricing/repository.py
"""
Репозиторий канонической конфигурации тарифов (строка pricing_config с id = 1).
Если записи нет, она создаётся лениво из значений по умолчанию config.json.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from asyncpg import Record
from pydantic import ValidationError as PydanticValidationError

from medride.common.exceptions import ValidationError
from medride.common.logger import log_info
from medride.config.loader import FareSettings
from medride.infra.database import DatabaseManager
from medride.shared.models.pricing import AdditionalFees, PricingConfig, PricingUpdateRequest

_COLUMNS = """
    base_fare, per_mile_rate, minimum_fare, cancellation_fee,
    surge_multiplier_min, surge_multiplier_max,
    night_charge, peak_hour_charge, holiday_charge,
    last_updated, updated_by
"""


def _row_to_config(row: Record | dict[str, Any]) -> PricingConfig:
    return PricingConfig(
        base_fare=row["base_fare"],
        per_mile_rate=row["per_mile_rate"],
        minimum_fare=row["minimum_fare"],
        cancellation_fee=row["cancellation_fee"],
        surge_multiplier_min=row["surge_multiplier_min"],
        surge_multiplier_max=row["surge_multiplier_max"],
        additional_fees=AdditionalFees(
            night_charge=row["night_charge"],
            peak_hour_charge=row["peak_hour_charge"],
            holiday_charge=row["holiday_charge"],
        ),
        last_updated=row["last_updated"],
        updated_by=row["updated_by"],
    )


class PricingConfigRepository:
    """Репозиторий тарифов."""

    def __init__(self, db: DatabaseManager, defaults: FareSettings) -> None:
        """
        Args:
            db: Менеджер базы данных
            defaults: Тарифы по умолчанию для первичного создания записи
        """
        self._db = db
        self._defaults = defaults

    async def get_config(self) -> PricingConfig:
        """Возвращает текущую конфигурацию, при необходимости создавая её."""
        row = await self._db.fetchrow(f"SELECT {_COLUMNS} FROM pricing_config WHERE id = 1")
        if row is not None:
            return _row_to_config(row)

        d = self._defaults
        row = await self._db.fetchrow(
            f"""
            INSERT INTO pricing_config (
                id, base_fare, per_mile_rate, minimum_fare, cancellation_fee,
                surge_multiplier_min, surge_multiplier_max,
                night_charge, peak_hour_charge, holiday_charge
            )
            VALUES (1, $1, $2, $3, $4, $5, $6, $7, $8, $9)
            ON CONFLICT (id) DO UPDATE SET id = pricing_config.id
            RETURNING {_COLUMNS}
            """,
            d.BASE_FARE,
            d.PER_MILE_RATE,
            d.MINIMUM_FARE,
            d.CANCELLATION_FEE,
            d.SURGE_MULTIPLIER_MIN,
            d.SURGE_MULTIPLIER_MAX,
            d.NIGHT_CHARGE,
            d.PEAK_HOUR_CHARGE,
            d.HOLIDAY_CHARGE,
        )
        await log_info("Создана конфигурация тарифов по умолчанию")
        return _row_to_config(row)

    async def update(self, request: PricingUpdateRequest, updated_by: UUID) -> PricingConfig:
        """
        Частично обновляет конфигурацию одним UPDATE.

        Raises:
            ValidationError: итоговая конфигурация противоречива (например, surge min > max)
        """
        current = await self.get_config()
        merged = current.model_dump()
        changes = request.model_dump(exclude_none=True)
        fee_changes = changes.pop("additional_fees", {})
        merged.update(changes)
        merged["additional_fees"].update(fee_changes)
        try:
            PricingConfig.model_validate(merged)
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid pricing configuration",
                {"errors": e.errors(include_url=False, include_context=False)},
            ) from None

        fees = request.additional_fees
        row = await self._db.fetchrow(
            f"""
            UPDATE pricing_config SET
                base_fare = COALESCE($1, base_fare),
                per_mile_rate = COALESCE($2, per_mile_rate),
                minimum_fare = COALESCE($3, minimum_fare),
                cancellation_fee = COALESCE($4, cancellation_fee),
                surge_multiplier_min = COALESCE($5, surge_multiplier_min),
                surge_multiplier_max = COALESCE($6, surge_multiplier_max),
                night_charge = COALESCE($7, night_charge),
                peak_hour_charge = COALESCE($8, peak_hour_charge),
                holiday_charge = COALESCE($9, holiday_charge),
                last_updated = NOW(),
                updated_by = $10
            WHERE id = 1
            RETURNING {_COLUMNS}
            """,
            request.base_fare,
            request.per_mile_rate,
            request.minimum_fare,
            request.cancellation_fee,
            request.surge_multiplier_min,
            request.surge_multiplier_max,
            fees.night_charge if fees else None,
            fees.peak_hour_charge if fees else None,
            fees.holiday_charge if fees else None,
            updated_by,
        )
        config = _row_to_config(row)
        await log_info(
            "Конфигурация тарифов обновлена",
            extra={"updated_by": str(updated_by), "fields": sorted(changes) + sorted(fee_changes)},
        )
        return config
