# medride/services/pricing/engine.py
"""
Расчёт стоимости поездки.

Чистая функция без побочных эффектов: используется при создании поездки
и при административном пересчёте.

Логика:
- Плата за расстояние: distance * per_mile_rate
- Ночная надбавка: локальный час в [22:00, 06:00)
- Пиковая надбавка: локальный час в [07, 09] или [16, 19], только будни
- Праздничная надбавка: локальная дата в списке праздников
- subtotal = base + distance + надбавки; total = max(subtotal, minimum_fare)

Каждая денежная величина округляется до центов на каждом шаге накопления.
"""

from __future__ import annotations

import math
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from medride.common.exceptions import InvalidFareInput
from medride.shared.models.pricing import PricingConfig
from medride.shared.models.ride import DistanceCharge, Fare, FareItem, FareLines

BASE_FARE_NAME = "Base Fare"
DISTANCE_CHARGE_NAME = "Distance Charge"
NIGHT_CHARGE_NAME = "Night Hours Charge"
PEAK_HOUR_CHARGE_NAME = "Peak Hour Charge"
HOLIDAY_CHARGE_NAME = "Holiday Charge"

_CENT = Decimal("0.01")


def round2(value: float | Decimal) -> Decimal:
    """Округление до центов (half-up), как хранится в БД."""
    return Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP)


def is_night(hour: int) -> bool:
    return hour >= 22 or hour < 6


def is_peak(hour: int, weekday: int) -> bool:
    """weekday: 0 = понедельник ... 6 = воскресенье."""
    in_window = 7 <= hour <= 9 or 16 <= hour <= 19
    return in_window and weekday < 5


def to_local_time(scheduled_time: datetime | str, tz_name: str) -> datetime:
    """
    Приводит время поездки к локальной таймзоне сервиса.
    Наивное время считается уже локальным.
    """
    if isinstance(scheduled_time, str):
        raw = scheduled_time.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            scheduled_time = datetime.fromisoformat(raw)
        except ValueError:
            raise InvalidFareInput(
                "Scheduled time is not a valid ISO-8601 timestamp",
                {"field": "scheduledTime", "value": scheduled_time},
            ) from None

    if not isinstance(scheduled_time, datetime):
        raise InvalidFareInput(
            "Scheduled time is required",
            {"field": "scheduledTime"},
        )

    if scheduled_time.tzinfo is None:
        return scheduled_time

    try:
        return scheduled_time.astimezone(ZoneInfo(tz_name))
    except ZoneInfoNotFoundError:
        raise InvalidFareInput(f"Unknown timezone '{tz_name}'", {"field": "timezone"}) from None


def _parse_holidays(holidays: Iterable[str | date] | None) -> set[date]:
    result: set[date] = set()
    for item in holidays or ():
        result.add(item if isinstance(item, date) else date.fromisoformat(item))
    return result


def compute_fare(
    distance: float,
    scheduled_time: datetime | str,
    pricing: PricingConfig,
    *,
    tz_name: str = "UTC",
    holidays: Iterable[str | date] | None = None,
) -> Fare:
    """
    Рассчитывает стоимость поездки.

    Args:
        distance: Расстояние в милях (>= 0)
        scheduled_time: Запланированное время (datetime или ISO-8601 строка)
        pricing: Текущая конфигурация тарифов
        tz_name: IANA-таймзона для определения ночного и пикового времени
        holidays: Даты праздников (ISO-8601 или date)

    Returns:
        Fare с разбивкой по статьям

    Raises:
        InvalidFareInput: отрицательное или нечисловое расстояние, нераспознанное время
    """
    if isinstance(distance, bool) or not isinstance(distance, (int, float, Decimal)):
        raise InvalidFareInput("Distance must be a number", {"field": "distance"})
    if not math.isfinite(float(distance)) or distance < 0:
        raise InvalidFareInput(
            "Distance must be a non-negative number",
            {"field": "distance", "value": float(distance)},
        )

    local = to_local_time(scheduled_time, tz_name)

    base_fare = round2(pricing.base_fare)
    distance_charge = round2(Decimal(str(distance)) * Decimal(str(pricing.per_mile_rate)))

    fees = pricing.additional_fees
    additional: list[FareItem] = []
    if is_night(local.hour) and fees.night_charge > 0:
        additional.append(FareItem(name=NIGHT_CHARGE_NAME, amount=float(round2(fees.night_charge))))
    if is_peak(local.hour, local.weekday()) and fees.peak_hour_charge > 0:
        additional.append(FareItem(name=PEAK_HOUR_CHARGE_NAME, amount=float(round2(fees.peak_hour_charge))))
    if fees.holiday_charge > 0 and local.date() in _parse_holidays(holidays):
        additional.append(FareItem(name=HOLIDAY_CHARGE_NAME, amount=float(round2(fees.holiday_charge))))

    subtotal = round2(base_fare + distance_charge)
    for fee in additional:
        subtotal = round2(subtotal + Decimal(str(fee.amount)))

    minimum_fare = round2(pricing.minimum_fare)
    total = max(subtotal, minimum_fare)

    return Fare(
        total=float(total),
        subtotal=float(subtotal),
        breakdown=FareLines(
            base_fare=FareItem(name=BASE_FARE_NAME, amount=float(base_fare)),
            distance=DistanceCharge(
                name=DISTANCE_CHARGE_NAME,
                amount=float(distance_charge),
                details=f"{float(distance):.1f} miles at ${pricing.per_mile_rate:g}/mile",
            ),
            additional_fees=additional,
        ),
        minimum_fare_applied=total > subtotal,
    )
