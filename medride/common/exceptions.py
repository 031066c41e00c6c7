# medride/common/exceptions.py
"""
Иерархия доменных ошибок.
Каждая ошибка несёт машинный код и HTTP-статус, которые обработчики
FastAPI превращают в ErrorResponse.
"""

from __future__ import annotations

from typing import Any, Iterable


class DispatchError(Exception):
    """Базовая ошибка ядра диспетчеризации."""

    error_code: str = "dispatch_error"
    status_code: int = 400

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details or None,
        }


class ValidationError(DispatchError):
    """Некорректные или отсутствующие поля входных данных."""

    error_code = "validation_error"
    status_code = 422


class InvalidFareInput(ValidationError):
    """Отрицательное расстояние или нераспознаваемое время поездки."""

    error_code = "invalid_fare_input"


class AuthError(DispatchError):
    """Нет токена, токен просрочен/повреждён или пользователь больше не существует."""

    error_code = "unauthenticated"
    status_code = 401


class AuthorizationError(DispatchError):
    """Пользователь аутентифицирован, но роль или участие не позволяют действие."""

    error_code = "forbidden"
    status_code = 403


class NotFound(DispatchError):
    error_code = "not_found"
    status_code = 404


class InvalidTransition(DispatchError):
    """Запрошен переход, которого нет в таблице переходов."""

    error_code = "invalid_transition"
    status_code = 409

    def __init__(self, current: str, requested: str, allowed: Iterable[str]) -> None:
        allowed_list = sorted(str(s) for s in allowed)
        super().__init__(
            f"Cannot transition ride from '{current}' to '{requested}'",
            {"current": str(current), "requested": str(requested), "allowed": allowed_list},
        )
        self.current = str(current)
        self.requested = str(requested)
        self.allowed = allowed_list


class ClaimRequired(InvalidTransition):
    """Назначение водителя вызвано обычным переходом вместо атомарного захвата."""

    error_code = "claim_required"

    def __init__(self, current: str, requested: str, allowed: Iterable[str]) -> None:
        super().__init__(current, requested, allowed)
        self.message = "Rides can only be accepted through the claim operation"
        self.args = (self.message,)


class ClaimConflict(DispatchError):
    """Поездку уже забрал другой водитель или она отменена. Клиент может повторить поиск."""

    error_code = "ride_unavailable"
    status_code = 409

    def __init__(self, ride_id: Any) -> None:
        super().__init__(
            "Ride is no longer available",
            {"ride_id": str(ride_id), "retryable": True},
        )
        self.ride_id = ride_id


class ReferentialIntegrityViolation(DispatchError):
    """Поездка ссылается на несуществующего пациента."""

    error_code = "referential_integrity_violation"
    status_code = 422
