# medride/common/constants.py
"""
Общие константы и перечисления.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class UserRole(str, Enum):
    """Роли пользователей."""
    PATIENT = "patient"
    DRIVER = "driver"
    FACILITY = "facility"
    ADMIN = "admin"

    def __str__(self) -> str:
        return self.value


class RideStatus(str, Enum):
    """Статусы поездки."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    def __str__(self) -> str:
        return self.value


class PaymentStatus(str, Enum):
    """Статусы оплаты (владелец поля - платёжный сервис)."""
    UNPAID = "unpaid"
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"

    def __str__(self) -> str:
        return self.value


class Channel:
    """Имена логических каналов рассылки."""
    DRIVERS = "drivers"

    @staticmethod
    def user(user_id: object) -> str:
        return f"user:{user_id}"

    @staticmethod
    def ride(ride_id: object) -> str:
        return f"ride:{ride_id}"


class RealtimeEvent:
    """Имена событий realtime-протокола."""
    # клиент -> сервер
    JOIN_RIDE = "joinRide"
    LEAVE_RIDE = "leaveRide"
    PING = "ping"

    # сервер -> клиент
    PONG = "pong"
    NEW_RIDE = "newRide"
    RIDE_UPDATE = "rideUpdate"
    RIDE_STATUS_CHANGE = "rideStatusChange"
    RIDE_RATED = "ride-rated"
    DRIVER_LOCATION = "driverLocation"
    ERROR = "error"


DEFAULT_CANCELLATION_REASON = "No reason provided"
