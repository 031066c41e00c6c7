# medride/services/users/repository.py
"""
Поиск пользователей по ID.
Таблица users принадлежит сервису идентификации, здесь только чтение.
"""

from __future__ import annotations

from uuid import UUID

from medride.common.constants import UserRole
from medride.infra.database import DatabaseManager
from medride.shared.models.user import Identity


class UserDirectory:
    """Справочник пользователей."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def get_identity(self, user_id: UUID) -> Identity | None:
        """
        Активный пользователь по ID.

        Returns:
            Identity или None, если пользователя нет или он деактивирован.
            Ошибки БД пробрасываются: отсутствие и недоступность различаются.
        """
        row = await self._db.fetchrow(
            """
            SELECT id, role, email, first_name, last_name
            FROM users
            WHERE id = $1 AND is_active
            """,
            user_id,
        )
        if row is None:
            return None
        return Identity(
            id=row["id"],
            role=UserRole(row["role"]),
            email=row["email"],
            first_name=row["first_name"],
            last_name=row["last_name"],
        )

    async def exists(self, user_id: UUID) -> bool:
        """Есть ли запись пользователя (независимо от роли и активности)."""
        value = await self._db.fetchval(
            "SELECT EXISTS (SELECT 1 FROM users WHERE id = $1)",
            user_id,
        )
        return bool(value)
