# medride/shared/models/user.py
"""
Идентичность пользователя, полученная от сервиса пользователей.
"""

from __future__ import annotations

from uuid import UUID

from medride.common.constants import UserRole
from medride.shared.models.common import CamelModel


class Identity(CamelModel):
    id: UUID
    role: UserRole
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None

    @property
    def is_driver(self) -> bool:
        return self.role == UserRole.DRIVER

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN
