# medride/services/auth/tokens.py
"""
Проверка bearer-токенов (JWT).

Токены выпускает внешний сервис аутентификации; здесь только проверка
подписи и срока действия и поиск пользователя по claim `sub`.
"""

from __future__ import annotations

from typing import Protocol
from uuid import UUID

import jwt

from medride.common.exceptions import AuthError
from medride.common.logger import log_debug
from medride.shared.models.user import Identity


class IdentityLookup(Protocol):
    async def get_identity(self, user_id: UUID) -> Identity | None: ...


def extract_bearer(header_value: str | None) -> str | None:
    """Достаёт токен из заголовка `Authorization: Bearer <token>`."""
    if not header_value:
        return None
    scheme, _, token = header_value.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class TokenAuthenticator:
    """Проверяет токен и возвращает идентичность пользователя."""

    def __init__(self, users: IdentityLookup, secret: str, algorithm: str = "HS256") -> None:
        self._users = users
        self._secret = secret
        self._algorithm = algorithm

    def decode_subject(self, token: str | None) -> UUID:
        """
        Raises:
            AuthError: токена нет, он просрочен, повреждён или без корректного sub
        """
        if not token:
            raise AuthError("Authentication token is required")
        if not self._secret:
            raise AuthError("Token verification is not configured")

        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"require": ["sub"]},
            )
        except jwt.ExpiredSignatureError:
            raise AuthError("Authentication token has expired") from None
        except jwt.PyJWTError:
            raise AuthError("Authentication token is invalid") from None

        try:
            return UUID(str(payload["sub"]))
        except ValueError:
            raise AuthError("Authentication token is invalid") from None

    async def authenticate(self, token: str | None) -> Identity:
        """
        Raises:
            AuthError: невалидный токен или пользователь больше не существует
        """
        user_id = self.decode_subject(token)
        identity = await self._users.get_identity(user_id)
        if identity is None:
            await log_debug("Токен ссылается на несуществующего пользователя", extra={"user_id": str(user_id)})
            raise AuthError("User no longer exists")
        return identity
