# medride/services/realtime/ws.py
"""
Обработчик WebSocket-протокола.

Рукопожатие: токен в ?token= или в заголовке Authorization: Bearer.
Клиент шлёт joinRide{rideId}, leaveRide{rideId}, ping; сервер отвечает pong
и рассылает события поездок через реестр.
"""

from __future__ import annotations

import json

from fastapi import WebSocket, WebSocketDisconnect, status
from fastapi.websockets import WebSocketState
from pydantic import ValidationError as PydanticValidationError

from medride.common.constants import RealtimeEvent
from medride.common.exceptions import AuthError
from medride.common.logger import log_debug, log_info
from medride.services.auth.tokens import TokenAuthenticator, extract_bearer
from medride.services.realtime.presence import Connection, PresenceRegistry
from medride.shared.events.ride_events import ClientMessage, ErrorEvent, PongEvent


def credential_from(websocket: WebSocket) -> str | None:
    return websocket.query_params.get("token") or extract_bearer(websocket.headers.get("authorization"))


async def serve_connection(
    websocket: WebSocket,
    presence: PresenceRegistry,
    authenticator: TokenAuthenticator,
) -> None:
    """Полный цикл жизни одного соединения."""
    try:
        identity = await authenticator.authenticate(credential_from(websocket))
    except AuthError as e:
        await log_debug(f"WebSocket отклонён: {e.message}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=e.message)
        return

    await websocket.accept()
    connection = presence.register(websocket, identity)
    await log_info(
        "WebSocket подключён",
        extra={"connection_id": connection.id, "user_id": str(identity.id), "role": str(identity.role)},
    )

    try:
        while True:
            raw = await websocket.receive_text()
            await handle_client_message(presence, connection, raw)
    except WebSocketDisconnect:
        pass
    except RuntimeError:
        # Реестр уже закрыл сокет (вытеснение или ошибка отправки) между чтениями
        if websocket.application_state != WebSocketState.DISCONNECTED:
            raise
        await log_debug("WebSocket закрыт сервером", extra={"connection_id": connection.id})
    finally:
        await presence.disconnect(connection.id, reason="client closed")


async def handle_client_message(presence: PresenceRegistry, connection: Connection, raw: str) -> None:
    """Обрабатывает одно входящее сообщение клиента."""
    presence.touch(connection.id)

    try:
        message = ClientMessage.model_validate(json.loads(raw))
    except (json.JSONDecodeError, PydanticValidationError, TypeError):
        await presence.send(
            connection.id,
            ErrorEvent(error_code="validation_error", message="Malformed message").to_message(),
        )
        return

    match message.event:
        case RealtimeEvent.JOIN_RIDE:
            presence.join_ride(connection.id, message.ride_id)
        case RealtimeEvent.LEAVE_RIDE:
            presence.leave_ride(connection.id, message.ride_id)
        case RealtimeEvent.PING:
            presence.heartbeat(connection.id)
            await presence.send(connection.id, PongEvent().to_message())
        case _:
            await presence.send(
                connection.id,
                ErrorEvent(
                    error_code="unknown_event",
                    message=f"Unknown event '{message.event}'",
                ).to_message(),
            )
