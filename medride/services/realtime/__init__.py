# medride/services/realtime/__init__.py
"""
Realtime: реестр соединений, рассылка событий, мост Redis, WebSocket.
"""

from medride.services.realtime.fanout import FanoutService
from medride.services.realtime.presence import PresenceRegistry

__all__ = ["FanoutService", "PresenceRegistry"]
