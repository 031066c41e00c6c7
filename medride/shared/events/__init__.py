# medride/shared/events/__init__.py
"""Сообщения realtime-протокола."""
