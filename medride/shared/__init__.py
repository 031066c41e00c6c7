# medride/shared/__init__.py
"""Общие DTO и сообщения, которыми обмениваются сервисы."""
