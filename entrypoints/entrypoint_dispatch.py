#!/usr/bin/env python3
"""
Entrypoint для API и WebSocket ядра диспетчеризации.

Запуск:
    python entrypoints/entrypoint_dispatch.py

Порт по умолчанию: 8085
"""

import sys
from pathlib import Path

# Добавляем корневую директорию проекта в путь
project_root = Path(__file__).parent.parent.resolve()
sys.path.insert(0, str(project_root))

import uvicorn

from medride.common.logger import setup_logging
from medride.config import settings


def main() -> None:
    """Запустить API и WebSocket диспетчеризации."""
    setup_logging()

    uvicorn.run(
        "medride.services.rides.app:app",
        host=settings.deployment.DISPATCH_HOST,
        port=settings.deployment.DISPATCH_PORT,
        reload=settings.system.DEBUG,
        log_level=settings.logging.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
