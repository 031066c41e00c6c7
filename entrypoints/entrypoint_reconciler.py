#!/usr/bin/env python3
# entrypoint_reconciler.py
"""
Точка входа для отдельного процесса очистки поездок-сирот.

Запуск:
    python entrypoints/entrypoint_reconciler.py          # по расписанию
    python entrypoints/entrypoint_reconciler.py --once   # один проход и выход
"""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
from pathlib import Path

# Добавляем корневую директорию проекта в путь
project_root = Path(__file__).parent.parent.resolve()
sys.path.insert(0, str(project_root))

from medride.common.constants import TypeMsg
from medride.common.logger import log_info, setup_logging
from medride.config import settings
from medride.infra.database import close_db, init_db
from medride.services.reconciler import OrphanReconciler, ReconcilerWorker
from medride.services.rides.repository import RideRepository
from medride.services.users.repository import UserDirectory


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Очистка поездок, ссылающихся на удалённых пациентов")
    parser.add_argument("--once", action="store_true", help="выполнить один проход и завершиться")
    return parser.parse_args(argv)


async def run(once: bool) -> None:
    setup_logging()
    db = await init_db()
    reconciler = OrphanReconciler(
        RideRepository(db),
        UserDirectory(db),
        batch_size=settings.reconciler.RECONCILER_BATCH_SIZE,
    )

    try:
        if once:
            report = await reconciler.sweep()
            print(json.dumps(report.to_dict(), ensure_ascii=False, indent=2))
            return

        worker = ReconcilerWorker(
            reconciler,
            run_at_hour=settings.reconciler.RECONCILER_RUN_AT_HOUR,
            interval_hours=settings.reconciler.RECONCILER_INTERVAL_HOURS,
            timezone=settings.domain.TIMEZONE,
        )
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        try:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows не поддерживает add_signal_handler
            signal.signal(signal.SIGINT, lambda s, f: stop_event.set())

        await worker.start()
        await stop_event.wait()
        await worker.stop()
    finally:
        await close_db()
        await log_info("Процесс очистки остановлен", type_msg=TypeMsg.INFO)


if __name__ == "__main__":
    args = parse_args()
    try:
        asyncio.run(run(args.once))
    except KeyboardInterrupt:
        pass
