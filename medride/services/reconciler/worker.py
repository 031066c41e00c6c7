# medride/services/reconciler/worker.py
"""
Ежедневный запуск очистки поездок-сирот.
Первый проход в ближайший RECONCILER_RUN_AT_HOUR по локальной таймзоне,
далее каждые RECONCILER_INTERVAL_HOURS часов.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from medride.common.logger import log_error, log_info
from medride.services.reconciler.service import OrphanReconciler


def seconds_until(run_at_hour: int, now: datetime) -> float:
    """Секунды до ближайшего наступления run_at_hour:00 (в таймзоне now)."""
    target = now.replace(hour=run_at_hour, minute=0, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


class ReconcilerWorker:
    """Фоновая задача с расписанием для OrphanReconciler."""

    def __init__(
        self,
        reconciler: OrphanReconciler,
        *,
        run_at_hour: int = 0,
        interval_hours: int = 24,
        timezone: str = "UTC",
    ) -> None:
        self._reconciler = reconciler
        self._run_at_hour = run_at_hour
        self._interval = interval_hours * 3600
        self._tz = ZoneInfo(timezone)
        self._task: asyncio.Task | None = None

    @property
    def name(self) -> str:
        return "orphan_reconciler"

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=self.name)
        await log_info(f"Воркер {self.name} запущен")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        await log_info(f"Воркер {self.name} остановлен")

    async def run_once(self) -> None:
        """Один проход; ошибка логируется и не останавливает расписание."""
        try:
            await self._reconciler.sweep()
        except Exception as e:
            await log_error(f"Ошибка в воркере {self.name}: {e}", exc_info=True)

    async def _run(self) -> None:
        delay = seconds_until(self._run_at_hour, datetime.now(self._tz))
        await log_info(
            f"Первый проход {self.name} через {delay / 3600:.1f} ч",
        )
        await asyncio.sleep(delay)
        while True:
            await self.run_once()
            await asyncio.sleep(self._interval)
