# medride/services/reconciler/service.py
"""
Очистка поездок-сирот: удаляются поездки, чей пациент больше не существует.

Удаление только при подтверждённом отсутствии пациента. Если справочник
пользователей не ответил, поездка пропускается до следующего прохода.
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass, field
from typing import Any, Protocol
from uuid import UUID

from medride.common.logger import log_error, log_info, log_warning
from medride.services.rides.repository import RideRef


class RideSource(Protocol):
    async def page_refs(self, after_id: UUID | None, limit: int) -> list[RideRef]: ...

    async def delete_orphan(self, ride_id: UUID, patient_id: UUID) -> RideRef | None: ...


class PatientLookup(Protocol):
    async def exists(self, user_id: UUID) -> bool: ...


@dataclass
class SweepReport:
    checked: int = 0
    deleted: int = 0
    errors: int = 0
    orphaned: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class OrphanReconciler:
    """Проход по всем поездкам с проверкой ссылки на пациента."""

    def __init__(self, rides: RideSource, users: PatientLookup, batch_size: int = 500) -> None:
        self._rides = rides
        self._users = users
        self._batch_size = batch_size
        self._lock = asyncio.Lock()

    async def sweep(self) -> SweepReport:
        """
        Один полный проход. Параллельные вызовы выполняются по очереди.

        Returns:
            SweepReport: checked, deleted, errors и список удалённых поездок
        """
        async with self._lock:
            return await self._sweep()

    async def _sweep(self) -> SweepReport:
        report = SweepReport()
        # patient_id -> существует ли; ошибки не кэшируются
        known: dict[UUID, bool] = {}
        after_id: UUID | None = None

        await log_info("Начата проверка поездок-сирот")

        while True:
            batch = await self._rides.page_refs(after_id, self._batch_size)
            if not batch:
                break

            for ref in batch:
                report.checked += 1

                if ref.patient_id not in known:
                    try:
                        known[ref.patient_id] = await self._users.exists(ref.patient_id)
                    except Exception as e:
                        report.errors += 1
                        await log_warning(
                            f"Не удалось проверить пациента, поездка пропущена: {e}",
                            extra={"ride_id": str(ref.id), "patient_id": str(ref.patient_id)},
                        )
                        continue

                if known[ref.patient_id]:
                    continue

                try:
                    deleted = await self._rides.delete_orphan(ref.id, ref.patient_id)
                except Exception as e:
                    report.errors += 1
                    await log_error(
                        f"Ошибка удаления поездки-сироты: {e}",
                        extra={"ride_id": str(ref.id)},
                        exc_info=True,
                    )
                    continue

                if deleted is None:
                    continue

                report.deleted += 1
                entry = {
                    "ride_id": str(deleted.id),
                    "prior_status": str(deleted.status),
                    "patient_id": str(deleted.patient_id),
                }
                report.orphaned.append(entry)
                await log_info("Удалена поездка-сирота", extra=entry)

            after_id = batch[-1].id
            if len(batch) < self._batch_size:
                break

        await log_info(
            "Проверка поездок-сирот завершена",
            extra={"checked": report.checked, "deleted": report.deleted, "errors": report.errors},
        )
        return report
