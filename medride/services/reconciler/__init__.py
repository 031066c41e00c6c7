# medride/services/reconciler/__init__.py
"""Очистка поездок, ссылающихся на удалённых пациентов."""

from medride.services.reconciler.service import OrphanReconciler, SweepReport
from medride.services.reconciler.worker import ReconcilerWorker

__all__ = ["OrphanReconciler", "ReconcilerWorker", "SweepReport"]
