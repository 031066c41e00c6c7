# medride/services/reconciler/routes.py
from typing import Any

from fastapi import APIRouter, Depends

from medride.common.constants import UserRole
from medride.services.reconciler.service import OrphanReconciler
from medride.services.rides.dependencies import get_current_identity, get_reconciler
from medride.services.rides.service import require_role
from medride.shared.models.user import Identity

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.post("/reconcile")
async def reconcile_orphans(
    actor: Identity = Depends(get_current_identity),
    reconciler: OrphanReconciler = Depends(get_reconciler),
) -> dict[str, Any]:
    """Внеплановая очистка поездок-сирот."""
    require_role(actor, UserRole.ADMIN)
    report = await reconciler.sweep()
    return report.to_dict()
