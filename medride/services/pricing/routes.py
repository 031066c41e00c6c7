# medride/services/pricing/routes.py
from fastapi import APIRouter, Depends

from medride.common.constants import UserRole
from medride.services.pricing.repository import PricingConfigRepository
from medride.services.rides.dependencies import get_current_identity, get_pricing_repository
from medride.services.rides.service import require_role
from medride.shared.models.pricing import PricingConfig, PricingUpdateRequest
from medride.shared.models.user import Identity

router = APIRouter(prefix="/pricing", tags=["Pricing"])


@router.get("", response_model=PricingConfig)
async def get_pricing(repository: PricingConfigRepository = Depends(get_pricing_repository)):
    return await repository.get_config()


@router.put("", response_model=PricingConfig)
async def update_pricing(
    request: PricingUpdateRequest,
    actor: Identity = Depends(get_current_identity),
    repository: PricingConfigRepository = Depends(get_pricing_repository),
):
    require_role(actor, UserRole.ADMIN)
    return await repository.update(request, actor.id)
