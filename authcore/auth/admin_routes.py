from fastapi import APIRouter, Depends

from authcore.auth.dependencies import CurrentUser, get_auth_service, require_admin
from authcore.auth.service import AuthService
from authcore.core.logging import get_logger
from authcore.schemas.auth import CreditAdjustment, MessageResponse, UserDataResponse, UserStatusUpdate

logger = get_logger(__name__)

router = APIRouter()


@router.patch("/{user_id}/status", response_model=UserDataResponse)
async def update_user_status(
    user_id: str,
    payload: UserStatusUpdate,
    admin: CurrentUser = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
):
    """Activate, deactivate or block an account."""
    logger.info(f"admin_status_change | admin_id={admin.id} user_id={user_id} status={payload.status.value}")
    return await service.set_user_status(user_id, payload.status)


@router.delete("/{user_id}", response_model=MessageResponse)
async def delete_user(
    user_id: str,
    admin: CurrentUser = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
):
    """Soft-delete an account."""
    logger.info(f"admin_delete | admin_id={admin.id} user_id={user_id}")
    return await service.delete_user(user_id)


@router.post("/{user_id}/restore", response_model=UserDataResponse)
async def restore_user(
    user_id: str,
    admin: CurrentUser = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
):
    logger.info(f"admin_restore | admin_id={admin.id} user_id={user_id}")
    return await service.restore_user(user_id)


@router.delete("/{user_id}/permanent", response_model=MessageResponse)
async def purge_user(
    user_id: str,
    admin: CurrentUser = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
):
    """Hard-delete an account and its OTP history."""
    logger.info(f"admin_purge | admin_id={admin.id} user_id={user_id}")
    return await service.purge_user(user_id)


@router.post("/{user_id}/credits/add", response_model=UserDataResponse)
async def add_credits(
    user_id: str,
    payload: CreditAdjustment,
    admin: CurrentUser = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
):
    logger.info(f"admin_credits_add | admin_id={admin.id} user_id={user_id} amount={payload.amount}")
    return await service.add_credits(user_id, payload.amount)


@router.post("/{user_id}/credits/deduct", response_model=UserDataResponse)
async def deduct_credits(
    user_id: str,
    payload: CreditAdjustment,
    admin: CurrentUser = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
):
    logger.info(f"admin_credits_deduct | admin_id={admin.id} user_id={user_id} amount={payload.amount}")
    return await service.deduct_credits(user_id, payload.amount)
