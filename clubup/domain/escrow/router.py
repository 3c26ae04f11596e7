"""Escrow router - FastAPI endpoints for payment holds"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...errors import InvalidInput
from ...models import User
from .schemas import EscrowActionRequest, EscrowRole
from .service import EscrowService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/escrow", tags=["Escrow"])


def get_escrow_service(db: Session = Depends(get_db)) -> EscrowService:
    """Dependency injection for EscrowService"""
    return EscrowService(db)


@router.post("")
async def escrow_action(
    body: EscrowActionRequest,
    user: User = Depends(get_current_user),
    service: EscrowService = Depends(get_escrow_service),
):
    """Seller shipping and release requests, buyer delivery confirmation"""
    if body.action == "mark_shipped":
        return service.mark_shipped(user, body.transaction_id, body.tracking_number, body.carrier)
    if body.action == "confirm_delivery":
        return service.confirm_delivery(user, body.transaction_id, body.satisfied, body.dispute_reason)
    if body.action == "request_release":
        return service.request_release(user, body.transaction_id)
    if body.action == "auto_release":
        return service.auto_release(user, body.transaction_id)

    logger.warning(f"⚠️ Unknown escrow action '{body.action}' from user {user.id}")
    raise InvalidInput("Invalid action", details={"action": body.action})


@router.get("")
async def escrow_status(
    transaction_id: Optional[int] = Query(None, alias="transactionId"),
    status: Optional[str] = None,
    role: Optional[EscrowRole] = None,
    user: User = Depends(get_current_user),
    service: EscrowService = Depends(get_escrow_service),
):
    """Hold status for one transaction, or the user's transactions"""
    if transaction_id is not None:
        return service.get_transaction_status(user, transaction_id)
    return service.list_transactions(user, role, status)
