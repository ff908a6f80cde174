from typing import Annotated, Optional
import uuid
import logging

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.services.payment_rail import PaymentRail, RazorpayRail


logger = logging.getLogger(__name__)


def get_payment_rail() -> PaymentRail:
    """Dependency for the payment rail used by payout settlement."""
    return RazorpayRail()


async def get_actor_id(
    x_actor_id: Annotated[Optional[uuid.UUID], Header()] = None,
) -> Optional[uuid.UUID]:
    """
    ID of the admin user making the request, recorded on audit entries.

    Authentication happens upstream; the gateway forwards the user id
    in the X-Actor-Id header.
    """
    return x_actor_id


DB = Annotated[AsyncSession, Depends(get_db)]
Actor = Annotated[Optional[uuid.UUID], Depends(get_actor_id)]
Rail = Annotated[PaymentRail, Depends(get_payment_rail)]
