import logging
from typing import Optional, Dict, Any, List
import uuid

from pydantic_core import to_jsonable_python
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import AuditLoggingError
from app.models.audit_log import AuditLog

logger = logging.getLogger(__name__)


class AuditService:
    """
    Audit service for the commission engine.

    Every write is awaited in the caller's unit of work. If the insert
    fails the caller's operation fails with it.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log_action(
        self,
        action_type: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[uuid.UUID] = None,
        user_id: Optional[uuid.UUID] = None,
        partner_id: Optional[uuid.UUID] = None,
        details: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AuditLog:
        """
        Create an audit log entry.

        Args:
            action_type: COMMISSION_CALCULATED, EARNING_CREATED, PAYOUT_REQUESTED, ...
            entity_type: affiliate_earning, affiliate_payout, commission_batch, ...
            entity_id: ID of the affected entity
            user_id: ID of the user performing the action (None for jobs)
            partner_id: Partner the action concerns
            details: Free-form payload. Decimals are stored as strings.

        Raises:
            AuditLoggingError: if the entry could not be written
        """
        try:
            audit_log = AuditLog(
                action_type=action_type,
                entity_type=entity_type,
                entity_id=entity_id,
                user_id=user_id,
                partner_id=partner_id,
                details=to_jsonable_python(details or {}),
                ip_address=ip_address,
                user_agent=user_agent,
            )
            self.db.add(audit_log)
            await self.db.flush()
        except SQLAlchemyError as e:
            logger.error(f"Audit logging failed for {action_type}: {e}")
            raise AuditLoggingError(
                "Audit logging failed",
                {"action_type": action_type, "error": str(e)},
            ) from e
        return audit_log

    async def log_earning_action(
        self,
        action_type: str,
        earning_id: uuid.UUID,
        partner_id: Optional[uuid.UUID],
        details: Dict[str, Any],
        user_id: Optional[uuid.UUID] = None,
    ) -> AuditLog:
        """Log an action on an affiliate earning."""
        return await self.log_action(
            action_type=action_type,
            entity_type="affiliate_earning",
            entity_id=earning_id,
            user_id=user_id,
            partner_id=partner_id,
            details=details,
        )

    async def log_payout_action(
        self,
        action_type: str,
        payout_id: uuid.UUID,
        partner_id: uuid.UUID,
        details: Dict[str, Any],
        user_id: Optional[uuid.UUID] = None,
    ) -> AuditLog:
        """Log an action on a partner payout."""
        return await self.log_action(
            action_type=action_type,
            entity_type="affiliate_payout",
            entity_id=payout_id,
            user_id=user_id,
            partner_id=partner_id,
            details=details,
        )

    async def get_entity_audit_trail(
        self,
        entity_type: str,
        entity_id: uuid.UUID,
    ) -> List[AuditLog]:
        """Get the full audit trail for one entity, oldest first."""
        query = (
            select(AuditLog)
            .where(AuditLog.entity_type == entity_type)
            .where(AuditLog.entity_id == entity_id)
            .order_by(AuditLog.timestamp.asc())
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())
