"""
Webhook receipt log.

A receipt is written for every inbound attempt before anything else happens,
then closed exactly once. The conditional UPDATE (status = 'received') makes
the received -> processed / received -> failed transition the only legal one.
"""

import logging
from typing import List, Optional

from sqlalchemy import select, update

from ordersync.models import ReceiptStatus, WebhookReceipt, utcnow

logger = logging.getLogger(__name__)


class WebhookReceiptLog:

    def __init__(self, session_maker):
        self.session_maker = session_maker

    async def record_received(
        self,
        channel_identifier: str,
        event_type: str,
        payload: Optional[str],
        channel_db_id: Optional[str] = None,
    ) -> str:
        """Append a `received` receipt and return its id."""
        receipt = WebhookReceipt(
            channel_id=channel_db_id,
            channel_identifier=channel_identifier,
            event_type=event_type,
            payload=payload,
            status=ReceiptStatus.RECEIVED.value,
        )
        async with self.session_maker() as session:
            async with session.begin():
                session.add(receipt)
        return receipt.id

    async def _close(self, receipt_id: str, status: ReceiptStatus, **values) -> bool:
        async with self.session_maker() as session:
            async with session.begin():
                result = await session.execute(
                    update(WebhookReceipt)
                    .where(
                        WebhookReceipt.id == receipt_id,
                        WebhookReceipt.status == ReceiptStatus.RECEIVED.value,
                    )
                    .values(status=status.value, processed_at=utcnow(), **values)
                )
        closed = result.rowcount == 1
        if not closed:
            logger.warning(f"Webhook receipt {receipt_id} was already closed; {status.value} ignored")
        return closed

    async def mark_processed(self, receipt_id: str) -> bool:
        return await self._close(receipt_id, ReceiptStatus.PROCESSED, signature_valid=True)

    async def mark_failed(self, receipt_id: str, error: str, signature_valid: Optional[bool] = None) -> bool:
        return await self._close(
            receipt_id, ReceiptStatus.FAILED, error_message=error, signature_valid=signature_valid
        )

    async def get(self, receipt_id: str) -> Optional[WebhookReceipt]:
        async with self.session_maker() as session:
            return await session.get(WebhookReceipt, receipt_id)

    async def recent(self, channel_identifier: str, limit: int = 50) -> List[WebhookReceipt]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(WebhookReceipt)
                .where(WebhookReceipt.channel_identifier == channel_identifier)
                .order_by(WebhookReceipt.received_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())
