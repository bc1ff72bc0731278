"""In-process store for hosted-card checkouts between intent creation and finalization"""

import uuid
from datetime import timedelta
from typing import Dict

from pos_settlement.domain.exceptions import PendingTransactionNotFound
from pos_settlement.domain.models import PendingTransaction
from pos_settlement.utils.date_utils import utcnow


class PendingTransactionStore:
    """TTL-bounded pending transactions, owned by the application instance"""

    def __init__(self, ttl_seconds: int):
        self.ttl = timedelta(seconds=ttl_seconds)
        self._pending: Dict[str, PendingTransaction] = {}

    def put(self, pending: PendingTransaction) -> PendingTransaction:
        self.purge_expired()
        pending.id = pending.id or uuid.uuid4().hex
        pending.created_at = utcnow()
        self._pending[pending.id] = pending
        return pending

    def get(self, pending_id: str) -> PendingTransaction:
        self.purge_expired()
        pending = self._pending.get(pending_id)
        if pending is None:
            raise PendingTransactionNotFound(f"Pending transaction {pending_id} not found or expired")
        return pending

    def discard(self, pending_id: str) -> None:
        self._pending.pop(pending_id, None)

    def purge_expired(self) -> int:
        cutoff = utcnow() - self.ttl
        expired = [key for key, pending in self._pending.items() if pending.created_at < cutoff]
        for key in expired:
            del self._pending[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._pending)
