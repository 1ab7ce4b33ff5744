import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Tuple

from .models import (
    ConfirmResult,
    ConfirmStatus,
    OperationKind,
    PendingOperation,
    RequestStatus,
)

logger = logging.getLogger(__name__)

# 待确认操作有效期
CONFIRM_TTL = timedelta(minutes=5)


class ConfirmationGate:
    """Two-phase request/confirm guard for bulk admin actions

    State is kept per operator in memory only. Expiry is checked lazily on
    every request/confirm and by sweep().
    """

    def __init__(self, ttl: timedelta = CONFIRM_TTL, clock: Callable[[], datetime] = datetime.now):
        self.ttl = ttl
        self.clock = clock
        self._pending: Dict[int, PendingOperation] = {}

    def _is_expired(self, op: PendingOperation, now: datetime) -> bool:
        return now - op.created_at > self.ttl

    def request(self, operator_id: int, kind: OperationKind, payload: Optional[str] = None,
                expected_count: int = 0) -> Tuple[RequestStatus, PendingOperation]:
        """Store a pending operation unless the operator already has a live one

        Returns the new operation, or the existing one on CONFLICT.
        """
        now = self.clock()
        existing = self._pending.get(operator_id)
        if existing is not None:
            if not self._is_expired(existing, now):
                return RequestStatus.CONFLICT, existing
            del self._pending[operator_id]

        op = PendingOperation(
            kind=kind,
            operator_id=operator_id,
            created_at=now,
            payload=payload,
            expected_count=expected_count,
        )
        self._pending[operator_id] = op
        logger.info(f"⏳ 管理员 {operator_id} 发起待确认操作: {kind.value}")
        return RequestStatus.PENDING, op

    def confirm(self, operator_id: int, kind: Optional[OperationKind] = None) -> ConfirmResult:
        """Consume the operator's pending operation

        The pending state is cleared before the result is returned, so a
        second confirm can never run the same operation twice. An expired
        operation is dropped and reported as EXPIRED whatever kind was asked
        for. If kind is given and does not match a live operation, it stays
        pending and NOT_FOUND is returned.
        """
        op = self._pending.get(operator_id)
        if op is None:
            return ConfirmResult(ConfirmStatus.NOT_FOUND)

        if self._is_expired(op, self.clock()):
            del self._pending[operator_id]
            logger.info(f"⌛ 管理员 {operator_id} 的操作已过期: {op.kind.value}")
            return ConfirmResult(ConfirmStatus.EXPIRED, op)

        if kind is not None and op.kind != kind:
            return ConfirmResult(ConfirmStatus.NOT_FOUND)

        del self._pending[operator_id]
        logger.info(f"✅ 管理员 {operator_id} 确认操作: {op.kind.value}")
        return ConfirmResult(ConfirmStatus.CONFIRMED, op)

    def cancel(self, operator_id: int) -> Optional[PendingOperation]:
        """Drop the operator's pending operation, if any"""
        op = self._pending.pop(operator_id, None)
        if op is not None:
            logger.info(f"🚫 管理员 {operator_id} 取消操作: {op.kind.value}")
        return op

    def pending(self, operator_id: int) -> Optional[PendingOperation]:
        op = self._pending.get(operator_id)
        if op is not None and self._is_expired(op, self.clock()):
            return None
        return op

    def sweep(self) -> int:
        """Remove all expired operations, returns how many were removed"""
        now = self.clock()
        expired = [oid for oid, op in self._pending.items() if self._is_expired(op, now)]
        for oid in expired:
            del self._pending[oid]
        if expired:
            logger.info(f"🧹 清理过期待确认操作 {len(expired)} 个")
        return len(expired)
