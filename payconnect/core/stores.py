"""
Process-local correlation state for the payment workflow.

Both stores live in memory and are owned by the running process. Running more
than one worker process splits them, so the service is deployed as a single
instance. Nothing here awaits, which keeps every check-then-act sequence atomic
on the event loop.
"""

import time
import logging
from typing import Callable, Dict, Optional, Tuple

from .models import OrderState, PendingTransaction

logger = logging.getLogger(__name__)

DEFAULT_PENDING_TTL_SECONDS = 30 * 60
SUPPRESSION_WINDOW_SECONDS = 60


class PendingTransactionStore:
    """
    Order reference -> PendingTransaction, with a fixed time-to-live.

    Expired entries are dropped lazily the next time they are looked up
    (or on ``purge_expired``).
    """

    def __init__(self, ttl_seconds: float = DEFAULT_PENDING_TTL_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[PendingTransaction, float]] = {}

    def put(self, ref: str, record: PendingTransaction) -> None:
        self._entries[ref] = (record, self._clock() + self.ttl_seconds)

    def get(self, ref: str) -> Optional[PendingTransaction]:
        entry = self._entries.get(ref)
        if entry is None:
            return None

        record, expires_at = entry
        if self._clock() >= expires_at:
            logger.info(f"Pending transaction {ref} expired after {self.ttl_seconds:.0f}s")
            del self._entries[ref]
            return None
        return record

    def delete(self, ref: str) -> None:
        self._entries.pop(ref, None)

    def pop(self, ref: str) -> Optional[PendingTransaction]:
        """Return the live entry for ``ref`` (if any) and remove it."""
        record = self.get(ref)
        self.delete(ref)
        return record

    def merge_session_id(self, ref: str, session_id: str) -> Optional[PendingTransaction]:
        """Attach a Moolre OTP session id to an existing entry. Keeps its expiry."""
        record = self.get(ref)
        if record is None:
            logger.warning(f"Cannot attach session id to unknown order {ref}")
            return None
        record.session_id = session_id
        return record

    def set_state(self, ref: str, state: OrderState) -> Optional[PendingTransaction]:
        record = self.get(ref)
        if record is not None:
            logger.info(f"Order {ref}: {record.state.value} -> {state.value}")
            record.state = state
        return record

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [ref for ref, (_, expires_at) in self._entries.items() if now >= expires_at]
        for ref in expired:
            del self._entries[ref]
        return len(expired)

    def __contains__(self, ref: str) -> bool:
        return self.get(ref) is not None

    def __len__(self) -> int:
        return len(self._entries)


class DuplicateSuppressionWindow:
    """Order references handled in the last ``window_seconds``."""

    def __init__(self, window_seconds: float = SUPPRESSION_WINDOW_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self.window_seconds = window_seconds
        self._clock = clock
        self._expiry: Dict[str, float] = {}

    def should_process(self, ref: str) -> bool:
        expires_at = self._expiry.get(ref)
        if expires_at is None:
            return True
        if self._clock() >= expires_at:
            del self._expiry[ref]
            return True
        return False

    def record_processed(self, ref: str) -> None:
        self._expiry[ref] = self._clock() + self.window_seconds

    def claim(self, ref: str) -> bool:
        """Check and mark ``ref`` in one step. False means a duplicate."""
        if not self.should_process(ref):
            return False
        self.record_processed(ref)
        return True

    def __len__(self) -> int:
        now = self._clock()
        return sum(1 for expires_at in self._expiry.values() if now < expires_at)
