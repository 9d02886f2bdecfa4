"""
Replay protection for accepted payment signatures.

State is process-local and lost on restart. Running several server
instances requires a shared store implementing the same interface.
"""

import threading

from x402_oracle.logging_config import get_logger

logger = get_logger("replay_guard")


class ReplayGuard:
    """
    Bounded, insertion-ordered set of accepted transaction signatures.

    When the set grows past `max_entries`, only the newest `retain_entries`
    are kept. An evicted signature could in theory be accepted again, but by
    then it is far older than the verifier's freshness window.
    """

    def __init__(self, max_entries: int = 10_000, retain_entries: int = 5_000):
        if not 0 < retain_entries < max_entries:
            raise ValueError("retain_entries must be positive and below max_entries")
        self.max_entries = max_entries
        self.retain_entries = retain_entries
        # dict preserves insertion order; values are unused
        self._seen: dict[str, None] = {}
        self._lock = threading.Lock()

    def contains(self, signature: str) -> bool:
        with self._lock:
            return signature in self._seen

    def add(self, signature: str) -> None:
        self.try_add(signature)

    def try_add(self, signature: str) -> bool:
        """
        Atomically record a signature.

        Returns:
            True if the signature was new, False if it was already recorded
        """
        with self._lock:
            if signature in self._seen:
                return False
            self._seen[signature] = None
            if len(self._seen) > self.max_entries:
                self._evict_oldest()
            return True

    def clear(self) -> None:
        with self._lock:
            self._seen.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)

    def _evict_oldest(self) -> None:
        # Caller holds the lock
        excess = len(self._seen) - self.retain_entries
        for signature in list(self._seen)[:excess]:
            del self._seen[signature]
        logger.info(
            "replay_guard_evicted",
            evicted=excess,
            retained=len(self._seen),
        )
