from __future__ import annotations

import logging
import threading
import zlib
from collections import deque
from datetime import datetime
from typing import Callable, Deque, Dict, List

from .config import EngineConfig
from .models import SuspiciousAttempt, utcnow


logger = logging.getLogger(__name__)


class AttackPatternTracker:
    """Sliding-window count of suspicious attempts per principal.

    Process-local and lost on restart. Each principal hashes to one of a fixed
    set of lock stripes, so calls for different principals rarely contend and
    calls for the same principal are serialised.
    """

    def __init__(self, config: EngineConfig | None = None, clock: Callable[[], datetime] = utcnow):
        self.config = config or EngineConfig()
        self.clock = clock
        self._attempts: Dict[str, Deque[SuspiciousAttempt]] = {}
        self._stripes = [threading.Lock() for _ in range(max(1, self.config.attack_lock_stripes))]

    def _lock_for(self, principal_id: str) -> threading.Lock:
        return self._stripes[zlib.crc32(principal_id.encode()) % len(self._stripes)]

    def record(self, principal_id: str, reason: str) -> int:
        now = self.clock()
        with self._lock_for(principal_id):
            attempts = self._attempts.setdefault(principal_id, deque())
            attempts.append(SuspiciousAttempt(principal_id=principal_id, timestamp=now, reason=reason))
            count = self._trim(principal_id, now)
        logger.warning("Suspicious attempt recorded for %s (%d in window): %s", principal_id, count, reason)
        if count >= self.config.attack_threshold:
            logger.error("Attack pattern detected for %s: %d attempts", principal_id, count)
        return count

    def recent_count(self, principal_id: str) -> int:
        now = self.clock()
        with self._lock_for(principal_id):
            return self._trim(principal_id, now)

    def has_pattern(self, principal_id: str) -> bool:
        return self.recent_count(principal_id) >= self.config.attack_threshold

    def attempts(self, principal_id: str) -> List[SuspiciousAttempt]:
        now = self.clock()
        with self._lock_for(principal_id):
            self._trim(principal_id, now)
            return list(self._attempts.get(principal_id, ()))

    def reset(self, principal_id: str) -> None:
        with self._lock_for(principal_id):
            self._attempts.pop(principal_id, None)
        logger.info("Attack pattern history reset for %s", principal_id)

    def tracked_principals(self) -> int:
        return len(self._attempts)

    def _trim(self, principal_id: str, now: datetime) -> int:
        attempts = self._attempts.get(principal_id)
        if attempts is None:
            return 0
        while attempts and now - attempts[0].timestamp > self.config.attack_window:
            attempts.popleft()
        if not attempts:
            del self._attempts[principal_id]
            return 0
        return len(attempts)
