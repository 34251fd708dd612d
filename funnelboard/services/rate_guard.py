"""Per-client cooldown gate and volume breaker for sync runs."""

from __future__ import annotations

import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass

from funnelboard.core.config import get_config
from funnelboard.core.enums import SyncMode

logger = logging.getLogger(__name__)

REASON_COOLDOWN = "cooldown"
REASON_VOLUME_EXCEEDED = "volume_exceeded"


@dataclass(frozen=True)
class GuardDecision:
    granted: bool
    retry_after_seconds: int = 0
    reason: str | None = None

    @classmethod
    def grant(cls) -> "GuardDecision":
        return cls(granted=True)


class RateGuard(ABC):
    """Contract for cooldown stores.

    Implementations only provide an atomic check-and-set with TTL; the
    threshold policy lives here so every store applies the same rules.
    """

    def __init__(
        self,
        privileged_cooldown_seconds: float | None = None,
        user_cooldown_seconds: float | None = None,
        max_user_rows: int | None = None,
    ) -> None:
        config = get_config()
        self.privileged_cooldown_seconds = (
            config.SYNC_ADMIN_COOLDOWN_SECONDS if privileged_cooldown_seconds is None else privileged_cooldown_seconds
        )
        self.user_cooldown_seconds = (
            config.SYNC_USER_COOLDOWN_SECONDS if user_cooldown_seconds is None else user_cooldown_seconds
        )
        self.max_user_rows = config.SYNC_USER_MAX_ROWS if max_user_rows is None else max_user_rows

    @abstractmethod
    def check_and_set(self, key: str, ttl_seconds: float, now: float | None = None) -> float:
        """Return 0 and record ``now`` when ``key`` is free, else seconds left."""
        raise NotImplementedError

    def cooldown_for(self, mode: SyncMode | str, privileged: bool) -> float:
        if mode is SyncMode.INCREMENTAL and not privileged:
            return self.user_cooldown_seconds
        return self.privileged_cooldown_seconds

    def try_acquire(
        self,
        client_id: int | str,
        mode: SyncMode | str,
        privileged: bool,
        now: float | None = None,
        cooldown_seconds: float | None = None,
    ) -> GuardDecision:
        """Grant a run for ``(client, mode)`` or report how long to back off."""
        mode_key = mode.value if isinstance(mode, SyncMode) else str(mode)
        ttl = self.cooldown_for(mode, privileged) if cooldown_seconds is None else cooldown_seconds
        remaining = self.check_and_set(f"{client_id}:{mode_key}", ttl, now=now)
        if remaining <= 0:
            return GuardDecision.grant()

        retry_after = max(1, math.ceil(remaining))
        logger.info(
            "guard.rejected",
            extra={"event": "guard.rejected", "client_id": client_id, "mode": mode_key, "retry_after": retry_after},
        )
        return GuardDecision(granted=False, retry_after_seconds=retry_after, reason=REASON_COOLDOWN)

    def check_volume(self, candidate_rows: int, mode: SyncMode, privileged: bool) -> GuardDecision:
        """Refuse oversized unprivileged incremental runs instead of truncating."""
        if privileged or mode is not SyncMode.INCREMENTAL or candidate_rows <= self.max_user_rows:
            return GuardDecision.grant()
        logger.warning(
            "guard.volume_exceeded",
            extra={"event": "guard.volume_exceeded", "mode": mode.value, "count": candidate_rows},
        )
        return GuardDecision(granted=False, reason=REASON_VOLUME_EXCEEDED)


class InMemoryRateGuard(RateGuard):
    """Process-local store; only effective within a single running instance."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._last_seen: dict[str, float] = {}
        self._lock = threading.Lock()

    def check_and_set(self, key: str, ttl_seconds: float, now: float | None = None) -> float:
        now = time.monotonic() if now is None else now
        with self._lock:
            last = self._last_seen.get(key)
            if last is not None:
                elapsed = now - last
                if elapsed < ttl_seconds:
                    return ttl_seconds - elapsed
            self._last_seen[key] = now
            return 0.0

    def reset(self) -> None:
        with self._lock:
            self._last_seen.clear()


_default_guard: InMemoryRateGuard | None = None
_default_guard_lock = threading.Lock()


def get_rate_guard() -> RateGuard:
    """Shared guard instance for API handlers in this process."""
    global _default_guard
    with _default_guard_lock:
        if _default_guard is None:
            _default_guard = InMemoryRateGuard()
        return _default_guard
