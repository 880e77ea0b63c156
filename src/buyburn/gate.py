"""ExecutionGate — admission control before any fund movement.

Checks, in order:
- caller must be the originating principal (removable mitigation)
- rate limit: at least min_action_delay since the last successful action
- pause switch
"""

from __future__ import annotations

import logging
from typing import Optional

from buyburn.config_store import Configuration
from buyburn.errors import CallerNotOriginator, EngineError, Paused, RateLimited

logger = logging.getLogger(__name__)


class ExecutionGate:
    """Read-only admission gate.

    The origin check rejects calls composed by an intermediate contract in
    the same unit of execution.  It only matters while the execution
    environment cannot rule that out itself, so it can be switched off
    with ``enforce_origin=False``.
    """

    def __init__(self, enforce_origin: bool = True) -> None:
        self.enforce_origin = enforce_origin

    def evaluate(
        self,
        caller: str,
        originator: str,
        now: int,
        config: Configuration,
    ) -> Optional[EngineError]:
        """Return the first failing check as an error, or None if admitted."""
        if self.enforce_origin and caller != originator:
            return CallerNotOriginator(caller, originator)

        elapsed = now - config.last_action_timestamp
        if elapsed < config.min_action_delay:
            return RateLimited(elapsed, config.min_action_delay)

        if config.paused:
            return Paused()

        return None

    def admit(
        self,
        caller: str,
        originator: str,
        now: int,
        config: Configuration,
    ) -> None:
        """Raise the first failing check."""
        err = self.evaluate(caller, originator, now, config)
        if err is not None:
            logger.debug("Gate rejected caller=%s: %s", caller, err.code)
            raise err
