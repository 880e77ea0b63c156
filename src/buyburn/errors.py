"""Engine error taxonomy.

Every failure that aborts an action is an EngineError subclass carrying a
stable ``code``.  Raising any of them inside an atomic action rolls the
whole action back.
"""

from __future__ import annotations


class EngineError(Exception):
    """Base class for all action-aborting engine errors."""

    code = "ENGINE_ERROR"


class AccessDenied(EngineError):
    """Raised when a non-owner attempts a configuration mutation."""

    code = "ACCESS_DENIED"

    def __init__(self, caller: str, action: str = "mutate configuration") -> None:
        self.caller = caller
        self.action = action
        super().__init__("{} is not allowed to {}".format(caller, action))


class CallerNotOriginator(EngineError):
    """Raised when the immediate caller is not the originating principal."""

    code = "CALLER_NOT_ORIGINATOR"

    def __init__(self, caller: str, originator: str) -> None:
        self.caller = caller
        self.originator = originator
        super().__init__(
            "caller {} differs from originator {}".format(caller, originator)
        )


class RateLimited(EngineError):
    code = "RATE_LIMITED"

    def __init__(self, elapsed: int, min_action_delay: int) -> None:
        self.elapsed = elapsed
        self.min_action_delay = min_action_delay
        super().__init__(
            "{}s since last action < min delay {}s".format(elapsed, min_action_delay)
        )


class Paused(EngineError):
    code = "PAUSED"

    def __init__(self) -> None:
        super().__init__("engine is paused")


class PriceDeviationExceeded(EngineError):
    """Raised when the current tick sits too far above the reference mean."""

    code = "PRICE_DEVIATION_EXCEEDED"

    def __init__(self, current_tick: int, reference_mean_tick: int, max_deviation_bps: int) -> None:
        self.current_tick = current_tick
        self.reference_mean_tick = reference_mean_tick
        self.max_deviation_bps = max_deviation_bps
        super().__init__(
            "tick {} deviates from mean {} by more than {}".format(
                current_tick, reference_mean_tick, max_deviation_bps,
            )
        )


class NoFundsAvailable(EngineError):
    code = "NO_FUNDS_AVAILABLE"

    def __init__(self) -> None:
        super().__init__("no base asset available to swap")


class InvalidFeeSourceConfiguration(EngineError):
    code = "INVALID_FEE_SOURCE"


class VersionAlreadyApplied(EngineError):
    code = "VERSION_ALREADY_APPLIED"

    def __init__(self, version: int, current_version: int) -> None:
        self.version = version
        self.current_version = current_version
        super().__init__(
            "config version {} already applied (current={})".format(version, current_version)
        )


class TransferFailed(EngineError):
    code = "TRANSFER_FAILED"
