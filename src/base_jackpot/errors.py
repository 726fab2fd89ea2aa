from __future__ import annotations


class JackpotError(Exception):
    """Base for every rejected jackpot operation."""


class ValidationError(JackpotError):
    """A precondition of the operation is not met; nothing was changed."""


class JackpotLockedError(ValidationError):
    def __init__(self, message: str = "Jackpot is locked") -> None:
        super().__init__(message)


class RoundNotFinishedError(JackpotError):
    """The round window has not elapsed yet. Retry later."""


class StaleCallbackError(JackpotError):
    pass


class NothingToWithdrawError(JackpotError):
    pass


class TokenTransferError(JackpotError):
    pass


class EntropyError(JackpotError):
    pass


class ConfigError(JackpotError):
    pass
