"""Exception types raised by the scheduling engine."""


class FlashdeckError(Exception):
    """Base exception for flashdeck."""
    pass


class NotFound(FlashdeckError):
    """Raised when a deck, card, note or session does not exist."""

    def __init__(self, kind: str, ident):
        super().__init__(f"{kind} {ident} not found")
        self.kind = kind
        self.ident = ident


class StoreWriteFailure(FlashdeckError):
    """Raised when a card, review or session write could not be persisted."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.cause = cause


class StaleWriteError(StoreWriteFailure):
    """Raised when a card was changed by someone else since it was read."""
    pass


class SessionStateError(FlashdeckError):
    """Raised when a session operation is not valid in the current phase."""
    pass


class InvariantViolation(AssertionError):
    """Raised when scheduling state breaks a card invariant."""
    pass
