"""Error taxonomy for the round engine.

Every error raised by the core is an ``AbacusError``. The web layer maps each
class onto an HTTP status code; callers inside the engine only ever catch the
specific subclasses they know how to recover from.
"""


class AbacusError(Exception):
    """Base exception for all Abacus errors."""

    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class InvalidInput(AbacusError):
    """Client-supplied values failed validation."""

    status_code = 400

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field

    def __str__(self) -> str:
        if self.field:
            return f"{self.field}: {self.message}"
        return self.message


class NotFound(AbacusError):
    """A referenced entity does not exist."""

    status_code = 404


class Unauthorized(AbacusError):
    """The acting user lacks the required permission."""

    status_code = 403


class InvalidState(AbacusError):
    """The operation is illegal in the current round state."""

    status_code = 409


class InternalError(AbacusError):
    """An invariant was violated or the store failed unexpectedly."""

    status_code = 500


# ========== Draw Exceptions ==========


class DrawError(AbacusError):
    """Base exception for draw generation failures."""

    status_code = 400


class InvalidTeamCount(DrawError):
    """The number of active teams cannot be split into debates."""


class InvalidConfiguration(DrawError):
    """The tournament configuration cannot produce a draw."""


class AlreadyInProgress(DrawError):
    """Another generation attempt holds the round's draw ticket."""

    status_code = 409


class TicketExpired(DrawError):
    """The draw ticket was cancelled, superseded or timed out."""

    status_code = 409
