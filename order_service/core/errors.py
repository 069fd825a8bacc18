"""
Order Service — Domain errors

Raised by the store and the service layer, translated to HTTP responses by the
exception handlers registered in ``order_service.main``.
"""


class OrderServiceError(Exception):
    """Base class for every error surfaced to API callers."""

    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class NotFoundError(OrderServiceError):
    """Entity absent, or owned by another restaurant."""

    status_code = 404


class BadRequestError(OrderServiceError):
    """Structurally invalid command, e.g. confirming an empty order."""

    status_code = 400


class ConflictError(OrderServiceError):
    """Precondition violated at commit time, either a business rule or a lost race.

    Callers cannot tell the two apart; refetch and retry if needed.
    """

    status_code = 409


class LockTimeoutError(ConflictError):
    """The per-order lock could not be acquired in time; nothing was written."""
