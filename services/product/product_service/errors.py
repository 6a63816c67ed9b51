"""
Product Service - error types

Each error carries the HTTP status it maps to; the handlers registered in
main.py turn them into JSON responses.
"""


class ProductServiceError(Exception):
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidRequestError(ProductServiceError):
    status_code = 400


class UnauthorizedError(ProductServiceError):
    status_code = 401


class ForbiddenError(ProductServiceError):
    status_code = 403


class NotFoundError(ProductServiceError):
    status_code = 404


class ConflictError(ProductServiceError):
    """A mutation on a previously validated record did not apply."""

    status_code = 409


class InsufficientStockError(ProductServiceError):
    """Batch admission rejected. Nothing was mutated."""

    status_code = 400

    def __init__(self, items: list[dict]) -> None:
        super().__init__("Some items are out of stock")
        self.items = items


class ReservationFailedError(ProductServiceError):
    """
    A batch failed after some decrements were applied.

    Compensation has already been attempted when this is raised; saga_log
    records which steps (including compensations) completed.
    """

    def __init__(self, cause: Exception, saga_log: list[dict]) -> None:
        super().__init__(str(cause))
        self.cause = cause
        self.saga_log = saga_log


class PublishFailure(ProductServiceError):
    """Event publication failed after the state change was committed."""
