from __future__ import annotations


class RentalLifecycleError(RuntimeError):
    """Base for every failure the lifecycle engine reports to callers.

    ``code`` is stable and machine readable, ``status_code`` is what the HTTP
    adapter answers with, ``retryable`` tells the caller that repeating the
    same request may succeed.
    """

    code = "RENTAL_LIFECYCLE_ERROR"
    status_code = 500
    retryable = False

    def __init__(self, message: str, **details) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> dict:
        return {
            "detail": self.message,
            "code": self.code,
            "retryable": self.retryable,
        }


class NotFoundError(RentalLifecycleError):
    code = "NOT_FOUND"
    status_code = 404


class InvalidInputError(RentalLifecycleError):
    code = "INVALID_INPUT"
    status_code = 400


class InvalidStateError(RentalLifecycleError):
    code = "INVALID_STATE"
    status_code = 409


class NotOwnerError(RentalLifecycleError):
    code = "NOT_OWNER"
    status_code = 403


class ItemNotRentableError(RentalLifecycleError):
    code = "ITEM_NOT_RENTABLE"
    status_code = 409


class InventoryError(RentalLifecycleError):
    code = "INVENTORY_ERROR"
    status_code = 409


class InsufficientAvailabilityError(InventoryError):
    code = "INSUFFICIENT_AVAILABILITY"


class InsufficientCopiesError(InsufficientAvailabilityError):
    code = "INSUFFICIENT_COPIES"


class CopyOverflowError(InventoryError):
    code = "COPY_OVERFLOW"


class ComputationError(RentalLifecycleError):
    code = "COMPUTATION_ERROR"
    status_code = 500


class ConcurrentUpdateError(RentalLifecycleError):
    code = "CONCURRENT_UPDATE"
    status_code = 409
    retryable = True
