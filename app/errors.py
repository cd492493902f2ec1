"""
Error taxonomy shared by the order engine, stores and notification service.
Each error carries a stable code; the HTTP layer maps it to a status.
"""


class OrderServiceError(Exception):
    code = "internal_error"
    status_code = 500

    def __init__(self, message: str = ""):
        self.message = message or self.__class__.__name__
        super().__init__(self.message)


class NotFound(OrderServiceError):
    code = "not_found"
    status_code = 404


class Forbidden(OrderServiceError):
    code = "forbidden"
    status_code = 403


class InvalidTransition(OrderServiceError):
    """Requested edge is not in the transition graph, or its precondition no longer holds."""
    code = "invalid_transition"
    status_code = 409

    def __init__(self, current_state: str | None = None, target: str | None = None, message: str = ""):
        self.current_state = current_state
        self.target = target
        super().__init__(message or f"Cannot move order from {current_state} to {target}")


class ConflictError(OrderServiceError):
    """A concurrent write changed the order between read and write."""
    code = "conflict"
    status_code = 409


class ValidationError(OrderServiceError):
    code = "validation_error"
    status_code = 422


class InternalError(OrderServiceError):
    """Collaborator failure (store unreachable etc). Message is never shown to clients."""


class Unauthorized(OrderServiceError):
    """No principal supplied by the auth layer."""
    code = "unauthorized"
    status_code = 401
