# orders/domain/errors.py
from typing import List, Dict, Any, Optional


class OrderServiceError(Exception):
    """
    Error base del servicio de órdenes.
    Cada subclase define un 'kind' estable y el código HTTP con el que se expone.
    """
    kind = "error"
    http_status = 500

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or []

    def to_dict(self) -> Dict[str, Any]:
        body = {"success": False, "kind": self.kind, "message": self.message}
        if self.errors:
            body["errors"] = self.errors
        return body


class NotFoundError(OrderServiceError):
    kind = "not_found"
    http_status = 404


class InvalidStatusError(OrderServiceError):
    kind = "invalid_status"
    http_status = 400

    def __init__(self, status, valid_statuses):
        valid = ", ".join(valid_statuses)
        super().__init__(
            f"Invalid status '{status}'. Valid values: {valid}",
            errors=[{"field": "status", "message": f"Must be one of: {valid}", "value": status}],
        )
        self.valid_statuses = list(valid_statuses)


class ValidationError(OrderServiceError):
    kind = "validation_error"
    http_status = 400

    @classmethod
    def for_field(cls, field: str, message: str, value: Any = None) -> "ValidationError":
        return cls("Validation failed", errors=[{"field": field, "message": message, "value": value}])


class UnauthorizedError(OrderServiceError):
    kind = "unauthorized"
    http_status = 401


class ForbiddenError(OrderServiceError):
    kind = "forbidden"
    http_status = 403


class ConflictError(OrderServiceError):
    kind = "conflict"
    http_status = 409


class RepositoryError(OrderServiceError):
    kind = "repository_error"
    http_status = 500
