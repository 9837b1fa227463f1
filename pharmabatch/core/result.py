"""
Tagged results for business-rule outcomes.

Engine operations return `Ok(value)` or `Err(kind, message, context)`
instead of raising. Database and other infrastructure failures still
propagate as exceptions.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generic, TypeVar, Union


T = TypeVar("T")


class ErrorKind(str, Enum):
    """Categories of business-rule failure."""
    INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    ALREADY_QUARANTINED = "ALREADY_QUARANTINED"
    NOT_FOUND = "NOT_FOUND"
    VALIDATION = "VALIDATION"


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful outcome."""
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    """Failed outcome; `context` carries the numeric/status details."""
    kind: ErrorKind
    message: str
    context: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "context": {k: _jsonable(v) for k, v in self.context.items()},
        }


Result = Union[Ok[T], Err]


def _jsonable(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


# =============================================================================
# CONSTRUCTORS
# =============================================================================

def insufficient_stock(requested: int, available: int, **context) -> Err:
    return Err(
        ErrorKind.INSUFFICIENT_STOCK,
        f"Insufficient stock: requested {requested}, available {available}",
        {"requested": requested, "available": available, **context},
    )


def invalid_transition(current_status: str, action: str, **context) -> Err:
    return Err(
        ErrorKind.INVALID_TRANSITION,
        f"Cannot apply '{action}' in status '{current_status}'",
        {"current_status": current_status, "action": action, **context},
    )


def already_quarantined(batch_id, **context) -> Err:
    return Err(
        ErrorKind.ALREADY_QUARANTINED,
        f"Batch {batch_id} already has an open quarantine record",
        {"batch_id": batch_id, **context},
    )


def not_found(entity: str, entity_id) -> Err:
    return Err(
        ErrorKind.NOT_FOUND,
        f"{entity} {entity_id} not found",
        {"entity": entity, "id": entity_id},
    )


def validation_error(message: str, **context) -> Err:
    return Err(ErrorKind.VALIDATION, message, dict(context))
