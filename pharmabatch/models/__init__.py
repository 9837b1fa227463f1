"""Import all models so they register with Base.metadata."""
from pharmabatch.models.product import Category, Product
from pharmabatch.models.batch import (
    ProductBatch, BatchMovement,
    BatchStatus, AdjustmentType, MovementType,
)
from pharmabatch.models.quarantine import (
    QuarantineRecord, QuarantineActionLog,
    QuarantineStatus, QuarantineAction,
)
from pharmabatch.models.expiry_trend import ExpiryTrendSnapshot, TrendDirection

__all__ = [
    "Category",
    "Product",
    "ProductBatch",
    "BatchMovement",
    "BatchStatus",
    "AdjustmentType",
    "MovementType",
    "QuarantineRecord",
    "QuarantineActionLog",
    "QuarantineStatus",
    "QuarantineAction",
    "ExpiryTrendSnapshot",
    "TrendDirection",
]
