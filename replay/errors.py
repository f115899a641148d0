from __future__ import annotations

from typing import Any, Dict, Optional


class ReplayError(Exception):
    """Base class for failures that end a replay request."""

    code = "replay_error"

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": str(self)}


class ValidationError(ReplayError):
    """Rejected request parameters. Raised before any store access."""

    code = "invalid_param"

    def __init__(self, field: str, message: str, *, value: Optional[str] = None):
        super().__init__(message)
        self.field = field
        self.value = value

    def to_dict(self) -> Dict[str, Any]:
        out = super().to_dict()
        out["field"] = self.field
        if self.value is not None:
            out["value"] = self.value
        return out


class StoreError(ReplayError):
    """The tick store could not be read."""

    code = "store_error"


class AggregationError(ReplayError):
    """Candle bucket math hit impossible input (out-of-order or non-finite ticks)."""

    code = "aggregation_error"
