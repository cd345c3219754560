from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class StoreErrorKind(str, Enum):
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"
    SERIALIZATION = "serialization"


class StoreError(Exception):
    """Raised by the key-value layer; callers branch on ``kind``."""

    def __init__(
        self,
        kind: StoreErrorKind,
        message: str,
        detail: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.detail = detail or {}


__all__ = ["StoreError", "StoreErrorKind"]
