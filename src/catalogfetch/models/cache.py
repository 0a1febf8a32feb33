from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel


class CacheRecord(BaseModel):
    """A parsed document held in the cache, keyed by its request URL."""

    key: str
    data: Any  # Opaque parsed YAML value
    timestamp: datetime  # Creation time; records are never updated in place
