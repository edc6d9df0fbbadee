"""
Domain models shared by the store and its callers.

Records themselves travel as plain dicts; only the store's status report has a
fixed shape.
"""
from __future__ import annotations

from typing import Tuple

from pydantic import BaseModel, Field


class StoreStatus(BaseModel):
    """
    Snapshot returned by ``DataStore.status()``.
    """

    initialized: bool = Field(..., description="Whether the connection is open.")
    store_name: str = Field(..., description="Declared database name.")
    version: int = Field(..., description="Declared schema version.")
    table_names: Tuple[str, ...] = Field((), description="Tables present on disk.")

    model_config = {
        "frozen": True,
    }


__all__ = ["StoreStatus"]
