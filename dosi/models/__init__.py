"""Dosi Database Models."""

from dosi.models.store_entry import StoreEntry

__all__ = [
    "StoreEntry",
]
