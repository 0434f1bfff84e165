"""Canonical state store.

This module exposes the observable OperationsStore and its snapshot type.
"""

from store.state_store import OperationsState, OperationsStore, StoreListener

__all__ = ["OperationsState", "OperationsStore", "StoreListener"]
