"""JSON-RPC transport."""

from .dispatcher import RequestDispatcher

__all__ = ["RequestDispatcher"]
