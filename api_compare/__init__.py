"""Differential JSON-RPC comparison harness for a reference and a candidate node."""

__version__ = "0.1.0"
