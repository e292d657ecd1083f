"""
Comparison test helpers.

Fake reference/candidate nodes so harness runs can be exercised without
live Filecoin nodes.
"""

__all__ = [
    "FakeNode",
    "FakeNodeNetwork",
    "FakeResponse",
    "Reply",
]
