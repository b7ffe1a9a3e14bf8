"""Sequential research task queue with lease-guarded crash recovery."""

__version__ = "0.1.0"
