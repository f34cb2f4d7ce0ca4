"""Per-environment mutual exclusion."""

from .manager import LockManager
from .models import LockRecord, LockToken

__all__ = [
    "LockManager",
    "LockRecord",
    "LockToken",
]
