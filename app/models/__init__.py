# Models package
# Importing modules here ensures they are registered with SQLAlchemy Base
from . import user, kv_entry

# Explicit class exports for cleaner imports
from .user import User
from .kv_entry import KeyValueEntry

__all__ = [
    "User",
    "KeyValueEntry",
]
