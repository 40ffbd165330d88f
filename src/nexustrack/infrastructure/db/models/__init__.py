# --- src/nexustrack/infrastructure/db/models/__init__.py ---
"""
Makes the 'models' directory a package and ensures all SQLAlchemy ORM
models are registered on `Base.metadata` before `create_all`.
"""

from .base import Base
from .subscription import SubscribedChannel, SubscribedItem

__all__ = [
    "Base",
    "SubscribedChannel",
    "SubscribedItem",
]
