# --- START OF FILE: src/nexustrack/infrastructure/db/models/base.py ---
from sqlalchemy.orm import DeclarativeBase

class Base(DeclarativeBase):
    """Declarative base for the subscription tables."""
# --- END OF FILE ---
