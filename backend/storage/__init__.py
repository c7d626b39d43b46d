# storage/__init__.py
# ============================================================================
# MASTERCLASS REGISTRATION BACKEND — STORAGE MODULE
# ============================================================================
# In-memory registration store (no persistence)
# ============================================================================

from storage.registration_store import (
    IRegistrationStore,
    InMemoryRegistrationStore,
)

__all__ = [
    "IRegistrationStore",
    "InMemoryRegistrationStore",
]
