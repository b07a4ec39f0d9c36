"""Identity resolution for authenticated requests."""
from .identity import Identity, get_current_identity

__all__ = ["Identity", "get_current_identity"]
