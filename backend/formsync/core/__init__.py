from .config import settings, get_settings
from .security import create_access_token, verify_token

__all__ = ["settings", "get_settings", "create_access_token", "verify_token"]
