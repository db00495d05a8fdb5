from .app import create_app
from .config import ConfigurationError, Settings

__all__ = ["create_app", "ConfigurationError", "Settings"]
