"""Configuration and dependency wiring."""

from .container import Container, get_container, setup_container
from .settings import Settings, get_settings

__all__ = ["Container", "get_container", "setup_container", "Settings", "get_settings"]
