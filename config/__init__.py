"""Configuration module for the multi-tenant support assistant."""

from .settings import Settings, get_settings, reload_settings

__all__ = ["Settings", "get_settings", "reload_settings"]
