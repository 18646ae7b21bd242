"""Configuration module for the Authentik provisioning module."""
from .settings import ModuleSettings, load_settings

__all__ = ["ModuleSettings", "load_settings"]
