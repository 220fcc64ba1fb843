"""Configuration management module for the Limbo BBS server."""

from .config_manager import ConfigManager

__all__ = ['ConfigManager']
