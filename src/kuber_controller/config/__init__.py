"""Configuration package."""

from .settings import ControllerSettings

__all__ = ["ControllerSettings"]
