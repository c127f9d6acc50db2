"""Configuration module for QueryTorque shared settings."""

from .settings import VerifierSettings, get_settings

__all__ = ["VerifierSettings", "get_settings"]
