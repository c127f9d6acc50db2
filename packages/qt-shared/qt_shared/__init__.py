"""QueryTorque Shared Infrastructure.

This package provides shared components for QueryTorque products:
- config: Shared settings management
"""

__version__ = "0.1.0"

from .config.settings import VerifierSettings, get_settings

__all__ = [
    "VerifierSettings",
    "get_settings",
]
