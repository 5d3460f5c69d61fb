"""
Configuration module for the osm2bundle pipeline.
"""

from .settings import (
    BundleConfig,
    Config,
    ConfigurationError,
    StoreConfig,
    TempConfig,
)

__all__ = [
    'Config',
    'ConfigurationError',
    'BundleConfig',
    'StoreConfig',
    'TempConfig',
]
