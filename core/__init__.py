"""
Core Module Package.

This package contains the infrastructure every other package
depends on.

Components:
- config: Environment-driven configuration
- log_setup: Process-wide logging
- runtime: Service wiring for the entrypoint
"""

from .config import AppConfig
from .log_setup import setup_logging
from .runtime import Services, build_persistence, build_services


__all__ = [
    "AppConfig",
    "setup_logging",
    "Services",
    "build_persistence",
    "build_services",
]
