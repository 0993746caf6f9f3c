"""Utility modules for copysim.

Sub-modules:
- logging: configure_logging() for structlog setup
- parsing: float/datetime/id helpers for parsing external payloads
"""

from .logging import configure_logging

__all__ = ["configure_logging"]
