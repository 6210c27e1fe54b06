"""
Core utilities and configuration for agentrelay.

This package provides core functionality including logging configuration,
monitoring hooks and the shared error taxonomy.
"""

from agentrelay.core.logging_config import get_logger, setup_logging

__all__ = ["get_logger", "setup_logging"]
