"""
Utilities module for servicebox.

This module provides common utilities like logging configuration.
"""

from __future__ import annotations

from servicebox.utils.logger import get_logger, logger

__all__ = ["get_logger", "logger"]
