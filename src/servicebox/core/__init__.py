"""
Core logic for servicebox.

This module contains the image client and the container engine boundary.
"""

from __future__ import annotations

from servicebox.core.engine import ContainerEngine, DockerEngine
from servicebox.core.image_client import ContainerImageClient

__all__ = ["ContainerEngine", "ContainerImageClient", "DockerEngine"]
