"""
servicebox - build, run and manage container images for packaged units.

This package provides:
- main images: one inline artifact that runs to completion
- service images: packaged artifacts that run as long-lived services
- a single ClientError for every failed lifecycle operation
"""

from __future__ import annotations

__version__ = "1.0.0"

# Core exports
from servicebox.config import IMAGE_VERSION_LATEST
from servicebox.core.image_client import ContainerImageClient
from servicebox.errors import ClientError
from servicebox.models import BuildOptions, ImageReference, ServiceContainerConfiguration
from servicebox.utils.logger import get_logger

__all__ = [
    "BuildOptions",
    "ClientError",
    "ContainerImageClient",
    "IMAGE_VERSION_LATEST",
    "ImageReference",
    "ServiceContainerConfiguration",
    "get_logger",
    "__version__",
]
