"""
Data types passed in and out of `ContainerImageClient`.
"""

from __future__ import annotations

import re
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from servicebox import config
from servicebox.errors import ClientError

# docker reference grammar: path components separated by "/", optional registry host[:port]
_COMPONENT_RE = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")
_REGISTRY_RE = re.compile(r"^[A-Za-z0-9.-]+(?::[0-9]+)?$")
_TAG_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")


def validate_repository(repository: str) -> str:
    if not repository:
        raise ClientError("Image name must not be empty")
    parts = repository.split("/")
    if len(parts) > 1 and ("." in parts[0] or ":" in parts[0] or parts[0] == "localhost"):
        if not _REGISTRY_RE.match(parts[0]):
            raise ClientError(f"Invalid registry host in image name: {repository!r}")
        parts = parts[1:]
    for part in parts:
        if not _COMPONENT_RE.match(part):
            raise ClientError(f"Invalid image name: {repository!r}")
    return repository


def validate_tag(tag: str) -> str:
    if not tag or not _TAG_RE.match(tag):
        raise ClientError(f"Invalid image version: {tag!r}")
    return tag


class ImageReference(BaseModel):
    """`repository:tag` identity of a built image."""

    repository: str
    tag: str = config.IMAGE_VERSION_LATEST

    def __str__(self) -> str:
        return f"{self.repository}:{self.tag}"

    @classmethod
    def parse(cls, value: str) -> "ImageReference":
        """
        Split "repo[:tag]" into its parts. A colon before the last "/" belongs
        to a registry port, not to the tag.
        """
        if not value:
            raise ClientError("Image reference must not be empty")
        last_slash = value.rfind("/")
        colon = value.rfind(":")
        if colon > last_slash:
            return cls(repository=value[:colon], tag=value[colon + 1:])
        return cls(repository=value)

    @classmethod
    def resolve(
        cls,
        name: Optional[str],
        image_name: Optional[str] = None,
        image_version: Optional[str] = None,
    ) -> "ImageReference":
        """
        Naming rule for built images: lowercase(name):latest, unless a custom
        image name is given, in which case a version must be given too.
        """
        if not name:
            raise ClientError("Unit name must not be empty")
        if image_name:
            if not image_version:
                raise ClientError(
                    f"A version is required when a custom image name is given ({image_name!r})"
                )
            return cls(repository=validate_repository(image_name), tag=validate_tag(image_version))
        tag = validate_tag(image_version) if image_version else config.IMAGE_VERSION_LATEST
        return cls(repository=validate_repository(name.lower()), tag=tag)


class BuildOptions(BaseModel):
    """How an image is assembled on top of the runtime base image."""

    base_image: str = Field(default_factory=lambda: config.BASE_IMAGE)
    environment: Dict[str, str] = Field(default_factory=dict)
    labels: Dict[str, str] = Field(default_factory=dict)
    service_port: int = Field(default_factory=lambda: config.SERVICE_PORT, gt=0, lt=65536)
    main_command: List[str] = Field(default_factory=config.default_main_command)
    service_command: List[str] = Field(default_factory=config.default_service_command)

    @classmethod
    def from_settings(cls, settings: config.Settings, **overrides) -> "BuildOptions":
        values = {"base_image": settings.base_image, "service_port": settings.service_port}
        values.update(overrides)
        return cls(**values)


class ServiceContainerConfiguration(BaseModel):
    """
    Handle to a running service container. Enough to reach the service and
    to stop it again later; it is stale once the container is stopped.
    """

    container_id: str
    container_name: Optional[str] = None
    image: str
    docker_host: Optional[str] = None
    ip_address: Optional[str] = None
    ports: Dict[str, Optional[int]] = Field(default_factory=dict)

    def host_port(self, container_port: int) -> Optional[int]:
        return self.ports.get(f"{container_port}/tcp")


__all__ = [
    "BuildOptions",
    "ImageReference",
    "ServiceContainerConfiguration",
    "validate_repository",
    "validate_tag",
]
