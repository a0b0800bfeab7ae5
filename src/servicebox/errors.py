"""
Error types for servicebox.

`ClientError` is the only exception callers of `ContainerImageClient` ever see.
The engine-level exceptions stay behind the engine boundary and are re-raised
as `ClientError` by the client.
"""

from __future__ import annotations


class ClientError(Exception):
    """Raised for every failed image/container lifecycle operation."""


class EngineError(Exception):
    """The container engine rejected or failed an operation."""


class EngineNotFound(EngineError):
    """The referenced image or container does not exist in the engine."""


__all__ = ["ClientError", "EngineError", "EngineNotFound"]
