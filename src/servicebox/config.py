"""
Configuration for servicebox.

Values are read from the environment once, at import time. `Settings.from_env()`
re-reads them, which is what tests and long-lived processes should use.
"""

from __future__ import annotations

import os
from typing import List

from pydantic import BaseModel, Field

IMAGE_VERSION_LATEST = "latest"

# image / container labels
LABEL_KIND = "servicebox.kind"
LABEL_UNIT = "servicebox.unit"
LABEL_MANAGED = "servicebox.managed"
KIND_MAIN = "main"
KIND_SERVICE = "service"

# layout inside the image
APP_DIR = "/app"
MAIN_DIR = "main"
MAIN_FILE = "main.sh"
SERVICES_DIR = "services"

BASE_IMAGE = os.getenv("SERVICEBOX_BASE_IMAGE", "alpine:3.20")
SERVICE_PORT = int(os.getenv("SERVICEBOX_SERVICE_PORT", "9090"))
START_TIMEOUT_SEC = float(os.getenv("SERVICEBOX_START_TIMEOUT", "10"))
STOP_TIMEOUT_SEC = int(os.getenv("SERVICEBOX_STOP_TIMEOUT", "10"))
CONNECT_RETRIES = int(os.getenv("SERVICEBOX_CONNECT_RETRIES", "3"))


def default_main_command() -> List[str]:
    return ["sh", f"{APP_DIR}/{MAIN_DIR}/{MAIN_FILE}"]


def default_service_command() -> List[str]:
    # every packaged unit runs in the background, the container lives while any of them does
    return [
        "sh",
        "-c",
        f'for unit in {APP_DIR}/{SERVICES_DIR}/*; do sh "$unit" & done; wait',
    ]


class Settings(BaseModel):
    base_image: str = BASE_IMAGE
    service_port: int = Field(default=SERVICE_PORT, gt=0, lt=65536)
    start_timeout: float = Field(default=START_TIMEOUT_SEC, gt=0)
    stop_timeout: int = Field(default=STOP_TIMEOUT_SEC, ge=0)
    connect_retries: int = Field(default=CONNECT_RETRIES, ge=1)

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            base_image=os.getenv("SERVICEBOX_BASE_IMAGE", "alpine:3.20"),
            service_port=int(os.getenv("SERVICEBOX_SERVICE_PORT", "9090")),
            start_timeout=float(os.getenv("SERVICEBOX_START_TIMEOUT", "10")),
            stop_timeout=int(os.getenv("SERVICEBOX_STOP_TIMEOUT", "10")),
            connect_retries=int(os.getenv("SERVICEBOX_CONNECT_RETRIES", "3")),
        )
