"""
Staging of temporary Docker build contexts.

A main context holds the inline artifact as `main/main.sh`; a service context
holds every packaged artifact under `services/`. Both get a generated
Dockerfile on top of the configured base image.
"""

from __future__ import annotations

import json
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Sequence

from servicebox import config
from servicebox.errors import ClientError
from servicebox.models import BuildOptions
from servicebox.utils.logger import logger


def _env_lines(options: BuildOptions) -> List[str]:
    return [f"ENV {key}={json.dumps(value)}" for key, value in sorted(options.environment.items())]


def render_main_dockerfile(options: BuildOptions) -> str:
    lines = [
        f"FROM {options.base_image}",
        *_env_lines(options),
        f"WORKDIR {config.APP_DIR}",
        f"COPY {config.MAIN_DIR}/ {config.APP_DIR}/{config.MAIN_DIR}/",
        f"CMD {json.dumps(options.main_command)}",
    ]
    return "\n".join(lines) + "\n"


def render_service_dockerfile(options: BuildOptions) -> str:
    lines = [
        f"FROM {options.base_image}",
        *_env_lines(options),
        f"ENV SERVICE_PORT={options.service_port}",
        f"WORKDIR {config.APP_DIR}",
        f"COPY {config.SERVICES_DIR}/ {config.APP_DIR}/{config.SERVICES_DIR}/",
        f"EXPOSE {options.service_port}",
        f"CMD {json.dumps(options.service_command)}",
    ]
    return "\n".join(lines) + "\n"


def check_artifact_paths(artifact_paths: Sequence) -> List[Path]:
    """
    Every packaged unit must be an existing file, and file names must be
    unique since they all land in the same directory of the image.
    """
    if not artifact_paths:
        raise ClientError("At least one service artifact path is required")

    paths: List[Path] = []
    seen = set()
    for raw in artifact_paths:
        if raw is None:
            raise ClientError("Service artifact path must not be None")
        path = Path(raw)
        if not path.is_file():
            raise ClientError(f"Service artifact not found: {path}")
        if path.name in seen:
            raise ClientError(f"Duplicate service artifact file name: {path.name}")
        seen.add(path.name)
        paths.append(path)
    return paths


@contextmanager
def main_context(artifact_text: str, options: BuildOptions) -> Iterator[Path]:
    with tempfile.TemporaryDirectory(prefix="servicebox-main-") as tmp:
        root = Path(tmp)
        main_dir = root / config.MAIN_DIR
        main_dir.mkdir()
        (main_dir / config.MAIN_FILE).write_text(artifact_text, encoding="utf-8")
        (root / "Dockerfile").write_text(render_main_dockerfile(options), encoding="utf-8")
        logger.debug(f"Staged main build context at {root}")
        yield root


@contextmanager
def service_context(artifact_paths: Sequence[Path], options: BuildOptions) -> Iterator[Path]:
    with tempfile.TemporaryDirectory(prefix="servicebox-service-") as tmp:
        root = Path(tmp)
        services_dir = root / config.SERVICES_DIR
        services_dir.mkdir()
        for path in artifact_paths:
            shutil.copy2(path, services_dir / path.name)
        (root / "Dockerfile").write_text(render_service_dockerfile(options), encoding="utf-8")
        logger.debug(f"Staged service build context at {root} with {len(artifact_paths)} artifact(s)")
        yield root
