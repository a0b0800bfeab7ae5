"""
Container engine boundary.

`ContainerEngine` is the narrow set of primitives the client needs: build,
inspect, list and remove images; run, wait, inspect, stop and remove
containers. `DockerEngine` implements it on top of the Docker SDK and turns
SDK exceptions into `EngineError` / `EngineNotFound`, so nothing docker
specific leaks into the client.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Protocol

import docker
import requests
from docker.errors import APIError, BuildError, DockerException, NotFound
from docker.models.containers import Container
from docker.models.images import Image

from servicebox.errors import EngineError, EngineNotFound
from servicebox.utils.logger import logger


class ContainerEngine(Protocol):
    def ping(self) -> bool: ...

    def build_image(self, context_dir: Path, tag: str, labels: Dict[str, str]) -> Dict[str, Any]: ...

    def get_image(self, ref: str) -> Dict[str, Any]: ...

    def list_images(self, repository: str) -> List[Dict[str, Any]]: ...

    def remove_image(self, ref: str) -> None: ...

    def run_container(
        self,
        image: str,
        *,
        ports: Optional[Dict[str, Optional[int]]] = None,
        labels: Optional[Dict[str, str]] = None,
        environment: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]: ...

    def wait_container(self, container_id: str, timeout: Optional[float] = None) -> int: ...

    def container_logs(self, container_id: str, tail: Optional[int] = None) -> str: ...

    def get_container(self, container_id: str) -> Dict[str, Any]: ...

    def stop_container(self, container_id: str, timeout: int = 10) -> None: ...

    def remove_container(self, container_id: str, force: bool = False) -> None: ...

    def list_containers(self, labels: Dict[str, str]) -> List[Dict[str, Any]]: ...


@contextmanager
def _translate_errors(action: str) -> Iterator[None]:
    try:
        yield
    except NotFound as e:
        raise EngineNotFound(f"{action}: {e.explanation or e}") from e
    except BuildError as e:
        tail = [chunk.get("stream", "").strip() for chunk in (e.build_log or []) if isinstance(chunk, dict)]
        tail = [line for line in tail if line][-5:]
        detail = f" (last build output: {' | '.join(tail)})" if tail else ""
        raise EngineError(f"{action}: {e.msg}{detail}") from e
    except APIError as e:
        raise EngineError(f"{action}: {e.explanation or e}") from e
    except (DockerException, requests.exceptions.RequestException) as e:
        raise EngineError(f"{action}: {e}") from e


def _summarize_image(img: Image) -> Dict[str, Any]:
    attrs = img.attrs or {}
    cfg = (attrs.get("Config") or {}) or (attrs.get("ContainerConfig") or {})
    exposed = cfg.get("ExposedPorts") or {}
    return {
        "id": img.id,
        "tags": list(img.tags or []),
        "labels": dict(img.labels or {}),
        "exposed_ports": sorted(exposed.keys()) if isinstance(exposed, dict) else [],
    }


def _summarize_container(c: Container) -> Dict[str, Any]:
    attrs = c.attrs or {}
    net = attrs.get("NetworkSettings", {}) or {}
    ports_raw = net.get("Ports", {}) or {}
    host_ports: Dict[str, Optional[int]] = {}
    for cport, bindings in ports_raw.items():
        if bindings and isinstance(bindings, list) and bindings[0].get("HostPort"):
            try:
                host_ports[cport] = int(bindings[0]["HostPort"])
            except (TypeError, ValueError):
                host_ports[cport] = None
        else:
            host_ports[cport] = None
    config = attrs.get("Config", {}) or {}
    return {
        "id": c.id,
        "name": c.name,
        "status": c.status,
        "image": config.get("Image"),
        "labels": dict(c.labels or {}),
        "ports": host_ports,
        "ip_address": net.get("IPAddress") or None,
    }


class DockerEngine:
    """`ContainerEngine` backed by a `docker.DockerClient`."""

    def __init__(self, client: docker.DockerClient, docker_host: Optional[str] = None) -> None:
        self.client = client
        self.docker_host = docker_host

    @classmethod
    def connect(cls, docker_host: Optional[str] = None, max_retries: int = 3) -> "DockerEngine":
        """Connect to the daemon at docker_host (or from the environment) with retry logic"""
        for attempt in range(max_retries):
            client = None
            try:
                if docker_host:
                    client = docker.DockerClient(base_url=docker_host)
                else:
                    client = docker.from_env()
                client.ping()
                logger.info(f"Docker client connected ({docker_host or 'from environment'})")
                return cls(client, docker_host)
            except (DockerException, requests.exceptions.RequestException) as e:
                if client is not None:
                    client.close()
                logger.warning(f"Docker connection attempt {attempt + 1}/{max_retries} failed: {e}")
                if attempt < max_retries - 1:
                    time.sleep(2 ** attempt)  # Exponential backoff
                else:
                    logger.error(f"Failed to connect to Docker after {max_retries} attempts: {e}")
                    raise EngineError(f"Cannot connect to Docker daemon: {e}") from e
        raise EngineError("Cannot connect to Docker daemon: no connection attempts made")

    def close(self) -> None:
        self.client.close()

    # ---------- images ----------

    def ping(self) -> bool:
        with _translate_errors("ping"):
            return bool(self.client.ping())

    def build_image(self, context_dir: Path, tag: str, labels: Dict[str, str]) -> Dict[str, Any]:
        logger.info(f"Building image {tag} from {context_dir}")
        with _translate_errors(f"build {tag}"):
            img, build_log = self.client.images.build(
                path=str(context_dir),
                tag=tag,
                labels=labels,
                rm=True,
                forcerm=True,
            )
        for chunk in build_log:
            line = chunk.get("stream", "").strip() if isinstance(chunk, dict) else ""
            if line:
                logger.debug(f"[build {tag}] {line}")
        return _summarize_image(img)

    def get_image(self, ref: str) -> Dict[str, Any]:
        with _translate_errors(f"inspect image {ref}"):
            return _summarize_image(self.client.images.get(ref))

    def list_images(self, repository: str) -> List[Dict[str, Any]]:
        with _translate_errors(f"list images {repository}"):
            return [_summarize_image(img) for img in self.client.images.list(name=repository)]

    def remove_image(self, ref: str) -> None:
        with _translate_errors(f"remove image {ref}"):
            self.client.images.remove(image=ref)

    # ---------- containers ----------

    def run_container(
        self,
        image: str,
        *,
        ports: Optional[Dict[str, Optional[int]]] = None,
        labels: Optional[Dict[str, str]] = None,
        environment: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        with _translate_errors(f"run {image}"):
            c = self.client.containers.run(
                image=image,
                detach=True,
                ports=ports or None,
                labels=labels or None,
                environment=environment or None,
            )
            c.reload()
            return _summarize_container(c)

    def wait_container(self, container_id: str, timeout: Optional[float] = None) -> int:
        with _translate_errors(f"wait {container_id}"):
            result = self.client.containers.get(container_id).wait(timeout=timeout)
        return int(result.get("StatusCode", -1))

    def container_logs(self, container_id: str, tail: Optional[int] = None) -> str:
        with _translate_errors(f"logs {container_id}"):
            raw = self.client.containers.get(container_id).logs(
                stdout=True, stderr=False, tail=tail if tail is not None else "all"
            )
        return raw.decode("utf-8", errors="replace")

    def get_container(self, container_id: str) -> Dict[str, Any]:
        with _translate_errors(f"inspect container {container_id}"):
            c = self.client.containers.get(container_id)
            c.reload()
            return _summarize_container(c)

    def stop_container(self, container_id: str, timeout: int = 10) -> None:
        with _translate_errors(f"stop {container_id}"):
            self.client.containers.get(container_id).stop(timeout=timeout)

    def remove_container(self, container_id: str, force: bool = False) -> None:
        with _translate_errors(f"remove container {container_id}"):
            self.client.containers.get(container_id).remove(force=force)

    def list_containers(self, labels: Dict[str, str]) -> List[Dict[str, Any]]:
        flt = {"label": [f"{k}={v}" for k, v in labels.items()]}
        with _translate_errors("list containers"):
            return [_summarize_container(c) for c in self.client.containers.list(filters=flt)]


__all__ = ["ContainerEngine", "DockerEngine"]
