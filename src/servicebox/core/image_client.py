"""
ContainerImageClient: lifecycle facade for packaged main and service units.

- create_main_image / create_service_image build `name:version` images
- get_image / delete_image query and remove them
- run_main_container runs a main image to completion
- run_service_container / stop_container start and stop long-running services

Every engine failure surfaces as ClientError. Two outcomes are deliberately
not errors: looking up a missing image returns None and deleting a missing
image returns False. Stopping an unknown container, on the other hand, fails.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from servicebox import config
from servicebox.core.build_context import check_artifact_paths, main_context, service_context
from servicebox.core.engine import ContainerEngine, DockerEngine
from servicebox.errors import ClientError, EngineError, EngineNotFound
from servicebox.models import (
    BuildOptions,
    ImageReference,
    ServiceContainerConfiguration,
    validate_repository,
    validate_tag,
)
from servicebox.utils.logger import logger

EngineFactory = Callable[[Optional[str]], ContainerEngine]

_EXITED_STATES = ("exited", "dead")


def _has_explicit_tag(image_name: str) -> bool:
    return ":" in image_name[image_name.rfind("/") + 1:]


class ContainerImageClient:
    """
    Builds, runs and tears down images/containers for packaged units.

    The engine for a given docker host is created on first use through
    `engine_factory` and reused afterwards. The client keeps no other state:
    the engine is the source of truth and callers delete what they create.
    """

    def __init__(
        self,
        engine_factory: Optional[EngineFactory] = None,
        settings: Optional[config.Settings] = None,
    ) -> None:
        self.settings = settings or config.Settings.from_env()
        self._engine_factory = engine_factory or self._connect_docker
        self._engines: Dict[Optional[str], ContainerEngine] = {}

    # ---------- internals ----------

    def _connect_docker(self, docker_host: Optional[str]) -> ContainerEngine:
        return DockerEngine.connect(docker_host, max_retries=self.settings.connect_retries)

    def _engine(self, docker_host: Optional[str]) -> ContainerEngine:
        """Get (or lazily create) the engine for docker_host."""
        engine = self._engines.get(docker_host)
        if engine is None:
            try:
                engine = self._engine_factory(docker_host)
            except EngineError as e:
                logger.error(f"Container engine unavailable ({docker_host or 'default'}): {e}")
                raise ClientError(f"Container engine unavailable: {e}") from e
            self._engines[docker_host] = engine
        return engine

    def _find_image(self, engine: ContainerEngine, image_name: str) -> Optional[Tuple[str, Dict[str, Any]]]:
        """
        Resolve image_name to (canonical "repo:tag", image info).
        "repo:tag" must match exactly; a bare "repo" matches any tag, "latest" first.
        """
        ref = ImageReference.parse(image_name)
        try:
            if _has_explicit_tag(image_name):
                img = engine.get_image(str(ref))
                if str(ref) in img["tags"]:
                    return str(ref), img
                return None

            candidates: List[Tuple[str, Dict[str, Any]]] = []
            for img in engine.list_images(ref.repository):
                for tag in img["tags"]:
                    if ImageReference.parse(tag).repository == ref.repository:
                        candidates.append((tag, img))
        except EngineNotFound:
            return None
        except EngineError as e:
            logger.error(f"Failed to look up image {image_name}: {e}")
            raise ClientError(f"Failed to look up image {image_name}: {e}") from e

        if not candidates:
            return None
        latest = str(ImageReference(repository=ref.repository))
        for tag, img in candidates:
            if tag == latest:
                return tag, img
        return candidates[0]

    def _build(self, engine: ContainerEngine, context_dir, ref: ImageReference, labels: Dict[str, str]) -> None:
        try:
            engine.build_image(context_dir, str(ref), labels)
        except EngineError as e:
            logger.error(f"Image build failed for {ref}: {e}")
            raise ClientError(f"Image build failed for {ref}: {e}") from e
        logger.info(f"Image {ref} built")

    def _discard_container(self, engine: ContainerEngine, container_id: str) -> None:
        try:
            engine.remove_container(container_id, force=True)
            logger.debug(f"Removed container {container_id}")
        except EngineNotFound:
            pass
        except EngineError as e:
            logger.warning(f"Could not remove container {container_id}: {e}")

    def _log_tail(self, engine: ContainerEngine, container_id: str, lines: int = 20) -> str:
        try:
            return engine.container_logs(container_id, tail=lines).strip()
        except EngineError as e:
            logger.debug(f"No logs for container {container_id}: {e}")
            return ""

    def _handle_from(self, info: Dict[str, Any], image: str, docker_host: Optional[str]) -> ServiceContainerConfiguration:
        return ServiceContainerConfiguration(
            container_id=info["id"],
            container_name=info.get("name"),
            image=image,
            docker_host=docker_host,
            ip_address=info.get("ip_address"),
            ports=info.get("ports") or {},
        )

    def _wait_until_running(self, engine: ContainerEngine, container_id: str, expect_ports: List[str]) -> Dict[str, Any]:
        """
        Poll until the container runs and its published ports are bound.
        Raises ClientError if it exits or never gets to running.
        """
        deadline = time.time() + self.settings.start_timeout
        info = engine.get_container(container_id)
        while True:
            status = info.get("status")
            if status in _EXITED_STATES:
                raise ClientError(
                    f"Container {container_id} exited during start-up (status: {status}): "
                    f"{self._log_tail(engine, container_id) or 'no output'}"
                )
            ports = info.get("ports") or {}
            if status == "running" and all(ports.get(p) for p in expect_ports):
                return info
            if time.time() >= deadline:
                break
            time.sleep(0.2)
            info = engine.get_container(container_id)

        if info.get("status") != "running":
            raise ClientError(
                f"Container {container_id} did not start within {self.settings.start_timeout}s "
                f"(status: {info.get('status')})"
            )
        # running, but port bindings not reported yet; best effort
        logger.warning(f"Container {container_id} running without reported port bindings")
        return info

    # ---------- images ----------

    def create_main_image(
        self,
        name: Optional[str],
        docker_host: Optional[str] = None,
        artifact_text: Optional[str] = None,
        image_name: Optional[str] = None,
        image_version: Optional[str] = None,
        build_options: Optional[BuildOptions] = None,
    ) -> str:
        """
        Build a run-to-completion image from inline artifact text.

        Returns "lowercase(name):latest", or "image_name:image_version" when a
        custom name is given (which then requires a version).
        """
        ref = ImageReference.resolve(name, image_name, image_version)
        if not artifact_text or not artifact_text.strip():
            raise ClientError(f"Main artifact for {name} must not be empty")

        options = build_options or BuildOptions.from_settings(self.settings)
        engine = self._engine(docker_host)
        labels = {**options.labels, config.LABEL_KIND: config.KIND_MAIN, config.LABEL_UNIT: name}

        logger.info(f"Creating main image {ref} for {name}")
        with main_context(artifact_text, options) as context_dir:
            self._build(engine, context_dir, ref, labels)
        return str(ref)

    def create_service_image(
        self,
        name: Optional[str],
        docker_host: Optional[str] = None,
        artifact_paths: Optional[Sequence] = None,
        image_name: Optional[str] = None,
        image_version: Optional[str] = None,
        build_options: Optional[BuildOptions] = None,
    ) -> str:
        """
        Build a long-running image from one or more packaged artifact files.

        Same naming rule as create_main_image. Every path must be an existing file.
        """
        ref = ImageReference.resolve(name, image_name, image_version)
        paths = check_artifact_paths(artifact_paths or [])

        options = build_options or BuildOptions.from_settings(self.settings)
        engine = self._engine(docker_host)
        labels = {**options.labels, config.LABEL_KIND: config.KIND_SERVICE, config.LABEL_UNIT: name}

        logger.info(f"Creating service image {ref} for {name} from {len(paths)} artifact(s)")
        with service_context(paths, options) as context_dir:
            self._build(engine, context_dir, ref, labels)
        return str(ref)

    def get_image(self, image_name: Optional[str], docker_host: Optional[str] = None) -> Optional[str]:
        """Return "repo:tag" of an existing image matching image_name, else None."""
        if not image_name:
            raise ClientError("Image name must not be empty")
        found = self._find_image(self._engine(docker_host), image_name)
        if found is None:
            logger.debug(f"Image not found: {image_name}")
            return None
        return found[0]

    def delete_image(
        self,
        name: Optional[str],
        tag: Optional[str] = None,
        repository: Optional[str] = None,
        docker_host: Optional[str] = None,
    ) -> bool:
        """
        Delete "(repository or lowercase(name)):(tag or latest)". name may carry
        its own ":tag", so the reference returned by create_*_image works as is.

        Returns False when there is no such image.
        """
        if not name and not repository:
            raise ClientError("Image name must not be empty")
        if repository:
            ref = ImageReference(repository=repository, tag=tag or config.IMAGE_VERSION_LATEST)
        else:
            # accepts the "repo:tag" string create_*_image returned
            parsed = ImageReference.parse(name)
            ref = ImageReference(repository=parsed.repository.lower(), tag=tag or parsed.tag)
        validate_repository(ref.repository)
        validate_tag(ref.tag)
        engine = self._engine(docker_host)

        logger.info(f"Deleting image {ref}")
        try:
            engine.remove_image(str(ref))
        except EngineNotFound:
            logger.warning(f"Image not found: {ref}")
            return False
        except EngineError as e:
            logger.error(f"Failed to delete image {ref}: {e}")
            raise ClientError(f"Failed to delete image {ref}: {e}") from e
        logger.info(f"Image {ref} deleted")
        return True

    # ---------- containers ----------

    def run_main_container(
        self,
        docker_host: Optional[str] = None,
        image_name: Optional[str] = None,
        capture_output: bool = False,
    ) -> Optional[str]:
        """
        Run a main image and block until its process exits. The exited
        container is removed afterwards.

        Returns the container's stdout when capture_output is set, else None.
        """
        if not image_name:
            raise ClientError("Image name must not be empty")
        engine = self._engine(docker_host)
        found = self._find_image(engine, image_name)
        if found is None:
            raise ClientError(f"Image not found: {image_name}")
        image, img = found
        if img["labels"].get(config.LABEL_KIND) == config.KIND_SERVICE:
            raise ClientError(f"Image {image} is a service image and does not run to completion")

        logger.info(f"Running main container from {image}")
        try:
            info = engine.run_container(
                image,
                labels={config.LABEL_MANAGED: "true", config.LABEL_KIND: config.KIND_MAIN},
            )
        except EngineError as e:
            logger.error(f"Failed to start container from {image}: {e}")
            raise ClientError(f"Failed to start container from {image}: {e}") from e

        container_id = info["id"]
        try:
            status = engine.wait_container(container_id)
            if status != 0:
                tail = self._log_tail(engine, container_id)
                logger.error(f"Main container {container_id} exited with status {status}")
                raise ClientError(f"Main container from {image} exited with status {status}: {tail or 'no output'}")
            output = engine.container_logs(container_id) if capture_output else None
        except EngineError as e:
            logger.error(f"Main container {container_id} failed: {e}")
            raise ClientError(f"Main container from {image} failed: {e}") from e
        finally:
            self._discard_container(engine, container_id)

        logger.info(f"Main container {container_id} finished")
        return output

    def run_service_container(
        self,
        docker_host: Optional[str] = None,
        image_name: Optional[str] = None,
    ) -> ServiceContainerConfiguration:
        """
        Start a service image in the background and return its handle once
        the engine reports it running.
        """
        if not image_name:
            raise ClientError("Image name must not be empty")
        engine = self._engine(docker_host)
        found = self._find_image(engine, image_name)
        if found is None:
            raise ClientError(f"Image not found: {image_name}")
        image, img = found
        if img["labels"].get(config.LABEL_KIND) != config.KIND_SERVICE:
            raise ClientError(f"Image {image} is not a service image")

        expose = img.get("exposed_ports") or [f"{self.settings.service_port}/tcp"]
        labels = {
            config.LABEL_MANAGED: "true",
            config.LABEL_KIND: config.KIND_SERVICE,
            config.LABEL_UNIT: img["labels"].get(config.LABEL_UNIT, ""),
        }

        logger.info(f"Starting service container from {image}")
        try:
            info = engine.run_container(image, ports=dict.fromkeys(expose), labels=labels)
        except EngineError as e:
            logger.error(f"Failed to start service container from {image}: {e}")
            raise ClientError(f"Failed to start service container from {image}: {e}") from e

        container_id = info["id"]
        try:
            info = self._wait_until_running(engine, container_id, expose)
        except (ClientError, EngineError) as e:
            logger.error(f"Service container {container_id} failed to start: {e}")
            self._discard_container(engine, container_id)
            if isinstance(e, ClientError):
                raise
            raise ClientError(f"Service container from {image} failed to start: {e}") from e

        handle = self._handle_from(info, image, docker_host)
        logger.info(f"Service container {container_id} running with ports: {handle.ports}")
        return handle

    def stop_container(self, docker_host: Optional[str] = None, container_id: Optional[str] = None) -> bool:
        """
        Stop and remove a running container. Unknown or non-running
        containers are an error.
        """
        if not container_id:
            raise ClientError("Container id must not be empty")
        engine = self._engine(docker_host)

        logger.info(f"Stopping container: {container_id} (timeout: {self.settings.stop_timeout}s)")
        try:
            info = engine.get_container(container_id)
            if info.get("status") != "running":
                raise ClientError(f"Container {container_id} is not running (status: {info.get('status')})")
            engine.stop_container(info["id"], timeout=self.settings.stop_timeout)
            engine.remove_container(info["id"])
        except EngineNotFound as e:
            logger.warning(f"Container not found: {container_id}")
            raise ClientError(f"Container not found: {container_id}") from e
        except EngineError as e:
            logger.error(f"Failed to stop container {container_id}: {e}")
            raise ClientError(f"Failed to stop container {container_id}: {e}") from e

        logger.info(f"Container {container_id} stopped")
        return True

    def list_service_containers(self, docker_host: Optional[str] = None) -> List[ServiceContainerConfiguration]:
        engine = self._engine(docker_host)
        try:
            items = engine.list_containers({config.LABEL_MANAGED: "true", config.LABEL_KIND: config.KIND_SERVICE})
        except EngineError as e:
            raise ClientError(f"Failed to list service containers: {e}") from e
        return [self._handle_from(info, info.get("image") or "", docker_host) for info in items]

    def close(self) -> None:
        for engine in self._engines.values():
            close = getattr(engine, "close", None)
            if close is not None:
                close()
        self._engines = {}


__all__ = ["ContainerImageClient", "EngineFactory"]
