"""
Unit tests for ContainerImageClient against the in-memory engine.
"""

from pathlib import Path

import pytest

from servicebox import IMAGE_VERSION_LATEST, ClientError
from servicebox.config import Settings
from servicebox.core.image_client import ContainerImageClient
from servicebox.errors import EngineError
from servicebox.models import BuildOptions, ServiceContainerConfiguration


# ---------- create_main_image ----------

def test_main_image_defaults_to_lowercase_name_and_latest(client, fake_engine, main_artifact_text):
    result = client.create_main_image("TestFunction2", None, main_artifact_text, None, None)

    assert result == "testfunction2:" + IMAGE_VERSION_LATEST
    assert "testfunction2:latest" in fake_engine.images


def test_main_image_stages_artifact_and_labels(client, fake_engine, main_artifact_text):
    client.create_main_image("TestFunction3", None, main_artifact_text)

    build = fake_engine.builds[-1]
    assert build["files"]["main/main.sh"] == main_artifact_text
    assert build["files"]["Dockerfile"].startswith("FROM alpine:3.20\n")
    assert build["labels"]["servicebox.kind"] == "main"
    assert build["labels"]["servicebox.unit"] == "TestFunction3"


def test_main_image_build_context_is_cleaned_up(client, fake_engine, main_artifact_text):
    client.create_main_image("TestFunction3", None, main_artifact_text)

    assert not Path(fake_engine.builds[-1]["context_dir"]).exists()


def test_main_image_with_custom_name_and_version(client, main_artifact_text):
    result = client.create_main_image("TestFunction1", None, main_artifact_text, "customimagename", "0.0.1")

    assert result == "customimagename:0.0.1"


@pytest.mark.parametrize("text", [None, "", "   \n"])
def test_main_image_rejects_empty_artifact(client, fake_engine, text):
    with pytest.raises(ClientError):
        client.create_main_image("TestFunction1", None, text)
    assert fake_engine.builds == []


def test_main_image_custom_name_without_version_fails_before_engine(main_artifact_text):
    calls = []

    def factory(host):
        calls.append(host)
        raise AssertionError("engine must not be touched")

    client = ContainerImageClient(engine_factory=factory)
    with pytest.raises(ClientError):
        client.create_main_image("TestFunction1", None, main_artifact_text, "customImage", None)
    assert calls == []


def test_main_image_engine_build_failure_is_client_error(client, fake_engine, main_artifact_text):
    fake_engine.build_error = "build failed: base image not found"

    with pytest.raises(ClientError) as exc_info:
        client.create_main_image("TestFunction1", None, main_artifact_text)
    assert isinstance(exc_info.value.__cause__, EngineError)


def test_custom_build_options_reach_dockerfile(client, fake_engine, main_artifact_text):
    options = BuildOptions(base_image="busybox:1.36", environment={"GREETING": "hi there"})

    client.create_main_image("TestFunction1", None, main_artifact_text, build_options=options)

    dockerfile = fake_engine.builds[-1]["files"]["Dockerfile"]
    assert dockerfile.startswith("FROM busybox:1.36\n")
    assert 'ENV GREETING="hi there"' in dockerfile


# ---------- create_service_image ----------

def test_service_image_defaults_to_lowercase_name(client, fake_engine, service_artifact_paths):
    result = client.create_service_image("TestService1", None, service_artifact_paths, None, None)

    assert result == "testservice1:latest"
    build = fake_engine.builds[-1]
    for path in service_artifact_paths:
        assert f"services/{path.name}" in build["files"]
    assert "EXPOSE 9090" in build["files"]["Dockerfile"]
    assert build["labels"]["servicebox.kind"] == "service"


def test_service_image_with_custom_name(client, service_artifact_paths):
    result = client.create_service_image("TestService1", None, service_artifact_paths, "customimagename", "0.0.1")

    assert result == "customimagename:0.0.1"


def test_service_image_null_name_fails(client, service_artifact_paths):
    with pytest.raises(ClientError):
        client.create_service_image(None, None, service_artifact_paths, None, None)


def test_service_image_empty_paths_fails(client):
    with pytest.raises(ClientError):
        client.create_service_image("TestService1", None, [], None, None)


def test_service_image_non_existent_path_fails(client, fake_engine):
    with pytest.raises(ClientError):
        client.create_service_image("TestService1", None, [Path("/non/existent/path/package.bsz")], None, None)
    assert fake_engine.builds == []


def test_service_image_directory_path_fails(client, tmp_path):
    with pytest.raises(ClientError):
        client.create_service_image("TestService1", None, [tmp_path], None, None)


def test_service_image_duplicate_file_names_fail(client, tmp_path, service_artifact_paths):
    other = tmp_path / service_artifact_paths[0].name
    other.write_text("echo other\n")

    with pytest.raises(ClientError):
        client.create_service_image("TestService1", None, [service_artifact_paths[0], other])


def test_service_image_custom_name_without_version_fails(client, service_artifact_paths):
    with pytest.raises(ClientError):
        client.create_service_image("TestService1", None, service_artifact_paths, "customImage", None)


def test_service_image_invalid_name_fails(client, service_artifact_paths):
    with pytest.raises(ClientError):
        client.create_service_image("Test Service", None, service_artifact_paths)


# ---------- get_image / delete_image ----------

def test_get_image_returns_canonical_reference(client, main_artifact_text):
    client.create_main_image("TestFunction3", None, main_artifact_text)

    assert client.get_image("testfunction3") == "testfunction3:latest"
    assert client.get_image("testfunction3:latest") == "testfunction3:latest"


def test_get_image_matches_any_version_for_bare_name(client, fake_engine):
    fake_engine.add_image("customimagename:0.0.1")

    assert client.get_image("customimagename") == "customimagename:0.0.1"


def test_get_image_prefers_latest(client, fake_engine):
    fake_engine.add_image("unit:0.0.1")
    fake_engine.add_image("unit:latest")

    assert client.get_image("unit") == "unit:latest"


def test_get_image_missing_returns_none(client):
    assert client.get_image("nonexistentimage2") is None
    assert client.get_image("nonexistentimage2:1.0") is None


def test_get_image_does_not_mutate(client, fake_engine):
    fake_engine.add_image("unit:latest")
    before = dict(fake_engine.images)

    client.get_image("unit")

    assert fake_engine.images == before


def test_delete_image_after_create(client, fake_engine, main_artifact_text):
    result = client.create_main_image("TestFunction2", None, main_artifact_text, None, None)
    assert result == "testfunction2:latest"

    assert client.delete_image("testfunction2", None, None, None) is True
    assert fake_engine.images == {}


def test_delete_image_by_unit_name_lowercases(client, fake_engine):
    fake_engine.add_image("testfunction2:latest")

    assert client.delete_image("TestFunction2") is True


def test_delete_image_with_custom_repository_and_tag(client, fake_engine):
    fake_engine.add_image("customimagename:0.0.1")

    assert client.delete_image("TestService1", "0.0.1", "customimagename") is True
    assert "customimagename:0.0.1" not in fake_engine.images


def test_delete_missing_image_returns_false(client):
    assert client.delete_image("nonexistentimage1", None, None, None) is False


def test_delete_image_in_use_raises(client, fake_engine):
    fake_engine.add_image("busy:latest")
    fake_engine.images_in_use.add("busy:latest")

    with pytest.raises(ClientError):
        client.delete_image("busy")


# ---------- run_main_container ----------

def test_run_main_container_returns_none_and_removes_container(client, fake_engine, main_artifact_text):
    client.create_main_image("TestFunction4", None, main_artifact_text)
    fake_engine.output = "Hello, World!\n"

    output = client.run_main_container(None, "testfunction4")

    assert output is None
    assert fake_engine.containers == {}
    assert len(fake_engine.removed_containers) == 1


def test_run_main_container_can_capture_output(client, fake_engine, main_artifact_text):
    client.create_main_image("TestFunction4", None, main_artifact_text)
    fake_engine.output = "Hello, World!\n"

    assert client.run_main_container(None, "testfunction4", capture_output=True) == "Hello, World!\n"


def test_run_main_container_missing_image_fails(client):
    with pytest.raises(ClientError):
        client.run_main_container(None, "nonexistentimage3")


def test_run_main_container_non_zero_exit_fails(client, fake_engine, main_artifact_text):
    client.create_main_image("TestFunction4", None, main_artifact_text)
    fake_engine.exit_code = 2

    with pytest.raises(ClientError, match="status 2"):
        client.run_main_container(None, "testfunction4")
    assert fake_engine.containers == {}


def test_run_main_container_rejects_service_image(client, service_artifact_paths):
    client.create_service_image("TestService1", None, service_artifact_paths)

    with pytest.raises(ClientError):
        client.run_main_container(None, "testservice1")


# ---------- run_service_container / stop_container ----------

def test_service_run_and_stop(client, fake_engine, service_artifact_paths):
    result = client.create_service_image("TestService1", None, service_artifact_paths, None, None)
    assert result == "testservice1:latest"

    handle = client.run_service_container(None, result)
    assert isinstance(handle, ServiceContainerConfiguration)
    assert handle.image == "testservice1:latest"
    assert handle.host_port(9090) is not None
    assert fake_engine.containers[handle.container_id]["labels"]["servicebox.managed"] == "true"

    assert client.stop_container(None, handle.container_id) is True
    assert handle.container_id not in fake_engine.containers


def test_service_run_from_main_image_fails(client, fake_engine, main_artifact_text):
    result = client.create_main_image("TestFunction4", None, main_artifact_text, None, None)
    assert result == "testfunction4:latest"

    with pytest.raises(ClientError):
        client.run_service_container(None, "testfunction4")
    assert fake_engine.containers == {}


def test_service_run_missing_image_fails(client):
    with pytest.raises(ClientError):
        client.run_service_container(None, "nonexistentservice:latest")


def test_service_run_exiting_container_fails_and_is_removed(client, fake_engine, service_artifact_paths):
    client.create_service_image("TestService1", None, service_artifact_paths)
    fake_engine.service_status = "exited"
    fake_engine.output = "boom"

    with pytest.raises(ClientError, match="boom"):
        client.run_service_container(None, "testservice1")
    assert fake_engine.containers == {}


def test_service_run_never_running_times_out(client, fake_engine, service_artifact_paths):
    client.create_service_image("TestService1", None, service_artifact_paths)
    fake_engine.service_status = "created"

    with pytest.raises(ClientError, match="did not start"):
        client.run_service_container(None, "testservice1")
    assert fake_engine.containers == {}


def test_stop_unknown_container_fails(client):
    with pytest.raises(ClientError):
        client.stop_container(None, "nonexistingcontainerid")


def test_stop_twice_fails(client, service_artifact_paths):
    client.create_service_image("TestService1", None, service_artifact_paths)
    handle = client.run_service_container(None, "testservice1")
    client.stop_container(None, handle.container_id)

    with pytest.raises(ClientError):
        client.stop_container(None, handle.container_id)


def test_stop_non_running_container_fails(client, fake_engine, service_artifact_paths):
    client.create_service_image("TestService1", None, service_artifact_paths)
    handle = client.run_service_container(None, "testservice1")
    fake_engine.containers[handle.container_id]["status"] = "exited"

    with pytest.raises(ClientError, match="not running"):
        client.stop_container(None, handle.container_id)


def test_list_service_containers(client, service_artifact_paths):
    client.create_service_image("TestService1", None, service_artifact_paths)
    first = client.run_service_container(None, "testservice1")
    second = client.run_service_container(None, "testservice1")

    listed = {h.container_id for h in client.list_service_containers()}
    assert listed == {first.container_id, second.container_id}

    client.stop_container(None, first.container_id)
    assert {h.container_id for h in client.list_service_containers()} == {second.container_id}


# ---------- engine selection ----------

def test_engine_is_created_once_per_host(fake_engine, settings):
    hosts = []

    def factory(host):
        hosts.append(host)
        return fake_engine

    client = ContainerImageClient(engine_factory=factory, settings=settings)
    client.get_image("a")
    client.get_image("b")
    client.get_image("a", "tcp://10.0.0.5:2375")

    assert hosts == [None, "tcp://10.0.0.5:2375"]


def test_unreachable_engine_is_client_error(settings):
    def factory(host):
        raise EngineError("Cannot connect to Docker daemon")

    client = ContainerImageClient(engine_factory=factory, settings=settings)
    with pytest.raises(ClientError):
        client.get_image("anything")


def test_delete_image_accepts_returned_reference(client, fake_engine, main_artifact_text):
    ref = client.create_main_image("TestFunction2", None, main_artifact_text)

    assert client.delete_image(ref) is True
    assert ref not in fake_engine.images


def test_delete_image_accepts_returned_custom_reference(client, fake_engine, service_artifact_paths):
    ref = client.create_service_image("TestService1", None, service_artifact_paths, "customimagename", "0.0.1")

    assert client.delete_image(ref) is True
    assert fake_engine.images == {}


def test_delete_image_invalid_reference_fails_before_engine(client, fake_engine):
    fake_engine.add_image("unit:latest")

    with pytest.raises(ClientError):
        client.delete_image("unit:bad tag")
    assert "unit:latest" in fake_engine.images


def test_service_port_setting_reaches_unit_environment(fake_engine, service_artifact_paths):
    settings = Settings(base_image="alpine:3.20", service_port=8080, start_timeout=0.5, stop_timeout=1)
    client = ContainerImageClient(engine_factory=lambda host: fake_engine, settings=settings)

    client.create_service_image("TestService1", None, service_artifact_paths)
    handle = client.run_service_container(None, "testservice1")

    dockerfile = fake_engine.builds[-1]["files"]["Dockerfile"]
    assert "ENV SERVICE_PORT=8080" in dockerfile
    assert "EXPOSE 8080" in dockerfile
    assert handle.host_port(8080) is not None
