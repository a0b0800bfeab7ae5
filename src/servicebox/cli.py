"""Command-line interface for servicebox."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from servicebox import __version__
from servicebox.core.image_client import ContainerImageClient
from servicebox.errors import ClientError


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="servicebox",
        description="servicebox - build, run and manage container images for packaged units"
    )
    parser.add_argument(
        "--docker-host",
        default=None,
        help="Docker engine URL, e.g. tcp://10.0.0.5:2375 (default: from environment)"
    )

    subparsers = parser.add_subparsers(
        dest="command",
        help="Available commands"
    )

    def add_naming(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("--image-name", default=None, help="Custom image name (requires --image-version)")
        sub.add_argument("--image-version", default=None, help="Custom image version")

    build_main = subparsers.add_parser("build-main", help="Build a main image from an artifact file")
    build_main.add_argument("name", help="Unit name")
    build_main.add_argument("artifact", type=Path, help="File holding the main artifact text")
    add_naming(build_main)

    build_service = subparsers.add_parser("build-service", help="Build a service image from packaged artifacts")
    build_service.add_argument("name", help="Unit name")
    build_service.add_argument("artifacts", nargs="+", type=Path, help="Packaged service artifacts")
    add_naming(build_service)

    image = subparsers.add_parser("image", help="Show the image matching a name")
    image.add_argument("image_name", help="Image name, with or without a version")

    delete = subparsers.add_parser("delete", help="Delete an image")
    delete.add_argument("name", help="Unit name")
    delete.add_argument("--tag", default=None, help="Image version (default: latest)")
    delete.add_argument("--repository", default=None, help="Custom image name")

    run_main = subparsers.add_parser("run-main", help="Run a main image to completion")
    run_main.add_argument("image_name", help="Image to run")
    run_main.add_argument("--capture-output", action="store_true", help="Print the container's output")

    run_service = subparsers.add_parser("run-service", help="Start a service image")
    run_service.add_argument("image_name", help="Image to start")

    stop = subparsers.add_parser("stop", help="Stop a running container")
    stop.add_argument("container_id", help="Container id")

    subparsers.add_parser("ps", help="List running service containers")
    subparsers.add_parser("version", help="Show version information")
    return parser


def main(argv: Optional[List[str]] = None, client: Optional[ContainerImageClient] = None) -> int:
    """
    Run the servicebox CLI.

    Args:
        argv: Command-line arguments. If None, uses sys.argv.
        client: Client to use. If None, one is created for the configured engine.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    if args.command == "version":
        print(f"servicebox version {__version__}")
        return 0

    client = client or ContainerImageClient()
    host = args.docker_host
    try:
        if args.command == "build-main":
            try:
                text = args.artifact.read_text(encoding="utf-8")
            except OSError as e:
                raise ClientError(f"Cannot read main artifact {args.artifact}: {e}") from e
            print(client.create_main_image(args.name, host, text, args.image_name, args.image_version))

        elif args.command == "build-service":
            print(client.create_service_image(args.name, host, args.artifacts, args.image_name, args.image_version))

        elif args.command == "image":
            found = client.get_image(args.image_name, host)
            if found is None:
                print(f"Image not found: {args.image_name}", file=sys.stderr)
                return 1
            print(found)

        elif args.command == "delete":
            if not client.delete_image(args.name, args.tag, args.repository, host):
                print(f"Image not found: {args.name}", file=sys.stderr)
                return 1
            print("deleted")

        elif args.command == "run-main":
            output = client.run_main_container(host, args.image_name, capture_output=args.capture_output)
            if output is not None:
                sys.stdout.write(output)

        elif args.command == "run-service":
            handle = client.run_service_container(host, args.image_name)
            print(handle.model_dump_json())

        elif args.command == "stop":
            client.stop_container(host, args.container_id)
            print("stopped")

        elif args.command == "ps":
            for handle in client.list_service_containers(host):
                print(handle.model_dump_json())

    except ClientError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
