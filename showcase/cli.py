import argparse
import asyncio
import json
import mimetypes
import sys
from pathlib import Path

import httpx

from showcase.config import Settings, settings
from showcase.errors import ConfigError, UploadError
from showcase.router import UploadRouter
from showcase.tracing import setup_tracing, shutdown_tracing
from showcase.validation import format_file_size

DEFAULT_CONTENT_TYPE = "application/octet-stream"


def _settings_for(args: argparse.Namespace) -> Settings:
    if getattr(args, "control_plane", None):
        return settings.model_copy(update={"control_plane_url": args.control_plane})
    return settings


async def _upload(args: argparse.Namespace) -> int:
    path = Path(args.path)
    if not path.is_file():
        print(f"[FAIL] {path} is not a file", file=sys.stderr)
        return 1
    content_type = args.content_type or mimetypes.guess_type(path.name)[0] or DEFAULT_CONTENT_TYPE
    source = _settings_for(args)
    try:
        router = UploadRouter.from_settings(source)
    except ConfigError as exc:
        print(f"[FAIL] {exc}", file=sys.stderr)
        return 1

    data = path.read_bytes()
    print(f"Uploading {path.name} ({format_file_size(len(data))}, {content_type}) via {source.control_plane_url}")
    async with router:
        stream = router.stream(data, content_type, folder=args.folder, file_name=path.name)
        try:
            async for snapshot in stream:
                print(
                    f"{snapshot.percentage:3d}% "
                    f"{format_file_size(snapshot.loaded)} / {format_file_size(snapshot.total)}"
                )
        except UploadError as exc:
            print(f"[FAIL] {exc.user_message}", file=sys.stderr)
            print(f"[DETAIL] {exc.cause}", file=sys.stderr)
            return 1
    print(stream.public_url)
    return 0


def _check(args: argparse.Namespace) -> int:
    base_url = _settings_for(args).control_plane_url.rstrip("/")
    print(f"Checking control plane at {base_url}")
    with httpx.Client(base_url=base_url, timeout=10.0) as client:
        try:
            health = client.get("/health")
        except httpx.HTTPError as exc:
            print(f"[FAIL] Could not connect to service: {exc}")
            return 1

        print(f"[INFO] /health status={health.status_code}")
        if health.status_code != 200:
            print("[FAIL] /health is not healthy.")
            return 1

        version = client.get("/version")
        if version.status_code != 200:
            print(f"[FAIL] /version status={version.status_code}")
            return 1
        payload = version.json()
        print(f"[OK] version payload: {json.dumps(payload, sort_keys=True)}")
        if not payload.get("storage_configured"):
            print("[FAIL] storage is not configured on the control plane.")
            return 2
    return 0


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("showcase.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="showcase-upload", description="Presigned multipart uploads to R2/S3.")
    commands = parser.add_subparsers(dest="command", required=True)

    upload = commands.add_parser("upload", help="Upload one file and print its public URL")
    upload.add_argument("path", help="File to upload")
    upload.add_argument("--folder", default=None, help="Object key folder; derived from the content type if omitted")
    upload.add_argument("--content-type", default=None, help="Content type; guessed from the file name if omitted")
    upload.add_argument("--control-plane", default=None, help="Control plane base URL")

    check = commands.add_parser("check", help="Verify the control plane is up and has storage configured")
    check.add_argument("--control-plane", default=None, help="Control plane base URL")

    serve = commands.add_parser("serve", help="Run the presign control plane")
    serve.add_argument("--host", default=settings.host)
    serve.add_argument("--port", type=int, default=settings.port)
    serve.add_argument("--reload", action="store_true")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if args.command == "upload":
        setup_tracing()
        try:
            return asyncio.run(_upload(args))
        finally:
            shutdown_tracing()
    if args.command == "check":
        return _check(args)
    return _serve(args)


if __name__ == "__main__":
    raise SystemExit(main())
