"""Static serving for the bundled admin single-page UI.

The dist directory is read once into an AssetTable at startup and never
touched again; every request is answered from that in-memory table.
"""

from __future__ import annotations

import json
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Mapping, Optional

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse, Response

from pooladmin.config import dlog


INDEX_DOCUMENT = "index.html"
CONFIG_GLOBAL = "__POOL_ADMIN_CONFIG__"
DEFAULT_MIME = "application/octet-stream"

NO_CACHE = "no-cache"
IMMUTABLE_CACHE = "public, max-age=31536000, immutable"
SHORT_CACHE = "public, max-age=3600"

UI_NOT_BUILT = "Admin UI not built. Run 'pnpm build' in admin-ui directory."


@dataclass(frozen=True)
class Asset:
    data: bytes
    mime: str


class AssetTable:
    """Read-only mapping of POSIX relative path -> Asset."""

    def __init__(self, files: Optional[Mapping[str, Asset]] = None) -> None:
        self._files: Mapping[str, Asset] = MappingProxyType(dict(files or {}))

    @classmethod
    def from_directory(cls, root: str) -> "AssetTable":
        base = Path(root)
        if not base.is_dir():
            dlog("admin_ui_assets_missing", str(base))
            return cls()
        files: Dict[str, Asset] = {}
        for path in sorted(base.rglob("*")):
            if not path.is_file():
                continue
            rel = path.relative_to(base).as_posix()
            files[rel] = Asset(data=path.read_bytes(), mime=guess_mime(rel))
        dlog("admin_ui_assets_loaded", {"root": str(base), "files": len(files)})
        return cls(files)

    @classmethod
    def from_bytes(cls, files: Mapping[str, bytes]) -> "AssetTable":
        return cls({name: Asset(data=data, mime=guess_mime(name)) for name, data in files.items()})

    def get(self, path: str) -> Optional[Asset]:
        return self._files.get(path)

    def __contains__(self, path: str) -> bool:
        return path in self._files

    def __len__(self) -> int:
        return len(self._files)


def guess_mime(path: str) -> str:
    mime, _ = mimetypes.guess_type(path)
    return mime or DEFAULT_MIME


def cache_control_for(path: str) -> str:
    if path.endswith(".html"):
        return NO_CACHE
    if path.startswith("assets/"):
        # content-hashed filenames
        return IMMUTABLE_CACHE
    return SHORT_CACHE


def looks_like_file(path: str) -> bool:
    """True when the last path segment has an extension."""
    return "." in path.rsplit("/", 1)[-1]


def config_script(base_path: str) -> str:
    payload = json.dumps({"basePath": base_path}).replace("</", "<\\/")
    return f"<script>window.{CONFIG_GLOBAL}={payload}</script>"


def inject_config(html: str, base_path: str) -> str:
    # only the first </head>; later occurrences are document content
    return html.replace("</head>", config_script(base_path) + "</head>", 1)


def serve_index(assets: AssetTable, base_path: str) -> Response:
    """Serve index.html with the runtime config injected before </head>."""
    asset = assets.get(INDEX_DOCUMENT)
    if asset is None:
        return PlainTextResponse(UI_NOT_BUILT, status_code=404)
    html = asset.data.decode("utf-8", errors="replace")
    return Response(
        content=inject_config(html, base_path),
        status_code=200,
        headers={"Content-Type": "text/html; charset=utf-8", "Cache-Control": NO_CACHE},
    )


def static_handler(assets: AssetTable, base_path: str, path: str) -> Response:
    path = path.replace("\\", "/").lstrip("/")

    if ".." in path:
        dlog("admin_ui_rejected_path", path)
        return PlainTextResponse("Invalid path", status_code=400)

    if not path:
        return serve_index(assets, base_path)

    asset = assets.get(path)
    if asset is not None:
        return Response(
            content=asset.data,
            status_code=200,
            media_type=asset.mime,
            headers={"Cache-Control": cache_control_for(path)},
        )

    # Client-side route: let the SPA router handle it.
    if not looks_like_file(path):
        return serve_index(assets, base_path)

    return PlainTextResponse("Not found", status_code=404)


def create_admin_ui_router(base_path: str, assets: AssetTable, prefix: str = "/admin") -> APIRouter:
    """Create the router serving the admin SPA and its assets."""
    router = APIRouter(prefix=prefix)

    async def index_handler() -> Response:
        return serve_index(assets, base_path)

    async def file_handler(file_path: str) -> Response:
        return static_handler(assets, base_path, file_path)

    if prefix:
        router.add_api_route("", index_handler, methods=["GET"], include_in_schema=False)
    router.add_api_route("/", index_handler, methods=["GET"], include_in_schema=False)
    router.add_api_route("/{file_path:path}", file_handler, methods=["GET"], include_in_schema=False)
    return router
