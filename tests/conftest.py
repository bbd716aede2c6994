"""Shared fixtures: in-memory platform API, and small ODT/PDF/image builders."""
import io
import json
import zipfile
from collections.abc import Callable
from pathlib import Path

import httpx
import pytest
from PIL import Image
from reportlab.pdfgen import canvas

from marksheets.config import Settings
from marksheets.services.platform_client import PlatformClient

API_BASE = "https://platform.test"

ODT_MIMETYPE = b"application/vnd.oasis.opendocument.text"

CONTENT_XML = """<?xml version="1.0" encoding="UTF-8"?>
<office:document-content xmlns:office="urn:oasis:names:tc:opendocument:xmlns:office:1.0"
 xmlns:text="urn:oasis:names:tc:opendocument:xmlns:text:1.0"
 xmlns:draw="urn:oasis:names:tc:opendocument:xmlns:drawing:1.0"
 xmlns:xlink="http://www.w3.org/1999/xlink" office:version="1.2">
<office:body><office:text>{body}</office:text></office:body>
</office:document-content>"""

STYLES_XML = """<?xml version="1.0" encoding="UTF-8"?>
<office:document-styles xmlns:office="urn:oasis:names:tc:opendocument:xmlns:office:1.0"
 xmlns:text="urn:oasis:names:tc:opendocument:xmlns:text:1.0" office:version="1.2">
<office:master-styles>{body}</office:master-styles>
</office:document-styles>"""


def build_odt(path: Path, body: str, styles_body: str = "", extra: dict[str, bytes] | None = None) -> Path:
    """Write a minimal ODF text package with the given office:text body."""
    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr("mimetype", ODT_MIMETYPE, compress_type=zipfile.ZIP_STORED)
        zf.writestr("content.xml", CONTENT_XML.format(body=body), compress_type=zipfile.ZIP_DEFLATED)
        zf.writestr("styles.xml", STYLES_XML.format(body=styles_body), compress_type=zipfile.ZIP_DEFLATED)
        zf.writestr(
            "META-INF/manifest.xml",
            '<?xml version="1.0" encoding="UTF-8"?><manifest:manifest '
            'xmlns:manifest="urn:oasis:names:tc:opendocument:xmlns:manifest:1.0"/>',
        )
        for name, data in (extra or {}).items():
            zf.writestr(name, data)
    return path


def odt_part(path: Path, part: str = "content.xml") -> str:
    with zipfile.ZipFile(path) as zf:
        return zf.read(part).decode("utf-8")


def build_pdf(pages: int = 1, label: str = "Marksheet", pagesize=(595, 842)) -> bytes:
    packet = io.BytesIO()
    can = canvas.Canvas(packet, pagesize=pagesize)
    for number in range(1, pages + 1):
        can.drawString(72, 720, f"{label} page {number}")
        can.showPage()
    can.save()
    return packet.getvalue()


def build_image(color: str, fmt: str = "PNG", size=(8, 8)) -> bytes:
    output = io.BytesIO()
    Image.new("RGB", size, color).save(output, format=fmt)
    return output.getvalue()


class FakePlatform:
    """
    Routes requests to canned responses and records every request it sees.

    routes maps (method, path-or-absolute-url) to a response factory or an httpx.Response.
    """

    def __init__(self):
        self.routes: dict[tuple[str, str], Callable[[httpx.Request], httpx.Response] | httpx.Response] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, target: str, response) -> None:
        self.routes[(method, target)] = response

    def add_json(self, method: str, target: str, body, status_code: int = 200) -> None:
        self.add(method, target, httpx.Response(status_code, json=body))

    def calls(self, target: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == target or str(r.url) == target]

    def json_calls(self, target: str) -> list[dict]:
        return [json.loads(r.content) for r in self.calls(target)]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for key in ((request.method, str(request.url)), (request.method, request.url.path)):
            if key in self.routes:
                response = self.routes[key]
                return response(request) if callable(response) else response
        return httpx.Response(404, text=f"No route for {request.method} {request.url}")


@pytest.fixture
def settings(tmp_path):
    return Settings(
        api_base_url=API_BASE,
        output_dir=str(tmp_path / "output"),
        storage_path=str(tmp_path / "storage"),
    )


@pytest.fixture
def platform():
    return FakePlatform()


@pytest.fixture
def make_client(settings, platform):
    """Factory for a PlatformClient wired to the fake platform; call inside the coroutine under test."""

    def _make(custom_settings: Settings | None = None) -> PlatformClient:
        return PlatformClient(custom_settings or settings, transport=httpx.MockTransport(platform.handler))

    return _make
