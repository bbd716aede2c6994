import asyncio
import io
import zipfile

import httpx
from PIL import Image

from conftest import build_image, build_odt, odt_part
from marksheets.services.document_template import (
    ImageReplaceTemplate,
    NoOpTemplate,
    TextReplaceTemplate,
    find_frame_images,
)

FRAME_BODY = (
    '<text:p>Report</text:p>'
    '<draw:frame draw:name="student_photo"><draw:image xlink:href="Pictures/photo.png"/></draw:frame>'
    '<draw:frame draw:name="logo"><draw:image xlink:href="https://cdn.test/logo.png"/></draw:frame>'
)
PHOTO_URL = "https://files.test/asha.jpg"


def _photo_template(tmp_path):
    return build_odt(tmp_path / "template.odt", FRAME_BODY, extra={"Pictures/photo.png": build_image("red")})


def test_noop_returns_same_path(tmp_path):
    path = build_odt(tmp_path / "template.odt", "<text:p>x</text:p>")
    assert asyncio.run(NoOpTemplate().apply(path, tmp_path)) == path


def test_find_frame_images_skips_external_links(tmp_path):
    xml = odt_part(_photo_template(tmp_path)).encode()
    assert find_frame_images(xml, {"student_photo", "logo", "missing"}) == {"student_photo": "Pictures/photo.png"}


def test_image_replace_converts_to_template_format(tmp_path, platform, make_client):
    template = _photo_template(tmp_path)
    platform.add("GET", PHOTO_URL, httpx.Response(200, content=build_image("blue", fmt="JPEG")))

    async def run():
        async with make_client() as client:
            return await ImageReplaceTemplate({"student_photo": PHOTO_URL}, client).apply(template, tmp_path)

    result = asyncio.run(run())

    assert result != template
    with zipfile.ZipFile(result) as zf:
        first = zf.infolist()[0]
        assert first.filename == "mimetype"
        assert first.compress_type == zipfile.ZIP_STORED
        with Image.open(io.BytesIO(zf.read("Pictures/photo.png"))) as img:
            assert img.format == "PNG"
            red, green, blue = img.convert("RGB").getpixel((4, 4))
            assert blue > 200 and red < 50


def test_image_fetch_failure_keeps_original(tmp_path, platform, make_client):
    template = _photo_template(tmp_path)
    platform.add("GET", PHOTO_URL, httpx.Response(404))

    async def run():
        async with make_client() as client:
            return await ImageReplaceTemplate({"student_photo": PHOTO_URL}, client).apply(template, tmp_path)

    assert asyncio.run(run()) == template


def test_malformed_image_url_keeps_original(tmp_path, platform, make_client):
    template = _photo_template(tmp_path)

    async def run():
        async with make_client() as client:
            return await ImageReplaceTemplate({"student_photo": "http://[::1/x.png"}, client).apply(template, tmp_path)

    assert asyncio.run(run()) == template
    assert platform.requests == []


def test_image_replace_rejects_non_image_bytes(tmp_path, platform, make_client):
    template = _photo_template(tmp_path)
    platform.add("GET", PHOTO_URL, httpx.Response(200, content=b"<html>not an image</html>"))

    async def run():
        async with make_client() as client:
            return await ImageReplaceTemplate({"student_photo": PHOTO_URL}, client).apply(template, tmp_path)

    assert asyncio.run(run()) == template


def test_image_replace_corrupt_package_returns_original(tmp_path, make_client):
    broken = tmp_path / "broken.odt"
    broken.write_bytes(b"not a zip")

    async def run():
        async with make_client() as client:
            return await ImageReplaceTemplate({"student_photo": PHOTO_URL}, client).apply(broken, tmp_path)

    assert asyncio.run(run()) == broken


def test_text_replace_escapes_and_keeps_jinja(tmp_path):
    template = build_odt(
        tmp_path / "template.odt",
        "<text:p>{school_name}</text:p><text:p>{{ full_name }}</text:p><text:p>{unknown}</text:p>",
        styles_body="<text:p>{exam_title}</text:p>",
    )
    values = {"school_name": "Sunrise <Public> & Co", "exam_title": "Annual 2025"}

    result = asyncio.run(TextReplaceTemplate(values).apply(template, tmp_path))

    content = odt_part(result)
    assert "Sunrise &lt;Public&gt; &amp; Co" in content
    assert "{{ full_name }}" in content
    assert "{unknown}" in content
    assert "Annual 2025" in odt_part(result, "styles.xml")
    with zipfile.ZipFile(result) as zf:
        assert zf.infolist()[0].filename == "mimetype"


def test_text_replace_without_matches_returns_original(tmp_path):
    template = build_odt(tmp_path / "template.odt", "<text:p>static</text:p>")
    assert asyncio.run(TextReplaceTemplate({"school_name": "x"}).apply(template, tmp_path)) == template


def test_text_replace_corrupt_package_returns_original(tmp_path):
    broken = tmp_path / "broken.odt"
    broken.write_bytes(b"not a zip")
    assert asyncio.run(TextReplaceTemplate({"a": "b"}).apply(broken, tmp_path)) == broken
