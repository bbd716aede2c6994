"""Pre-render patching of ODF template packages (image swap, literal text replacement)."""

import io
import logging
import posixpath
import re
import uuid
import zipfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any
from xml.etree import ElementTree
from xml.sax.saxutils import escape

from PIL import Image, UnidentifiedImageError

from marksheets.services.platform_client import PlatformAPIError, PlatformClient

logger = logging.getLogger(__name__)

ODF_MIMETYPE_ENTRY = "mimetype"
ODF_XML_PARTS = ("content.xml", "styles.xml")
DOCX_XML_PART = re.compile(r"^word/(document|header\d*|footer\d*)\.xml$")

DRAW_NS = "urn:oasis:names:tc:opendocument:xmlns:drawing:1.0"
XLINK_NS = "http://www.w3.org/1999/xlink"

# Pillow save format per package image extension
IMAGE_FORMATS = {
    ".png": "PNG",
    ".jpg": "JPEG",
    ".jpeg": "JPEG",
    ".gif": "GIF",
    ".bmp": "BMP",
}


def read_odf_package(path: Path) -> dict[str, bytes]:
    """
    Read every entry of an ODF package into memory, keeping archive order.

    Raises:
        zipfile.BadZipFile: If the file is not a valid zip archive
    """
    with zipfile.ZipFile(path) as zf:
        return {info.filename: zf.read(info.filename) for info in zf.infolist()}


def write_odf_package(entries: dict[str, bytes], dest: Path) -> Path:
    """
    Write an ODF package.

    The ``mimetype`` entry must be the first entry and stored uncompressed, otherwise
    office suites refuse the file; every other entry is deflated.
    """
    with zipfile.ZipFile(dest, "w") as zf:
        if ODF_MIMETYPE_ENTRY in entries:
            zf.writestr(ODF_MIMETYPE_ENTRY, entries[ODF_MIMETYPE_ENTRY], compress_type=zipfile.ZIP_STORED)
        for name, data in entries.items():
            if name == ODF_MIMETYPE_ENTRY:
                continue
            zf.writestr(name, data, compress_type=zipfile.ZIP_DEFLATED)
    return dest


def text_parts(entries: dict[str, bytes]) -> list[str]:
    """Names of the XML entries holding template text, for ODF and OOXML word packages."""
    return [name for name in entries if name in ODF_XML_PARTS or DOCX_XML_PART.match(name)]


def find_frame_images(xml_bytes: bytes, frame_names: set[str]) -> dict[str, str]:
    """
    Map named draw:frame elements to the package path of the image they display.

    Returns:
        {frame_name: "Pictures/xyz.png"} for each requested frame found with an internal image
    """
    found: dict[str, str] = {}
    try:
        root = ElementTree.fromstring(xml_bytes)
    except ElementTree.ParseError as e:
        logger.warning(f"Could not parse ODF XML part: {e}")
        return found

    for frame in root.iter(f"{{{DRAW_NS}}}frame"):
        name = frame.get(f"{{{DRAW_NS}}}name")
        if name not in frame_names or name in found:
            continue
        image = frame.find(f"{{{DRAW_NS}}}image")
        if image is None:
            continue
        href = image.get(f"{{{XLINK_NS}}}href") or ""
        # External links cannot be swapped inside the package
        if href and "://" not in href:
            found[name] = posixpath.normpath(href.lstrip("./"))
    return found


def convert_image(content: bytes, target_name: str) -> bytes | None:
    """
    Re-encode image bytes into the format implied by the target entry's extension.

    Returns None if the content is not a readable image.
    """
    target_format = IMAGE_FORMATS.get(posixpath.splitext(target_name)[1].lower())
    try:
        with Image.open(io.BytesIO(content)) as img:
            img.load()
            if target_format is None or img.format == target_format:
                return content
            if target_format == "JPEG" and img.mode not in ("RGB", "L"):
                img = img.convert("RGB")
            output = io.BytesIO()
            img.save(output, format=target_format)
            return output.getvalue()
    except (UnidentifiedImageError, OSError) as e:
        logger.warning(f"Replacement for {target_name} is not a valid image: {e}")
        return None


class DocumentTemplate(ABC):
    """Capability that patches a document template before it is rendered."""

    @abstractmethod
    async def apply(self, template_path: Path, work_dir: Path) -> Path:
        """
        Patch the template and return the path of the template to render.

        Implementations never modify template_path in place; patched copies are
        written into work_dir, which the caller cleans up.
        """
        pass


class NoOpTemplate(DocumentTemplate):
    """Template used as-is."""

    async def apply(self, template_path: Path, work_dir: Path) -> Path:
        return template_path


class ImageReplaceTemplate(DocumentTemplate):
    """
    Swap images displayed in named draw:frame elements of an ODF template.

    Images are fetched by URL and written over the package entry the frame points at,
    so layout (size, anchoring, cropping) stays as designed in the template. A frame
    whose image cannot be fetched keeps its original picture. A package that cannot be
    read is returned unmodified.
    """

    def __init__(self, frames: dict[str, str], client: PlatformClient):
        self.frames = {name: url for name, url in frames.items() if url}
        self.client = client

    async def _fetch(self, frame: str, url: str) -> bytes | None:
        try:
            return await self.client.download(url)
        except PlatformAPIError as e:
            logger.warning(f"Skipping image for frame '{frame}': {e}")
            return None

    async def apply(self, template_path: Path, work_dir: Path) -> Path:
        if not self.frames:
            return template_path
        try:
            entries = read_odf_package(template_path)
        except (zipfile.BadZipFile, OSError) as e:
            logger.error(f"Template {template_path} is not a valid package, using it unmodified: {e}")
            return template_path

        targets: dict[str, str] = {}
        for part in ODF_XML_PARTS:
            if part in entries:
                for frame, href in find_frame_images(entries[part], set(self.frames)).items():
                    targets.setdefault(frame, href)

        replaced = 0
        for frame, url in self.frames.items():
            href = targets.get(frame)
            if href is None or href not in entries:
                logger.debug(f"No internal image found for frame '{frame}'")
                continue
            content = await self._fetch(frame, url)
            if content is None:
                continue
            converted = convert_image(content, href)
            if converted is None:
                continue
            entries[href] = converted
            replaced += 1

        if not replaced:
            return template_path

        dest = work_dir / f"{template_path.stem}_{uuid.uuid4().hex[:8]}{template_path.suffix}"
        write_odf_package(entries, dest)
        logger.debug(f"Replaced {replaced} image(s) in {dest.name}")
        return dest


class TextReplaceTemplate(DocumentTemplate):
    """
    Replace literal ``{key}`` tokens in the text parts of an ODT or DOCX template.

    Values are XML-escaped. Jinja expressions such as ``{{ key }}`` are left alone.
    Used for job-wide header fields that are not part of the per-student context.
    """

    def __init__(self, values: dict[str, Any]):
        self.values = values

    def _replace(self, xml: str) -> str:
        for key, value in self.values.items():
            token = re.compile(r"(?<!\{)\{" + re.escape(str(key)) + r"\}(?!\})")
            replacement = escape("" if value is None else str(value))
            xml = token.sub(lambda _: replacement, xml)
        return xml

    async def apply(self, template_path: Path, work_dir: Path) -> Path:
        if not self.values:
            return template_path
        try:
            entries = read_odf_package(template_path)
        except (zipfile.BadZipFile, OSError) as e:
            logger.error(f"Template {template_path} is not a valid package, using it unmodified: {e}")
            return template_path

        changed = False
        for part in text_parts(entries):
            original = entries[part].decode("utf-8")
            patched = self._replace(original)
            if patched != original:
                entries[part] = patched.encode("utf-8")
                changed = True

        if not changed:
            return template_path

        dest = work_dir / f"{template_path.stem}_header{template_path.suffix}"
        write_odf_package(entries, dest)
        logger.info(f"Applied {len(self.values)} header field(s) to template")
        return dest
