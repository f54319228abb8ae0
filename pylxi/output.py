# output.py
"""Output sinks for responses: binary file dump, hex dump, image export."""

from __future__ import annotations

import io
import logging
import sys
from typing import Optional, TextIO

from PIL import Image, PngImagePlugin, UnidentifiedImageError

from pylxi import __version__
from pylxi.errors import DumpFileError

LOG = logging.getLogger(__name__)


def file_dump(data: bytes, filename: str) -> int:
    """Write data verbatim to filename (created or truncated). Returns bytes written."""
    try:
        with open(filename, "wb") as f:
            f.write(data)
    except OSError as e:
        raise DumpFileError(f"Cannot write {filename}: {e.strerror or e}") from e
    LOG.debug('%d bytes written to %s', len(data), filename)
    return len(data)


def format_hex(data: bytes, width: int = 16) -> str:
    """Space separated lowercase hex bytes, `width` per line."""
    lines = []
    for i in range(0, len(data), width):
        lines.append(' '.join(f"{b:02x}" for b in data[i:i + width]))
    return '\n'.join(lines)


def hex_print(data: bytes, out: Optional[TextIO] = None) -> None:
    out = out or sys.stdout
    if data:
        out.write(format_hex(data) + '\n')
    out.flush()


def make_pnginfo(description: str, comment: str = "") -> PngImagePlugin.PngInfo:
    pi = PngImagePlugin.PngInfo()
    pi.add_text("Generator", f"pylxi V{__version__}")
    pi.add_text("Description", description)
    if comment:
        pi.add_text("Extra text", comment)
    return pi


def save_image(data: bytes, filename: str, *, description: str = "Screenshot") -> Image.Image:
    """Decode an instrument image (BMP/PNG/...) and save it in the format filename implies.

    PNG output carries Generator/Description text chunks.
    """
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise DumpFileError(f"Screenshot data is not a known image format: {e}") from e

    LOG.info('Image %dx%d (%s)', img.width, img.height, img.format)
    try:
        if filename.lower().endswith(".png"):
            img.save(filename, "PNG", pnginfo=make_pnginfo(description))
        else:
            img.save(filename)
    except (OSError, ValueError) as e:
        raise DumpFileError(f"Cannot write {filename}: {e}") from e
    return img
