"""
Common test fixtures for the secure upload service.

Builders here produce real file content (Pillow images, zip and tar archives,
PE-like payloads) so validation runs against genuine formats.
"""

import io
import random
import struct
import tarfile
import zipfile
import zlib
from typing import Dict, Optional

from PIL import Image


DOS_STUB = b"This program cannot be run in DOS mode."


class MockFileUpload:
    """Mock file upload data model that mimics FastAPI UploadFile."""

    def __init__(self, filename: Optional[str], content: bytes, content_type: str = "application/octet-stream"):
        self.filename = filename
        self.content = content
        self.content_type = content_type
        self._position = 0

    async def read(self, size: int = -1) -> bytes:
        """Read file content from the current position."""
        if size is None or size < 0:
            size = len(self.content) - self._position
        chunk = self.content[self._position:self._position + size]
        self._position += len(chunk)
        return chunk

    async def seek(self, position: int) -> None:
        """Seek to position in file."""
        self._position = position


def png_bytes(width: int = 16, height: int = 16, color=(200, 30, 30)) -> bytes:
    """A small valid PNG image."""
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


def wide_png_bytes(width: int) -> bytes:
    """A one pixel high greyscale PNG, cheap even for huge widths."""
    buffer = io.BytesIO()
    Image.new("L", (width, 1)).save(buffer, format="PNG")
    return buffer.getvalue()


def _png_chunk(kind: bytes, data: bytes) -> bytes:
    return struct.pack(">I", len(data)) + kind + data + struct.pack(">I", zlib.crc32(kind + data) & 0xFFFFFFFF)


def png_header_bytes(width: int, height: int) -> bytes:
    """A structurally valid PNG that declares huge dimensions without the pixel data."""
    header = struct.pack(">IIBBBBB", width, height, 8, 0, 0, 0, 0)
    return (
        b"\x89PNG\r\n\x1a\n"
        + _png_chunk(b"IHDR", header)
        + _png_chunk(b"IDAT", zlib.compress(b"\x00"))
        + _png_chunk(b"IEND", b"")
    )


def jpeg_with_exif_bytes(width: int = 256, height: int = 256, seed: int = 7) -> bytes:
    """
    A noisy photo-like JPEG carrying EXIF camera metadata.

    Deterministic noise keeps the file in the 100-200 KB range.
    """
    rng = random.Random(seed)
    image = Image.frombytes("RGB", (width, height), bytes(rng.getrandbits(8) for _ in range(width * height * 3)))

    exif = Image.Exif()
    exif[0x010F] = "Canon"  # Make
    exif[0x0110] = "Canon EOS 5D"  # Model
    exif[0x0132] = "2024:01:15 10:30:00"  # DateTime

    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=95, exif=exif.tobytes())
    return buffer.getvalue()


def zip_bytes(entries: Dict[str, bytes], compression: int = zipfile.ZIP_STORED) -> bytes:
    """A zip archive holding the given entries."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=compression) as archive:
        for name, content in entries.items():
            archive.writestr(name, content)
    return buffer.getvalue()


def tar_bytes(entries: Dict[str, bytes]) -> bytes:
    """An uncompressed tar archive holding the given entries."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as archive:
        for name, content in entries.items():
            info = tarfile.TarInfo(name=name)
            info.size = len(content)
            archive.addfile(info, io.BytesIO(content))
    return buffer.getvalue()


def pe_bytes(padding: int = 64) -> bytes:
    """Bytes shaped like a Windows executable: MZ header followed by the DOS stub text."""
    return b"MZ" + b"\x90\x00" * padding + DOS_STUB + b"\r\r\n$" + b"\x00" * padding


def pdf_bytes(body: bytes = b"") -> bytes:
    """A minimal PDF-looking document with an optional body."""
    return b"%PDF-1.4\n1 0 obj\n<< /Type /Catalog >>\nendobj\n" + body + b"\n%%EOF\n"
