"""Helpers for naming, saving, and resolving screenshot artifacts.

Every artifact lives directly under one screenshots directory. File names
carry the symbol, the timeframe code, a minute-granularity timestamp and a
random suffix, so concurrent capture runs never collide within the same
minute. Encoded buffers are sniffed with Pillow to pick the extension and are
written with aiofiles to keep the event loop free.
"""

from __future__ import annotations

import io
import uuid
from datetime import datetime
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import Optional

import aiofiles
from PIL import Image, UnidentifiedImageError

IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg")

MEDIA_TYPES = {".png": "image/png", ".jpg": "image/jpeg", ".jpeg": "image/jpeg"}


def detect_image_format(buffer: bytes) -> str:
    """Return "jpeg" or "png" for an encoded screenshot buffer.

    Raises:
        ValueError: If the bytes are empty or not a recognizable image.
    """
    if not buffer:
        raise ValueError("Image buffer is empty.")
    try:
        with Image.open(io.BytesIO(buffer)) as img:
            fmt = (img.format or "").lower()
    except UnidentifiedImageError as exc:
        raise ValueError("Buffer is not a supported image format") from exc
    return "jpeg" if fmt in ("jpeg", "jpg") else "png"


def media_type_for(path: Path) -> str:
    return MEDIA_TYPES.get(path.suffix.lower(), "application/octet-stream")


class ArtifactStore:
    """Own the screenshots directory and its naming scheme.

    Args:
        directory: Directory holding every persisted screenshot.
        base_url: Public base URL used to build artifact links.
    """

    def __init__(self, directory: Path | str, base_url: str = "") -> None:
        self.directory = Path(directory)
        self.base_url = base_url.rstrip("/")

    def ensure_directory(self) -> Path:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except Exception as exc:
            raise RuntimeError(f"Failed to create or access screenshots directory at {self.directory}") from exc
        return self.directory

    def new_path(self, symbol: str, code: str, ext: str = "png", now: Optional[datetime] = None) -> Path:
        """Return a fresh, collision-resistant path for one artifact."""
        stamp = (now or datetime.now()).strftime("%Y-%m-%d_%H-%M")
        suffix = uuid.uuid4().hex[:8]
        ext = "jpg" if ext in ("jpeg", "jpg") else ext
        return self.directory / f"{symbol}_{code}_{stamp}_{suffix}.{ext}"

    async def save(self, buffer: bytes, symbol: str, code: str) -> Path:
        """Write an encoded screenshot buffer and return its path.

        Raises:
            ValueError: If the buffer is empty or not an image.
        """
        fmt = detect_image_format(buffer)
        self.ensure_directory()
        path = self.new_path(symbol, code, fmt)
        async with aiofiles.open(path, "wb") as fh:
            await fh.write(buffer)
        return path

    def resolve(self, name: str) -> Optional[Path]:
        """Resolve a client-supplied name to an existing artifact.

        Only the base name is honoured, so `../../etc/passwd` and nested
        segments collapse to a file directly inside the directory.
        """
        base = PureWindowsPath(PurePosixPath(name or "").name).name
        if not base or base in (".", ".."):
            return None
        candidate = self.directory / base
        if not candidate.is_file():
            return None
        return candidate

    def public_url(self, path: Path) -> str:
        return f"{self.base_url}/screenshots/{path.name}"
