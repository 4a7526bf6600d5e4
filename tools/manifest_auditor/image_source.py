"""Resource-only, non-executing view of a Windows PE image.

The image is read through :class:`tools.common.safe_io.SafeReader` and
handed to ``pefile`` as a plain byte buffer.  Only the resource data
directory is parsed: there is no OS loader involved, so no entry point,
TLS callback, or import resolution can ever run for a hostile sample.

Designed for Python 3.10+.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import pefile

from tools.common.safe_io import SafeReader

logger = logging.getLogger(__name__)

_RESOURCE_DIRECTORY_INDEX = pefile.DIRECTORY_ENTRY["IMAGE_DIRECTORY_ENTRY_RESOURCE"]


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ManifestAuditError(Exception):
    """Base class for manifest auditor errors."""


class LoadError(ManifestAuditError):
    """The image cannot be opened or mapped as a resource container."""


class ResourceLookupError(ManifestAuditError):
    """A single resource's directory entry or size cannot be resolved."""


# ---------------------------------------------------------------------------
# Image handle
# ---------------------------------------------------------------------------


class ImageResourceSource:
    """Scoped, read-only handle over the resource table of a PE image.

    Use :meth:`open` (or the instance itself) as a context manager; the
    underlying ``pefile.PE`` object is released exactly once no matter
    how the block exits::

        with ImageResourceSource.open("sample.exe") as image:
            entry = image.resource_type_directory(24)
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path = Path(path)
        self._pe: pefile.PE | None = None
        self._closed = True

    @classmethod
    def open(cls, path: str | os.PathLike[str]) -> ImageResourceSource:
        """Open *path* and parse its resource directory.

        Raises
        ------
        LoadError
            If the file does not exist, cannot be read, or is not a
            valid PE image.
        """
        source = cls(path)
        source._load()
        return source

    # -- context manager ----------------------------------------------------

    def __enter__(self) -> ImageResourceSource:
        self._load()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        self.close()

    # -- open / close -------------------------------------------------------

    def _load(self) -> None:
        if not self._closed:
            return

        try:
            with SafeReader(self._path) as reader:
                raw_data = reader.read_all()
        except (OSError, ValueError) as exc:
            raise LoadError(f"Cannot read image {self._path}: {exc}") from exc

        try:
            pe = pefile.PE(data=raw_data, fast_load=True)
        except pefile.PEFormatError as exc:
            raise LoadError(f"Not a valid PE image {self._path}: {exc}") from exc

        try:
            pe.parse_data_directories(directories=[_RESOURCE_DIRECTORY_INDEX])
        except pefile.PEFormatError as exc:
            pe.close()
            raise LoadError(
                f"Cannot parse resource directory of {self._path}: {exc}"
            ) from exc

        self._pe = pe
        self._closed = False
        logger.info("Opened image %s (%d bytes)", self._path, len(raw_data))

    def close(self) -> None:
        """Release the parsed image.  Calling this more than once is a no-op."""
        if self._closed:
            return
        if self._pe is not None:
            self._pe.close()
        self._pe = None
        self._closed = True
        logger.debug("Closed image %s", self._path)

    def _ensure_open(self) -> pefile.PE:
        if self._closed or self._pe is None:
            raise RuntimeError(
                "ImageResourceSource is not open; use it as a context manager"
            )
        return self._pe

    # -- lookup primitives --------------------------------------------------

    @property
    def path(self) -> Path:
        """Return the path the image was opened from."""
        return self._path

    @property
    def closed(self) -> bool:
        return self._closed

    def resource_type_directory(self, type_id: int) -> Any | None:
        """Return the resource directory entry for numeric *type_id*.

        Returns ``None`` when the image has no resource table or no entry
        of that type.  Named (string) type entries never match.
        """
        pe = self._ensure_open()
        root = getattr(pe, "DIRECTORY_ENTRY_RESOURCE", None)
        if root is None:
            return None

        for entry in root.entries:
            if entry.name is None and entry.id == type_id:
                return entry
        return None

    def get_data(self, rva: int, size: int) -> bytes:
        """Return *size* bytes located at relative virtual address *rva*.

        Raises
        ------
        ResourceLookupError
            If the address cannot be mapped into the image.
        """
        pe = self._ensure_open()
        try:
            return pe.get_data(rva, size)
        except pefile.PEFormatError as exc:
            raise ResourceLookupError(
                f"Data at RVA 0x{rva:x} cannot be fetched: {exc}"
            ) from exc

    def __repr__(self) -> str:
        state = "open" if not self._closed else "closed"
        return f"<ImageResourceSource path={str(self._path)!r} state={state}>"
