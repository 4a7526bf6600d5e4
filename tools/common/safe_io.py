"""Forensic-safe read-only I/O layer for binary triage.

This module provides strictly read-only file access primitives for
inspecting untrusted executables.  Samples are opened with O_RDONLY and
their bytes are handed to pure parsers, so a suspect binary is never
modified and never passed to an OS loader.

Key guarantees:
    - Sample files are opened exclusively with O_RDONLY.
    - No write, append, or truncate operations are exposed.
    - Symlinks that resolve to block/character devices are rejected.
    - Every file-access operation is logged for audit trail purposes.

Designed for Python 3.10+ with no external dependencies.
"""

from __future__ import annotations

import logging
import os
import stat
from pathlib import Path

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Standalone validation helpers
# ---------------------------------------------------------------------------


def validate_evidence_path(path: str | os.PathLike[str]) -> Path:
    """Validate that *path* is a readable regular file suitable as evidence.

    Performs the following checks:
        1. The path exists on disk.
        2. The **resolved** path (after symlink resolution) points to a
           regular file -- not a directory, device, FIFO, or socket.
        3. The current process has read permission.

    Parameters
    ----------
    path:
        Filesystem path to validate.

    Returns
    -------
    Path
        The fully-resolved :class:`pathlib.Path`.

    Raises
    ------
    FileNotFoundError
        If *path* does not exist.
    ValueError
        If *path* is not a regular file after symlink resolution, or if
        it is not readable.
    """
    p = Path(path)

    if not p.exists():
        raise FileNotFoundError(f"Evidence path does not exist: {p}")

    resolved = p.resolve(strict=True)

    # Stat the *resolved* target so symlinks to devices are caught.
    st = resolved.stat()
    if not stat.S_ISREG(st.st_mode):
        raise ValueError(
            f"Evidence path is not a regular file (mode "
            f"{stat.filemode(st.st_mode)}): {resolved}"
        )

    if not os.access(resolved, os.R_OK):
        raise ValueError(f"Evidence path is not readable: {resolved}")

    logger.debug("Validated evidence path: %s (size=%d bytes)", resolved, st.st_size)
    return resolved


# ---------------------------------------------------------------------------
# SafeReader
# ---------------------------------------------------------------------------


class SafeReader:
    """Read-only file reader for untrusted binaries.

    Opens the target file with :data:`os.O_RDONLY` and exposes positional
    reads only.  Executables are small enough to be read whole, which is
    what :meth:`read_all` is for; :meth:`read_chunk` serves callers that
    only need a header window.

    Usage::

        with SafeReader("/samples/setup.exe") as reader:
            data = reader.read_all()
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path: Path = validate_evidence_path(path)
        self._fd: int = -1
        self._size: int = 0
        self._closed: bool = True

    # -- context manager ----------------------------------------------------

    def __enter__(self) -> SafeReader:
        self._open()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        self.close()

    # -- internal open / close ----------------------------------------------

    def _open(self) -> None:
        """Open the sample read-only via low-level OS descriptor."""
        if not self._closed:
            return
        self._fd = os.open(str(self._path), os.O_RDONLY)
        self._size = os.fstat(self._fd).st_size
        self._closed = False
        logger.debug(
            "Opened sample (fd=%d): %s (%d bytes)",
            self._fd,
            self._path,
            self._size,
        )

    def close(self) -> None:
        """Close the underlying file descriptor if it is still open."""
        if self._closed:
            return
        os.close(self._fd)
        logger.debug("Closed sample (fd=%d): %s", self._fd, self._path)
        self._fd = -1
        self._closed = True

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("SafeReader is not open; use it as a context manager")

    # -- public API ---------------------------------------------------------

    @property
    def path(self) -> Path:
        """Return the resolved sample path."""
        return self._path

    def get_size(self) -> int:
        """Return the total size of the sample in bytes."""
        self._ensure_open()
        return self._size

    def read_chunk(self, offset: int, size: int) -> bytes:
        """Read *size* bytes starting at *offset*.

        The returned buffer may be shorter than *size* when the end of
        file is reached.

        Raises
        ------
        ValueError
            If *offset* or *size* is negative, or *offset* exceeds the
            file size.
        """
        self._ensure_open()

        if offset < 0:
            raise ValueError(f"offset must be >= 0, got {offset}")
        if size < 0:
            raise ValueError(f"size must be >= 0, got {size}")
        if offset > self._size:
            raise ValueError(
                f"offset ({offset}) exceeds file size ({self._size})"
            )

        actual_size = min(size, self._size - offset)
        if actual_size == 0:
            return b""

        chunks: list[bytes] = []
        remaining = actual_size
        position = offset
        while remaining > 0:
            data = os.pread(self._fd, remaining, position)
            if not data:
                break  # File shrank underneath us.
            chunks.append(data)
            position += len(data)
            remaining -= len(data)

        result = b"".join(chunks)
        logger.debug(
            "read_chunk: offset=%d requested=%d actual=%d file=%s",
            offset,
            size,
            len(result),
            self._path,
        )
        return result

    def read_all(self) -> bytes:
        """Read the whole sample into memory."""
        return self.read_chunk(0, self.get_size())

    def __repr__(self) -> str:
        state = "open" if not self._closed else "closed"
        return f"<SafeReader path={self._path!r} state={state}>"
