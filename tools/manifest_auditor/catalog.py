"""Manifest catalog -- one record per manifest resource of an executable.

Ties the pieces together: open the image as a non-executing resource
container, enumerate its ``RT_MANIFEST`` entries, copy each payload out,
and parse it.  A resource that cannot be resolved is skipped; only a
file that cannot be opened at all is an error for the caller.

Designed for Python 3.10+.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any

from .enumerator import ManifestResourceEnumerator
from .image_source import ImageResourceSource, ResourceLookupError
from .parser import DEFAULT_EXECUTION_LEVEL, ParsedManifest, parse_manifest

logger = logging.getLogger(__name__)

# Execution levels that request a token above the caller's.
ELEVATED_LEVELS: frozenset[str] = frozenset({"highestAvailable", "requireAdministrator"})


# ---------------------------------------------------------------------------
# Data container
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class ManifestRecord:
    """One manifest resource found in an executable.

    Attributes
    ----------
    full_path:
        Absolute path of the executable the manifest came from.
    parse_error:
        ``True`` if the manifest XML could not be parsed.
    execution_level:
        Requested UAC execution level, ``"asInvoker"`` when absent.  Not
        checked against the known levels.
    ui_access:
        ``uiAccess`` flag, ``False`` when absent or unparsable.
    auto_elevate:
        ``autoElevate`` flag, ``False`` when absent or unparsable.
    manifest_xml:
        Canonical XML, or the raw text when *parse_error* is set.
    resource_id:
        Ordinal or string name of the resource entry.
    language:
        Language id of the resource data entry that was read.

    ``name`` is derived from *full_path*, so every record from the same
    file carries the same name; use *resource_id* to tell them apart.
    """

    full_path: str
    parse_error: bool = False
    execution_level: str = DEFAULT_EXECUTION_LEVEL
    ui_access: bool = False
    auto_elevate: bool = False
    manifest_xml: str = ""
    resource_id: str = ""
    language: int | None = None

    @classmethod
    def from_parsed(
        cls,
        full_path: str,
        parsed: ParsedManifest,
        resource_id: str = "",
        language: int | None = None,
    ) -> ManifestRecord:
        return cls(
            full_path=full_path,
            parse_error=parsed.parse_error,
            execution_level=parsed.execution_level,
            ui_access=parsed.ui_access,
            auto_elevate=parsed.auto_elevate,
            manifest_xml=parsed.manifest_xml,
            resource_id=resource_id,
            language=language,
        )

    @property
    def name(self) -> str:
        return os.path.basename(self.full_path)

    @property
    def is_elevated(self) -> bool:
        """``True`` if the manifest asks for more than the caller's token."""
        return (
            self.execution_level in ELEVATED_LEVELS
            or self.ui_access
            or self.auto_elevate
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "full_path": self.full_path,
            "resource_id": self.resource_id,
            "language": self.language,
            "parse_error": self.parse_error,
            "execution_level": self.execution_level,
            "ui_access": self.ui_access,
            "auto_elevate": self.auto_elevate,
            "manifest_xml": self.manifest_xml,
        }


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

class ManifestCatalog:
    """Collects the manifests embedded in a PE image.

    All work is done without executing the sample; see
    :class:`~tools.manifest_auditor.image_source.ImageResourceSource`.
    """

    def __init__(self, enumerator: ManifestResourceEnumerator | None = None) -> None:
        self._enumerator = enumerator or ManifestResourceEnumerator()

    def get_manifests(self, path: str | os.PathLike[str]) -> list[ManifestRecord]:
        """Return one :class:`ManifestRecord` per manifest resource in *path*.

        Parameters
        ----------
        path:
            Executable or DLL to inspect.

        Returns
        -------
        list[ManifestRecord]
            Records in resource-directory order; empty when the image
            carries no manifest.

        Raises
        ------
        LoadError
            If the image cannot be opened.
        """
        full_path = os.path.abspath(os.fspath(path))
        records: list[ManifestRecord] = []
        skipped = 0

        with ImageResourceSource.open(full_path) as image:
            for resource_id in self._enumerator.enumerate(image):
                try:
                    resource = self._enumerator.extract(image, resource_id)
                except ResourceLookupError as exc:
                    logger.debug("Skipping manifest %s: %s", resource_id, exc)
                    skipped += 1
                    continue

                parsed = parse_manifest(resource.data)
                records.append(
                    ManifestRecord.from_parsed(
                        full_path,
                        parsed,
                        resource_id=str(resource_id),
                        language=resource.language,
                    )
                )

        logger.info(
            "Found %d manifest(s) in %s (%d skipped)",
            len(records),
            full_path,
            skipped,
        )
        return records


def get_manifests(path: str | os.PathLike[str]) -> list[ManifestRecord]:
    """Convenience wrapper around :meth:`ManifestCatalog.get_manifests`."""
    return ManifestCatalog().get_manifests(path)
