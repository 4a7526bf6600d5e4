"""Enumeration and extraction of RT_MANIFEST resources.

Walks the three-level PE resource tree (type -> name -> language) of an
open :class:`~tools.manifest_auditor.image_source.ImageResourceSource`
and copies manifest payloads out of the image.  Nothing here mutates the
image.

Designed for Python 3.10+.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

from .image_source import ImageResourceSource, ResourceLookupError

logger = logging.getLogger(__name__)

# Resource type code under which application manifests are stored.
RT_MANIFEST = 24


@dataclass(frozen=True, slots=True)
class ResourceId:
    """Identifier of one resource under a type directory.

    Exactly one of *ordinal* and *name* is set, mirroring the two kinds
    of entry a PE resource directory can hold.
    """

    ordinal: int | None = None
    name: str | None = None

    @classmethod
    def from_entry(cls, entry: Any) -> ResourceId:
        if entry.name is not None:
            return cls(name=str(entry.name))
        return cls(ordinal=entry.id)

    def matches(self, entry: Any) -> bool:
        if self.name is not None:
            return entry.name is not None and str(entry.name) == self.name
        return entry.name is None and entry.id == self.ordinal

    def __str__(self) -> str:
        return self.name if self.name is not None else str(self.ordinal)


@dataclass(frozen=True, slots=True)
class ExtractedResource:
    """Raw bytes of one resource plus the language entry they came from."""

    resource_id: ResourceId
    data: bytes
    language: int | None


class ManifestResourceEnumerator:
    """Lists and extracts manifest resources from an open image."""

    def __init__(self, type_id: int = RT_MANIFEST) -> None:
        self.type_id = type_id

    def enumerate(self, image: ImageResourceSource) -> Iterator[ResourceId]:
        """Yield the identifier of every resource of the manifest type.

        Order follows the resource directory, which the linker sorts
        (named entries first, then ordinals ascending).
        """
        type_entry = image.resource_type_directory(self.type_id)
        if getattr(type_entry, "directory", None) is None:
            logger.debug("No resources of type %d in %s", self.type_id, image.path)
            return

        for entry in type_entry.directory.entries:
            yield ResourceId.from_entry(entry)

    def extract(
        self, image: ImageResourceSource, resource_id: ResourceId
    ) -> ExtractedResource:
        """Copy the payload of *resource_id* out of the image.

        The first language entry under the name is used, which is what
        the Windows loader picks for a language-neutral lookup on a
        single-language binary.

        Raises
        ------
        ResourceLookupError
            If the entry or its data cannot be resolved, or the recorded
            size is not positive.
        """
        lang_entry = self._find_language_entry(image, resource_id)
        language = lang_entry.id

        rva = lang_entry.data.struct.OffsetToData
        size = lang_entry.data.struct.Size
        if size <= 0:
            raise ResourceLookupError(
                f"Invalid manifest size {size} for resource {resource_id}"
            )

        data = image.get_data(rva, size)
        if len(data) != size:
            raise ResourceLookupError(
                f"Resource {resource_id} truncated: expected {size} bytes "
                f"at RVA 0x{rva:x}, got {len(data)}"
            )

        logger.debug(
            "Extracted resource %s: rva=0x%x size=%d lang=%s",
            resource_id,
            rva,
            size,
            language,
        )
        return ExtractedResource(
            resource_id=resource_id,
            data=bytes(data),
            language=language,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _find_language_entry(
        self, image: ImageResourceSource, resource_id: ResourceId
    ) -> Any:
        type_entry = image.resource_type_directory(self.type_id)
        if getattr(type_entry, "directory", None) is None:
            raise ResourceLookupError(f"No resources of type {self.type_id}")

        for name_entry in type_entry.directory.entries:
            if not resource_id.matches(name_entry):
                continue
            if getattr(name_entry, "directory", None) is None:
                raise ResourceLookupError(
                    f"Resource {resource_id} has no language directory"
                )
            for lang_entry in name_entry.directory.entries:
                if getattr(lang_entry, "data", None) is not None:
                    return lang_entry
            raise ResourceLookupError(
                f"Resource {resource_id} has no data entry"
            )

        raise ResourceLookupError(f"Can't find manifest resource {resource_id}")
