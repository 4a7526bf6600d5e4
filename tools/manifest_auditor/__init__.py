"""Executable Manifest Auditor -- UAC settings of embedded PE manifests.

Extracts ``RT_MANIFEST`` resources from Windows executables without
running them and reports the requested execution level, ``uiAccess``
and ``autoElevate`` flags each manifest declares.
"""

from .catalog import ManifestCatalog, ManifestRecord, get_manifests
from .enumerator import RT_MANIFEST, ManifestResourceEnumerator, ResourceId
from .image_source import (
    ImageResourceSource,
    LoadError,
    ManifestAuditError,
    ResourceLookupError,
)
from .parser import ParsedManifest, parse_manifest

__all__ = [
    "ImageResourceSource",
    "LoadError",
    "ManifestAuditError",
    "ManifestCatalog",
    "ManifestRecord",
    "ManifestResourceEnumerator",
    "ParsedManifest",
    "RT_MANIFEST",
    "ResourceId",
    "ResourceLookupError",
    "get_manifests",
    "parse_manifest",
]
