"""Tests for tools.manifest_auditor.parser -- manifest XML parsing.

Covers attribute extraction (execution level, uiAccess, autoElevate),
namespace handling, the malformed-XML fallback, and the canonical XML
writer.
"""

from __future__ import annotations

import textwrap

import pytest

from tools.manifest_auditor.parser import (
    DEFAULT_EXECUTION_LEVEL,
    ParsedManifest,
    parse_manifest,
)


# ---------------------------------------------------------------------------
# Sample manifests
# ---------------------------------------------------------------------------

ADMIN_MANIFEST = textwrap.dedent("""\
    <?xml version="1.0" encoding="UTF-8" standalone="yes"?>
    <assembly xmlns="urn:schemas-microsoft-com:asm.v1" manifestVersion="1.0">
      <trustInfo xmlns="urn:schemas-microsoft-com:asm.v3">
        <security>
          <requestedPrivileges>
            <requestedExecutionLevel level="requireAdministrator" uiAccess="true"/>
          </requestedPrivileges>
        </security>
      </trustInfo>
    </assembly>
""").encode("utf-8")

AUTO_ELEVATE_MANIFEST = textwrap.dedent("""\
    <?xml version="1.0" encoding="UTF-8" standalone="yes"?>
    <assembly xmlns="urn:schemas-microsoft-com:asm.v1" manifestVersion="1.0">
      <asmv3:application xmlns:asmv3="urn:schemas-microsoft-com:asm.v3">
        <asmv3:windowsSettings xmlns="http://schemas.microsoft.com/SMI/2005/WindowsSettings">
          <autoElevate>
            true
          </autoElevate>
          <dpiAware>true</dpiAware>
        </asmv3:windowsSettings>
      </asmv3:application>
    </assembly>
""").encode("utf-8")

NO_TRUST_INFO_MANIFEST = textwrap.dedent("""\
    <assembly xmlns="urn:schemas-microsoft-com:asm.v1" manifestVersion="1.0">
      <assemblyIdentity type="win32" name="Contoso.Tool" version="1.0.0.0"/>
    </assembly>
""").encode("utf-8")


def _auto_elevate_manifest(value: str) -> bytes:
    return (
        '<assembly xmlns="urn:schemas-microsoft-com:asm.v1">'
        '<application xmlns="urn:schemas-microsoft-com:asm.v3">'
        "<windowsSettings>"
        '<autoElevate xmlns="http://schemas.microsoft.com/SMI/2005/WindowsSettings">'
        f"{value}"
        "</autoElevate>"
        "</windowsSettings>"
        "</application>"
        "</assembly>"
    ).encode("utf-8")


def _execution_level_manifest(attributes: str) -> bytes:
    return (
        '<assembly xmlns="urn:schemas-microsoft-com:asm.v1">'
        '<trustInfo xmlns="urn:schemas-microsoft-com:asm.v3">'
        "<security><requestedPrivileges>"
        f"<requestedExecutionLevel {attributes}/>"
        "</requestedPrivileges></security>"
        "</trustInfo>"
        "</assembly>"
    ).encode("utf-8")


# ---------------------------------------------------------------------------
# Execution level and uiAccess
# ---------------------------------------------------------------------------


class TestExecutionLevel:
    """Tests for requestedExecutionLevel extraction."""

    def test_require_administrator_with_ui_access(self) -> None:
        result = parse_manifest(ADMIN_MANIFEST)
        assert result.parse_error is False
        assert result.execution_level == "requireAdministrator"
        assert result.ui_access is True

    def test_missing_element_uses_defaults(self) -> None:
        """No requestedExecutionLevel means asInvoker without uiAccess."""
        result = parse_manifest(NO_TRUST_INFO_MANIFEST)
        assert result.parse_error is False
        assert result.execution_level == DEFAULT_EXECUTION_LEVEL == "asInvoker"
        assert result.ui_access is False

    def test_missing_level_attribute(self) -> None:
        result = parse_manifest(_execution_level_manifest('uiAccess="true"'))
        assert result.execution_level == "asInvoker"
        assert result.ui_access is True

    def test_unknown_level_passed_through(self) -> None:
        """Execution levels are not validated against the known set."""
        result = parse_manifest(_execution_level_manifest('level="godMode"'))
        assert result.execution_level == "godMode"

    @pytest.mark.parametrize("value", ["TRUE", "yes", "1", ""])
    def test_unparsable_ui_access_is_false(self, value: str) -> None:
        result = parse_manifest(
            _execution_level_manifest(f'level="asInvoker" uiAccess="{value}"')
        )
        assert result.ui_access is False

    def test_wrong_namespace_is_ignored(self) -> None:
        """trustInfo must be in the asm.v3 namespace to count."""
        data = (
            '<assembly xmlns="urn:schemas-microsoft-com:asm.v1">'
            "<trustInfo><security><requestedPrivileges>"
            '<requestedExecutionLevel level="requireAdministrator" uiAccess="true"/>'
            "</requestedPrivileges></security></trustInfo>"
            "</assembly>"
        ).encode("utf-8")
        result = parse_manifest(data)
        assert result.parse_error is False
        assert result.execution_level == "asInvoker"
        assert result.ui_access is False

    def test_first_match_in_document_order(self) -> None:
        data = (
            '<assembly xmlns="urn:schemas-microsoft-com:asm.v1">'
            '<trustInfo xmlns="urn:schemas-microsoft-com:asm.v3">'
            "<security><requestedPrivileges/></security>"
            "</trustInfo>"
            '<trustInfo xmlns="urn:schemas-microsoft-com:asm.v3">'
            "<security><requestedPrivileges>"
            '<requestedExecutionLevel level="highestAvailable"/>'
            '<requestedExecutionLevel level="requireAdministrator"/>'
            "</requestedPrivileges></security>"
            "</trustInfo>"
            "</assembly>"
        ).encode("utf-8")
        assert parse_manifest(data).execution_level == "highestAvailable"

    def test_attributes_from_first_element_carrying_them(self) -> None:
        """An earlier requestedExecutionLevel without attributes is skipped."""
        data = _execution_level_manifest(
            '/><requestedExecutionLevel level="requireAdministrator" uiAccess="true"'
        )
        result = parse_manifest(data)
        assert result.execution_level == "requireAdministrator"
        assert result.ui_access is True

    def test_level_and_ui_access_resolved_independently(self) -> None:
        data = _execution_level_manifest(
            'level="highestAvailable"/>'
            '<requestedExecutionLevel level="requireAdministrator" uiAccess="true"'
        )
        result = parse_manifest(data)
        assert result.execution_level == "highestAvailable"
        assert result.ui_access is True


# ---------------------------------------------------------------------------
# Undeclared fixed prefixes
# ---------------------------------------------------------------------------

UNDECLARED_PREFIX_MANIFEST = textwrap.dedent("""\
    <?xml version="1.0" encoding="UTF-8" standalone="yes"?>
    <asmv1:assembly manifestVersion="1.0">
      <asmv3:trustInfo>
        <asmv3:security>
          <asmv3:requestedPrivileges>
            <asmv3:requestedExecutionLevel level="requireAdministrator" uiAccess="true"/>
          </asmv3:requestedPrivileges>
        </asmv3:security>
      </asmv3:trustInfo>
      <asmv3:application>
        <asmv3:windowsSettings>
          <ws:autoElevate>true</ws:autoElevate>
        </asmv3:windowsSettings>
      </asmv3:application>
    </asmv1:assembly>
""").encode("utf-8")


class TestUndeclaredPrefixes:
    """asmv1, asmv3 and ws resolve even when the manifest never declares them."""

    def test_attributes_are_found(self) -> None:
        result = parse_manifest(UNDECLARED_PREFIX_MANIFEST)
        assert result.parse_error is False
        assert result.execution_level == "requireAdministrator"
        assert result.ui_access is True
        assert result.auto_elevate is True

    def test_utf16_with_bom(self) -> None:
        text = UNDECLARED_PREFIX_MANIFEST.decode("utf-8").replace(
            'encoding="UTF-8"', 'encoding="UTF-16"'
        )
        result = parse_manifest(text.encode("utf-16"))
        assert result.parse_error is False
        assert result.execution_level == "requireAdministrator"

    def test_bindings_written_on_document_element(self) -> None:
        xml = parse_manifest(UNDECLARED_PREFIX_MANIFEST).manifest_xml
        assert xml.splitlines()[:5] == [
            "<asmv1:assembly",
            '  xmlns:asmv1="urn:schemas-microsoft-com:asm.v1"',
            '  xmlns:asmv3="urn:schemas-microsoft-com:asm.v3"',
            '  xmlns:ws="http://schemas.microsoft.com/SMI/2005/WindowsSettings"',
            '  manifestVersion="1.0">',
        ]
        assert "<ws:autoElevate>true</ws:autoElevate>" in xml

    def test_reparse_is_stable(self) -> None:
        first = parse_manifest(UNDECLARED_PREFIX_MANIFEST)
        second = parse_manifest(first.manifest_xml.encode("utf-8"))
        assert second == first

    def test_declared_prefix_is_kept(self) -> None:
        data = (
            b'<asmv1:assembly xmlns:asmv1="urn:schemas-microsoft-com:asm.v1">'
            b"<asmv3:trustInfo><asmv3:security><asmv3:requestedPrivileges>"
            b'<asmv3:requestedExecutionLevel level="highestAvailable"/>'
            b"</asmv3:requestedPrivileges></asmv3:security></asmv3:trustInfo>"
            b"</asmv1:assembly>"
        )
        result = parse_manifest(data)
        assert result.execution_level == "highestAvailable"
        assert result.manifest_xml.count('xmlns:asmv1="urn:schemas-microsoft-com:asm.v1"') == 1

    def test_other_prefixes_stay_unbound(self) -> None:
        data = b"<asmv1:assembly><foo:bar/></asmv1:assembly>"
        result = parse_manifest(data)
        assert result.parse_error is True
        assert result.manifest_xml == data.decode("utf-8")

    def test_second_document_element_is_rejected(self) -> None:
        data = b"<asmv1:assembly/><asmv1:assembly/>"
        assert parse_manifest(data).parse_error is True

    def test_text_outside_document_element_is_rejected(self) -> None:
        data = b"<asmv1:assembly/>trailing"
        assert parse_manifest(data).parse_error is True


# ---------------------------------------------------------------------------
# autoElevate
# ---------------------------------------------------------------------------


class TestAutoElevate:
    """Tests for windowsSettings/autoElevate extraction."""

    def test_true_with_surrounding_whitespace(self) -> None:
        result = parse_manifest(AUTO_ELEVATE_MANIFEST)
        assert result.parse_error is False
        assert result.auto_elevate is True

    @pytest.mark.parametrize("value", ["true", "  true  ", "\n\ttrue\n"])
    def test_true_values(self, value: str) -> None:
        assert parse_manifest(_auto_elevate_manifest(value)).auto_elevate is True

    @pytest.mark.parametrize("value", ["TRUE", "True", "1", "yes", "", "false"])
    def test_other_values_are_false(self, value: str) -> None:
        assert parse_manifest(_auto_elevate_manifest(value)).auto_elevate is False

    def test_absent_is_false(self) -> None:
        assert parse_manifest(ADMIN_MANIFEST).auto_elevate is False

    def test_requires_windows_settings_namespace(self) -> None:
        data = (
            '<assembly xmlns="urn:schemas-microsoft-com:asm.v1">'
            '<application xmlns="urn:schemas-microsoft-com:asm.v3">'
            "<windowsSettings><autoElevate>true</autoElevate></windowsSettings>"
            "</application>"
            "</assembly>"
        ).encode("utf-8")
        assert parse_manifest(data).auto_elevate is False


# ---------------------------------------------------------------------------
# Malformed input
# ---------------------------------------------------------------------------


class TestMalformedManifest:
    """A manifest that is not well-formed is kept as raw text."""

    def test_truncated_document(self) -> None:
        data = ADMIN_MANIFEST[:120]
        result = parse_manifest(data)
        assert result.parse_error is True
        assert result.manifest_xml == data.decode("utf-8")
        assert result.execution_level == "asInvoker"
        assert result.ui_access is False
        assert result.auto_elevate is False

    def test_mismatched_tags(self) -> None:
        data = b'<assembly xmlns="urn:schemas-microsoft-com:asm.v1"><trustInfo></assembly>'
        result = parse_manifest(data)
        assert result == ParsedManifest(
            parse_error=True,
            manifest_xml=data.decode("utf-8"),
        )

    def test_empty_buffer(self) -> None:
        result = parse_manifest(b"")
        assert result.parse_error is True
        assert result.manifest_xml == ""

    def test_invalid_utf8_is_replaced(self) -> None:
        data = b"<assembly>\xff\xfe</broken>"
        result = parse_manifest(data)
        assert result.parse_error is True
        assert result.manifest_xml == data.decode("utf-8", errors="replace")

    def test_dtd_is_rejected(self) -> None:
        """Documents declaring a DTD are treated like malformed ones."""
        data = (
            b'<?xml version="1.0"?>\n'
            b'<!DOCTYPE assembly [<!ENTITY lol "lol">]>\n'
            b'<assembly xmlns="urn:schemas-microsoft-com:asm.v1">&lol;</assembly>'
        )
        result = parse_manifest(data)
        assert result.parse_error is True
        assert result.manifest_xml == data.decode("utf-8")

    @pytest.mark.parametrize("encoding", ["bogus", "shift_jis", "utf-32"])
    def test_unusable_declared_encoding(self, encoding: str) -> None:
        """Unknown or multi-byte encodings are reported, not raised."""
        data = f'<?xml version="1.0" encoding="{encoding}"?><assembly/>'.encode("ascii")
        result = parse_manifest(data)
        assert result.parse_error is True
        assert result.manifest_xml == data.decode("utf-8")
        assert result.execution_level == "asInvoker"

    def test_original_bytes_kept_verbatim(self) -> None:
        data = "<assembly>\r\n  unterminated café".encode("utf-8")
        assert parse_manifest(data).manifest_xml == "<assembly>\r\n  unterminated café"


# ---------------------------------------------------------------------------
# Encodings
# ---------------------------------------------------------------------------


class TestEncodings:
    """Manifests may be stored as UTF-8 or BOM-prefixed UTF-16."""

    def test_utf16_with_bom(self) -> None:
        text = ADMIN_MANIFEST.decode("utf-8").replace('encoding="UTF-8"', 'encoding="UTF-16"')
        result = parse_manifest(text.encode("utf-16"))
        assert result.parse_error is False
        assert result.execution_level == "requireAdministrator"
        assert result.ui_access is True

    def test_utf8_with_bom(self) -> None:
        result = parse_manifest(b"\xef\xbb\xbf" + ADMIN_MANIFEST)
        assert result.parse_error is False
        assert result.execution_level == "requireAdministrator"


# ---------------------------------------------------------------------------
# Canonical XML
# ---------------------------------------------------------------------------


class TestCanonicalXml:
    """The echoed XML is re-serialised, not copied."""

    def test_layout(self) -> None:
        expected = textwrap.dedent("""\
            <assembly
              xmlns="urn:schemas-microsoft-com:asm.v1"
              manifestVersion="1.0">
              <trustInfo
                xmlns="urn:schemas-microsoft-com:asm.v3">
                <security>
                  <requestedPrivileges>
                    <requestedExecutionLevel
                      level="requireAdministrator"
                      uiAccess="true" />
                  </requestedPrivileges>
                </security>
              </trustInfo>
            </assembly>""")
        assert parse_manifest(ADMIN_MANIFEST).manifest_xml == expected

    def test_no_xml_declaration(self) -> None:
        xml = parse_manifest(ADMIN_MANIFEST).manifest_xml
        assert not xml.startswith("<?xml")

    def test_prefixes_preserved(self) -> None:
        xml = parse_manifest(AUTO_ELEVATE_MANIFEST).manifest_xml
        assert "<asmv3:application" in xml
        assert 'xmlns:asmv3="urn:schemas-microsoft-com:asm.v3"' in xml
        assert "</asmv3:windowsSettings>" in xml
        assert "<dpiAware>true</dpiAware>" in xml

    def test_special_characters_escaped(self) -> None:
        data = (
            '<assembly xmlns="urn:schemas-microsoft-com:asm.v1">'
            '<description note="a &quot;b&quot; &lt;c&gt;">Tom &amp; Jerry</description>'
            "</assembly>"
        ).encode("utf-8")
        xml = parse_manifest(data).manifest_xml
        assert 'note="a &quot;b&quot; &lt;c&gt;"' in xml
        assert "<description" in xml
        assert ">Tom &amp; Jerry</description>" in xml

    @pytest.mark.parametrize(
        "data",
        [ADMIN_MANIFEST, AUTO_ELEVATE_MANIFEST, NO_TRUST_INFO_MANIFEST],
        ids=["admin", "auto-elevate", "no-trust-info"],
    )
    def test_reparse_is_stable(self, data: bytes) -> None:
        """Parsing the canonical XML yields the same attributes."""
        first = parse_manifest(data)
        second = parse_manifest(first.manifest_xml.encode("utf-8"))
        assert second.parse_error is False
        assert second.execution_level == first.execution_level
        assert second.ui_access == first.ui_access
        assert second.auto_elevate == first.auto_elevate
        assert second.manifest_xml == first.manifest_xml

    def test_comments_and_processing_instructions_kept(self) -> None:
        data = (
            b'<?xml version="1.0" encoding="UTF-8"?>'
            b"<!-- generated by mt.exe -->"
            b'<?xml-stylesheet href="manifest.xsl"?>'
            b'<assembly xmlns="urn:schemas-microsoft-com:asm.v1">'
            b"<!-- note -->"
            b"<x/>"
            b"</assembly>"
            b"<!-- end -->"
        )
        expected = textwrap.dedent("""\
            <!-- generated by mt.exe -->
            <?xml-stylesheet href="manifest.xsl"?>
            <assembly
              xmlns="urn:schemas-microsoft-com:asm.v1">
              <!-- note -->
              <x />
            </assembly>
            <!-- end -->""")
        first = parse_manifest(data)
        assert first.parse_error is False
        assert first.manifest_xml == expected

        second = parse_manifest(first.manifest_xml.encode("utf-8"))
        assert second.manifest_xml == expected

    def test_comment_inside_auto_elevate_is_ignored(self) -> None:
        result = parse_manifest(_auto_elevate_manifest("<!-- silent -->true"))
        assert result.auto_elevate is True
        assert "<!-- silent -->true</autoElevate>" in result.manifest_xml
