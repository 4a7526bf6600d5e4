"""Application manifest XML parser.

Turns one raw ``RT_MANIFEST`` payload into the three privilege-related
attributes an auditor cares about:

* ``requestedExecutionLevel/@level`` -- the UAC execution level,
* ``requestedExecutionLevel/@uiAccess`` -- UIPI bypass request,
* ``windowsSettings/autoElevate`` -- silent elevation for signed
  Windows binaries.

Manifests come out of untrusted samples, so parsing goes through
``defusedxml`` and never raises: a document that is not well-formed (or
that tries DTD/entity tricks) is kept as raw text with ``parse_error``
set, because a broken manifest is itself worth looking at.

On success the whole document, comments and processing instructions
included, is re-serialised into a canonical, one-attribute-per-line
layout so that manifests from different samples can be diffed line by
line.  The ``asmv1``, ``asmv3`` and ``ws`` prefixes are bound while
parsing, so manifests that use them without declaring them still parse.

Designed for Python 3.10+.
"""

from __future__ import annotations

import codecs
import io
import logging
import re
import xml.etree.ElementTree as ET
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import IO, Any
from xml.parsers import expat

from defusedxml import ElementTree as DEFUSED_ET
from defusedxml.common import DefusedXmlException

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

ASMV1_NS = "urn:schemas-microsoft-com:asm.v1"
ASMV3_NS = "urn:schemas-microsoft-com:asm.v3"
WS_NS = "http://schemas.microsoft.com/SMI/2005/WindowsSettings"

NAMESPACES: dict[str, str] = {
    "asmv1": ASMV1_NS,
    "asmv3": ASMV3_NS,
    "ws": WS_NS,
}

DEFAULT_EXECUTION_LEVEL = "asInvoker"

_INDENT = "  "
_XML_NS = "http://www.w3.org/XML/1998/namespace"
_XML_DECLARATION = re.compile(r"\A<\?xml\s[^>]*\?>")
_WRAPPER_TAG = "manifest-bindings"
_UNBOUND_PREFIX = expat.errors.codes[expat.errors.XML_ERROR_UNBOUND_PREFIX]


def _qualify(path: str) -> list[str]:
    """Expand ``prefix:local`` steps into ElementTree ``{uri}local`` tags."""
    steps = []
    for step in path.split("/"):
        prefix, local = step.split(":")
        steps.append(f"{{{NAMESPACES[prefix]}}}{local}")
    return steps


_EXECUTION_LEVEL_PATH = _qualify(
    "asmv1:assembly/asmv3:trustInfo/asmv3:security/"
    "asmv3:requestedPrivileges/asmv3:requestedExecutionLevel"
)
_AUTO_ELEVATE_PATH = _qualify(
    "asmv1:assembly/asmv3:application/asmv3:windowsSettings/ws:autoElevate"
)


# ---------------------------------------------------------------------------
# Data container
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class ParsedManifest:
    """Result of parsing one manifest buffer.

    Attributes
    ----------
    parse_error:
        ``True`` if the buffer was not a well-formed XML document.
    execution_level:
        Requested execution level, passed through verbatim.
    ui_access:
        Value of the ``uiAccess`` attribute.
    auto_elevate:
        Value of the ``autoElevate`` element.
    manifest_xml:
        Canonical XML on success, raw UTF-8 decoding on failure.
    """

    parse_error: bool = False
    execution_level: str = DEFAULT_EXECUTION_LEVEL
    ui_access: bool = False
    auto_elevate: bool = False
    manifest_xml: str = ""


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

@dataclass
class _Document:
    """A parsed manifest plus what ElementTree does not keep on its own."""

    root: ET.Element
    # id(element) -> [(prefix, uri), ...] in declaration order.
    declarations: dict[int, list[tuple[str, str]]] = field(default_factory=dict)
    # Comments and processing instructions outside the document element.
    prolog: list[ET.Element] = field(default_factory=list)
    epilog: list[ET.Element] = field(default_factory=list)


def _bind_fixed_prefixes(data: bytes) -> str:
    """Nest *data* inside a wrapper element that declares the fixed prefixes.

    Manifests written by hand sometimes use ``asmv1:``/``asmv3:``/``ws:``
    without declaring them; the Windows loader resolves those against its
    own bindings, so they are bound here before parsing.
    """
    if data.startswith(codecs.BOM_UTF8):
        text = data[len(codecs.BOM_UTF8):].decode("utf-8")
    elif data.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)):
        text = data.decode("utf-16")
    else:
        text = data.decode("utf-8")
    text = _XML_DECLARATION.sub("", text, count=1)
    bindings = " ".join(f'xmlns:{prefix}="{uri}"' for prefix, uri in NAMESPACES.items())
    return f"<{_WRAPPER_TAG} {bindings}>{text}</{_WRAPPER_TAG}>"


def _load_document(source: IO[Any], wrapped: bool = False) -> _Document:
    """Parse *source* into a :class:`_Document`.

    ElementTree discards prefixes, so ``start-ns`` events are collected
    and keyed by the ``id`` of the element that declared them.  The
    caller keeps the tree alive, which keeps the ids valid.

    With *wrapped* set, *source* is the output of
    :func:`_bind_fixed_prefixes`: the wrapper element is dropped and its
    bindings are moved onto the document element.
    """
    parser = DEFUSED_ET.DefusedXMLParser(
        target=ET.TreeBuilder(insert_comments=True, insert_pis=True),
        forbid_dtd=True,
    )
    top = 1 if wrapped else 0
    depth = 0
    wrapper: ET.Element | None = None
    root: ET.Element | None = None
    declarations: dict[int, list[tuple[str, str]]] = {}
    pending: list[tuple[str, str]] = []
    prolog: list[ET.Element] = []
    epilog: list[ET.Element] = []

    for event, payload in DEFUSED_ET.iterparse(
        source, events=("start-ns", "start", "end", "comment", "pi"), parser=parser
    ):
        if event == "start-ns":
            pending.append(payload)
        elif event == "start":
            if depth == 0 and wrapped:
                wrapper = payload
            elif depth == top:
                if root is not None:
                    raise ET.ParseError("junk after document element")
                root = payload
            depth += 1
            if pending:
                declarations[id(payload)] = pending
                pending = []
        elif event == "end":
            depth -= 1
        elif depth == top:
            (prolog if root is None else epilog).append(payload)

    if root is None:
        raise ET.ParseError("no element found")

    if wrapper is not None:
        stray = [wrapper.text] + [child.tail for child in wrapper]
        if any((text or "").strip() for text in stray):
            raise ET.ParseError("text outside the document element")
        own = declarations.get(id(root), [])
        declared = {prefix for prefix, _ in own}
        injected = [
            binding for binding in declarations.pop(id(wrapper), [])
            if binding[0] not in declared
        ]
        declarations[id(root)] = own + injected

    return _Document(root, declarations, prolog, epilog)


def _parse_document(data: bytes) -> _Document:
    try:
        return _load_document(io.BytesIO(data))
    except ET.ParseError as exc:
        if getattr(exc, "code", None) != _UNBOUND_PREFIX:
            raise
    logger.debug("Manifest uses undeclared prefixes; binding asmv1/asmv3/ws")
    return _load_document(io.StringIO(_bind_fixed_prefixes(data)), wrapped=True)


def _find_first(
    element: ET.Element,
    steps: list[str],
    predicate: Callable[[ET.Element], bool] | None = None,
) -> ET.Element | None:
    """Return the first element in document order matching *steps*.

    The first step is matched against *element* itself, the rest against
    successive children.  When *predicate* is given, only a final element
    it accepts counts as a match and the search continues past the others.
    """
    if element.tag != steps[0]:
        return None
    if len(steps) == 1:
        if predicate is not None and not predicate(element):
            return None
        return element
    for child in element:
        found = _find_first(child, steps[1:], predicate)
        if found is not None:
            return found
    return None


def _has_attribute(name: str) -> Callable[[ET.Element], bool]:
    return lambda element: name in element.attrib


def _parse_bool(text: str | None) -> bool | None:
    """Parse ``"true"``/``"false"`` after trimming; ``None`` otherwise."""
    if text is None:
        return None
    value = text.strip()
    if value == "true":
        return True
    if value == "false":
        return False
    return None


def _element_text(element: ET.Element) -> str:
    return "".join(element.itertext())


def get_ui_access(root: ET.Element) -> bool:
    node = _find_first(root, _EXECUTION_LEVEL_PATH, _has_attribute("uiAccess"))
    if node is None:
        return False
    parsed = _parse_bool(node.get("uiAccess"))
    return parsed if parsed is not None else False


def get_execution_level(root: ET.Element) -> str:
    node = _find_first(root, _EXECUTION_LEVEL_PATH, _has_attribute("level"))
    if node is None:
        return DEFAULT_EXECUTION_LEVEL
    return node.get("level", DEFAULT_EXECUTION_LEVEL)


def get_auto_elevate(root: ET.Element) -> bool:
    node = _find_first(root, _AUTO_ELEVATE_PATH)
    if node is None:
        return False
    parsed = _parse_bool(_element_text(node))
    return parsed if parsed is not None else False


def parse_manifest(data: bytes) -> ParsedManifest:
    """Parse one raw manifest buffer.

    Never raises for bad input: malformed XML, an unknown or unsupported
    declared encoding, or undecodable bytes yield a
    :class:`ParsedManifest` with ``parse_error`` set and the raw bytes
    decoded as UTF-8 (invalid sequences replaced).

    Parameters
    ----------
    data:
        Resource payload, UTF-8 or BOM-prefixed UTF-16.

    Returns
    -------
    ParsedManifest
        Extracted attributes and the canonical XML echo.
    """
    try:
        document = _parse_document(data)
    except (ET.ParseError, DefusedXmlException, LookupError, ValueError) as exc:
        logger.warning("Manifest is not well-formed XML: %s", exc)
        return ParsedManifest(
            parse_error=True,
            manifest_xml=data.decode("utf-8", errors="replace"),
        )

    root = document.root
    return ParsedManifest(
        parse_error=False,
        execution_level=get_execution_level(root),
        ui_access=get_ui_access(root),
        auto_elevate=get_auto_elevate(root),
        manifest_xml=write_canonical_xml(
            root, document.declarations, document.prolog, document.epilog
        ),
    )


# ---------------------------------------------------------------------------
# Canonical serialisation
# ---------------------------------------------------------------------------

def _escape_text(text: str) -> str:
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def _escape_attribute(text: str) -> str:
    return (
        _escape_text(text)
        .replace('"', "&quot;")
        .replace("\n", "&#xA;")
        .replace("\r", "&#xD;")
        .replace("\t", "&#x9;")
    )


class _CanonicalWriter:
    """Serialises an ElementTree with its original namespace prefixes.

    Layout: two-space indentation, every attribute on its own line one
    level deeper than its element, text-only elements inline, empty
    elements self-closed, comments and processing instructions kept.
    Elements holding mixed content are written without any added
    whitespace so their text is preserved exactly.
    """

    def __init__(self, declarations: dict[int, list[tuple[str, str]]]) -> None:
        self._declarations = declarations
        self._out = io.StringIO()

    def render(
        self,
        root: ET.Element,
        prolog: Iterable[ET.Element] = (),
        epilog: Iterable[ET.Element] = (),
    ) -> str:
        scope = {"xml": _XML_NS}
        for node in prolog:
            self._write(node, depth=0, scope=scope, pretty=True)
        self._write(root, depth=0, scope=scope, pretty=True)
        for node in epilog:
            self._write(node, depth=0, scope=scope, pretty=True)
        return self._out.getvalue()

    def _write_markup(self, node: ET.Element, indent: str, pretty: bool) -> None:
        # Comments and processing instructions are echoed verbatim.
        if node.tag is ET.Comment:
            markup = f"<!--{node.text or ''}-->"
        else:
            markup = f"<?{node.text or ''}?>"
        if pretty:
            self._out.write(f"{indent}{markup}\n")
        else:
            self._out.write(markup)

    def _qname(self, tag: str, scope: dict[str, str], is_attribute: bool) -> str:
        if not tag.startswith("{"):
            return tag
        uri, local = tag[1:].split("}", 1)
        # Attributes never pick up the default namespace.
        candidates = [
            prefix for prefix, bound in scope.items()
            if bound == uri and (prefix or not is_attribute)
        ]
        if not candidates:
            return local
        # Prefer the default namespace for elements.
        prefix = "" if "" in candidates else candidates[-1]
        return f"{prefix}:{local}" if prefix else local

    def _start_tag(
        self,
        element: ET.Element,
        depth: int,
        scope: dict[str, str],
        pretty: bool,
    ) -> tuple[str, dict[str, str]]:
        declared = self._declarations.get(id(element), [])
        inner_scope = dict(scope)
        for prefix, uri in declared:
            inner_scope[prefix] = uri

        name = self._qname(element.tag, inner_scope, is_attribute=False)
        attributes: list[str] = []
        for prefix, uri in declared:
            attr_name = f"xmlns:{prefix}" if prefix else "xmlns"
            attributes.append(f'{attr_name}="{_escape_attribute(uri)}"')
        for key, value in element.attrib.items():
            attr_name = self._qname(key, inner_scope, is_attribute=True)
            attributes.append(f'{attr_name}="{_escape_attribute(value)}"')

        if not attributes:
            return f"<{name}", inner_scope
        if pretty:
            attr_indent = _INDENT * (depth + 1)
            joined = "".join(f"\n{attr_indent}{attr}" for attr in attributes)
        else:
            joined = "".join(f" {attr}" for attr in attributes)
        return f"<{name}{joined}", inner_scope

    def _write(
        self,
        element: ET.Element,
        depth: int,
        scope: dict[str, str],
        pretty: bool,
    ) -> None:
        indent = _INDENT * depth if pretty else ""
        if element.tag is ET.Comment or element.tag is ET.ProcessingInstruction:
            self._write_markup(element, indent, pretty)
            return

        opening, inner_scope = self._start_tag(element, depth, scope, pretty)
        name = self._qname(element.tag, inner_scope, is_attribute=False)
        children = list(element)
        text = element.text or ""

        if pretty:
            self._out.write(indent)

        if not children and not text:
            self._out.write(f"{opening} />")
            if pretty:
                self._out.write("\n")
            return

        self._out.write(f"{opening}>")

        mixed = bool(text.strip()) or any(
            (child.tail or "").strip() for child in children
        )
        if not children:
            self._out.write(_escape_text(text))
        elif pretty and not mixed:
            self._out.write("\n")
            for child in children:
                self._write(child, depth + 1, inner_scope, pretty=True)
            self._out.write(indent)
        else:
            self._out.write(_escape_text(text))
            for child in children:
                self._write(child, depth + 1, inner_scope, pretty=False)
                self._out.write(_escape_text(child.tail or ""))

        self._out.write(f"</{name}>")
        if pretty:
            self._out.write("\n")


def write_canonical_xml(
    root: ET.Element,
    declarations: dict[int, list[tuple[str, str]]] | None = None,
    prolog: Iterable[ET.Element] = (),
    epilog: Iterable[ET.Element] = (),
) -> str:
    """Serialise *root* into the canonical manifest layout.

    Parameters
    ----------
    root:
        Document element.
    declarations:
        Namespace declarations per element (``id(element)`` ->
        ``[(prefix, uri), ...]``) as collected while parsing.  Without
        them every namespaced name is written unprefixed.
    prolog, epilog:
        Comments and processing instructions before and after the
        document element, each written on its own line.

    Returns
    -------
    str
        The document without an XML declaration and without a trailing
        newline.
    """
    writer = _CanonicalWriter(declarations or {})
    return writer.render(root, prolog, epilog).rstrip("\n")
