from __future__ import annotations

from pathlib import Path

from lxml import etree

from nfse.config import NFSE_NS

NS = {"n": NFSE_NS}
NSMAP = {None: NFSE_NS}

# Safe defaults: no network access, no entity expansion
_PARSER = etree.XMLParser(resolve_entities=False, no_network=True, remove_blank_text=False)


def parse_xml(data: bytes | str) -> etree._Element:
    """Parse XML text into an element, raising ValueError on malformed input."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    try:
        return etree.fromstring(data, parser=_PARSER)
    except etree.XMLSyntaxError as exc:
        raise ValueError(f"XML mal formado: {exc}") from exc


def qname(tag: str) -> str:
    """Clark-notation name of *tag* in the NFS-e namespace."""
    return f"{{{NFSE_NS}}}{tag}"


def add_child(parent: etree._Element, tag: str, text: str | None = None) -> etree._Element:
    """Append an NFS-e element to *parent*, with *text* when given."""
    el = etree.SubElement(parent, qname(tag))
    if text is not None:
        el.text = text
    return el


def add_optional(parent: etree._Element, tag: str, text: object | None) -> None:
    """Like add_child, but skips None and empty values."""
    if text is not None and text != "":
        add_child(parent, tag, str(text))


def to_xml_bytes(element: etree._Element) -> bytes:
    """Serialize without pretty-printing, UTF-8 with XML declaration."""
    return etree.tostring(element, xml_declaration=True, encoding="utf-8")


def find_text(root: etree._Element, xpath: str, default: str = "") -> str:
    """First text matching *xpath* (prefix ``n:`` = NFS-e namespace), stripped."""
    value = root.findtext(xpath, default=default, namespaces=NS)
    return value.strip() if value else default


def find_all_text(root: etree._Element, xpath: str) -> list[str]:
    return [(el.text or "").strip() for el in root.iterfind(xpath, namespaces=NS)]


def validate_schema(element: etree._Element, xsd_path: str | Path) -> list[str]:
    """Validate *element* against an XSD file; return the error messages (empty if valid)."""
    schema = etree.XMLSchema(etree.parse(str(xsd_path)))
    if schema.validate(element):
        return []
    return [f"linha {err.line}: {err.message}" for err in schema.error_log]
