from __future__ import annotations

from lxml import etree

from nfse.utils.compression import compress_and_encode, decode_and_decompress_bytes
from nfse.utils.xml_utils import parse_xml, to_xml_bytes


def encode_xml(signed: etree._Element) -> str:
    """GZip compress and Base64 encode a signed XML document.

    Returns the Base64-encoded string ready for a SEFIN API payload field
    (``dpsXmlGZipB64``, ``pedidoRegistroEventoXmlGZipB64``).
    """
    return compress_and_encode(to_xml_bytes(signed))


def decode_xml(encoded: str) -> etree._Element:
    """Inverse of ``encode_xml``: Base64 decode, gunzip and parse."""
    return parse_xml(decode_and_decompress_bytes(encoded))
