from __future__ import annotations

import pytest
from lxml import etree

from nfse.config import NFSE_NS
from nfse.utils.xml_utils import (
    NSMAP,
    add_child,
    add_optional,
    find_all_text,
    find_text,
    parse_xml,
    qname,
    to_xml_bytes,
    validate_schema,
)

XSD = """<?xml version="1.0" encoding="UTF-8"?>
<xs:schema xmlns:xs="http://www.w3.org/2001/XMLSchema"
           targetNamespace="http://www.sped.fazenda.gov.br/nfse"
           elementFormDefault="qualified">
  <xs:element name="DPS">
    <xs:complexType>
      <xs:sequence>
        <xs:element name="serie" type="xs:string"/>
        <xs:element name="nDPS" type="xs:positiveInteger"/>
      </xs:sequence>
    </xs:complexType>
  </xs:element>
</xs:schema>
"""


def _doc(n_dps: str = "3") -> bytes:
    return (
        f'<DPS xmlns="{NFSE_NS}"><serie> 900 </serie><nDPS>{n_dps}</nDPS></DPS>'
    ).encode()


class TestParse:
    def test_parse_bytes_and_str(self):
        assert etree.QName(parse_xml(_doc())).localname == "DPS"
        assert etree.QName(parse_xml(_doc().decode())).localname == "DPS"

    def test_malformed(self):
        with pytest.raises(ValueError, match="XML mal formado"):
            parse_xml(b"<DPS>")

    def test_entities_not_expanded(self):
        xml = b'<!DOCTYPE x [<!ENTITY e SYSTEM "file:///etc/passwd">]><x>&e;</x>'
        root = parse_xml(xml)
        assert "root:" not in (root.text or "")


class TestFind:
    def test_find_text_strips(self):
        assert find_text(parse_xml(_doc()), "n:serie") == "900"

    def test_find_text_default(self):
        assert find_text(parse_xml(_doc()), "n:missing") == ""
        assert find_text(parse_xml(_doc()), "n:missing", "x") == "x"

    def test_find_all_text(self):
        root = parse_xml(f'<a xmlns="{NFSE_NS}"><b>1</b><b> 2 </b></a>')
        assert find_all_text(root, "n:b") == ["1", "2"]


class TestBuildHelpers:
    def test_qname(self):
        assert qname("infDPS") == f"{{{NFSE_NS}}}infDPS"

    def test_add_child(self):
        root = etree.Element(qname("DPS"), nsmap=NSMAP)
        el = add_child(root, "serie", "900")
        add_child(root, "subst")
        assert el.tag == qname("serie")
        assert to_xml_bytes(root).endswith(
            f'<DPS xmlns="{NFSE_NS}"><serie>900</serie><subst/></DPS>'.encode()
        )

    @pytest.mark.parametrize("value", [None, ""])
    def test_add_optional_skips_empty(self, value):
        root = etree.Element(qname("toma"), nsmap=NSMAP)
        add_optional(root, "email", value)
        assert len(root) == 0

    def test_add_optional_stringifies(self):
        root = etree.Element(qname("e101101"), nsmap=NSMAP)
        add_optional(root, "cMotivo", 1)
        assert find_text(root, "n:cMotivo") == "1"


def test_to_xml_bytes_has_declaration():
    out = to_xml_bytes(etree.Element("x"))
    assert out == b"<?xml version='1.0' encoding='utf-8'?>\n<x/>"


class TestValidateSchema:
    def test_valid(self, tmp_path):
        xsd = tmp_path / "dps.xsd"
        xsd.write_text(XSD)
        assert validate_schema(parse_xml(_doc()), xsd) == []

    def test_invalid(self, tmp_path):
        xsd = tmp_path / "dps.xsd"
        xsd.write_text(XSD)
        errors = validate_schema(parse_xml(_doc("zero")), xsd)
        assert len(errors) == 1
        assert errors[0].startswith("linha ")
