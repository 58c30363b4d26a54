from __future__ import annotations

from datetime import datetime

from lxml import etree

from nfse.config import BRT, VER_APLIC
from nfse.models.enums import ActorRole, Environment, EventType
from nfse.models.taxpayer import TaxpayerId
from nfse.utils.validators import validate_access_key
from nfse.utils.xml_utils import NSMAP, add_child, add_optional, qname

EVENT_VERSION = "1.00"

EVENT_DESCRIPTIONS = {
    EventType.CANCELAMENTO: "Cancelamento de NFS-e",
    EventType.SUBSTITUICAO: "Cancelamento de NFS-e por Substituicao",
    EventType.MANIFESTACAO_CONFIRMACAO: "Manifestacao de NFS-e - Confirmacao",
    EventType.MANIFESTACAO_REJEICAO: "Manifestacao de NFS-e - Rejeicao",
}


def event_request_id(access_key: str, event_type: EventType, sequence: int = 1) -> str:
    """``PRE`` + access key (50) + event code (3) + sequence (3)."""
    validate_access_key(access_key)
    if not 1 <= sequence <= 999:
        raise ValueError(f"Sequencia do evento deve estar entre 1 e 999: {sequence}")
    return f"PRE{access_key}{int(event_type):03d}{sequence:03d}"


def build_event_request(
    access_key: str,
    event_type: EventType,
    author: TaxpayerId,
    environment: Environment,
    *,
    sequence: int = 1,
    reason_code: int | None = None,
    reason_text: str | None = None,
    actor: ActorRole | None = None,
    dh_evento: str | None = None,
    ver_aplic: str = VER_APLIC,
) -> etree._Element:
    """Build the <pedRegEvento> element for a cancellation or manifestation.

    Returns the root element, ready for signing over ``infPedReg``.
    """
    root = etree.Element(qname("pedRegEvento"), nsmap=NSMAP)  # type: ignore[arg-type]
    root.set("versao", EVENT_VERSION)

    inf = add_child(root, "infPedReg")
    inf.set("Id", event_request_id(access_key, event_type, sequence))

    add_child(inf, "tpAmb", environment.tp_amb)
    add_child(inf, "verAplic", ver_aplic)
    add_child(inf, "dhEvento", dh_evento or datetime.now(BRT).isoformat(timespec="seconds"))
    add_child(inf, f"{author.xml_tag}Autor", author.digits)
    add_child(inf, "chNFSe", access_key)
    add_child(inf, "nPedRegEvento", str(sequence))

    body = add_child(inf, f"e{int(event_type)}")
    add_child(body, "xDesc", EVENT_DESCRIPTIONS[event_type])
    if actor is not None:
        add_child(body, "tpAutor", actor.value)
    add_optional(body, "cMotivo", reason_code)
    add_optional(body, "xMotivo", reason_text)

    return root