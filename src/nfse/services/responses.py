"""Normalize authority JSON payloads into typed results.

SEFIN and ADN are inconsistent about key casing (``chaveAcesso`` vs
``ChaveAcesso``, ``alertas`` vs ``Alertas``), so every lookup here is
case-insensitive.
"""

from __future__ import annotations

import dataclasses
import logging
import re
from typing import Any, NoReturn

from lxml import etree

from nfse.models.document import (
    BatchItemOutcome,
    BatchOutcome,
    DistributionItem,
    DistributionPage,
    DraftHandle,
    Event,
    IssuedDocument,
    ProcessingMessage,
    pick_key,
)
from nfse.models.enums import (
    ActorRole,
    DocumentKind,
    Environment,
    EventType,
    NfseStatus,
    ProcessingStatus,
)
from nfse.services.exceptions import AuthorityRejected, NotFound, ProtocolError
from nfse.utils.compression import decode_and_decompress_bytes
from nfse.utils.validators import validate_access_key
from nfse.utils.xml_utils import NS, find_text, parse_xml

logger = logging.getLogger(__name__)

_EVENT_TAG = re.compile(r"^e(\d{3})$")


# --- messages and success ---


def parse_messages(data: dict, *names: str) -> tuple[ProcessingMessage, ...]:
    found: list[ProcessingMessage] = []
    for name in names:
        raw = pick_key(data, name)
        if raw is None:
            continue
        if not isinstance(raw, list):
            raw = [raw]
        found.extend(ProcessingMessage.from_dict(item) for item in raw)
    return tuple(found)


def alerts(data: dict) -> tuple[ProcessingMessage, ...]:
    return parse_messages(data, "alertas")


def errors(data: dict) -> tuple[ProcessingMessage, ...]:
    return parse_messages(data, "erros")


def all_messages(data: dict) -> tuple[ProcessingMessage, ...]:
    return alerts(data) + errors(data)


def _truthy(value: object) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "sim", "s")
    return bool(value)


def is_success(data: dict) -> bool:
    """Explicit ``sucesso`` flag when present, otherwise "no errors"."""
    flag = pick_key(data, "sucesso", "success")
    if flag is not None:
        return _truthy(flag)
    return not errors(data)


def _join(messages: tuple[ProcessingMessage, ...]) -> str:
    return "; ".join(str(m) for m in messages)


def ensure_success(data: dict, action: str) -> tuple[ProcessingMessage, ...]:
    """Return every message of a successful response, or raise.

    A non-success response must explain itself: without messages it is a
    ``ProtocolError``, with messages an ``AuthorityRejected`` carrying them.
    """
    messages = all_messages(data)
    if is_success(data):
        for msg in alerts(data):
            logger.warning("Alerta em %s: %s", action, msg)
        return messages
    if not messages:
        raise ProtocolError(f"{action}: resposta sem sucesso e sem mensagens", response=data)
    raise AuthorityRejected(
        f"{action} rejeitado: {_join(errors(data) or messages)}", messages, response=data
    )


def raise_for_http_error(data: dict, status_code: int, action: str) -> NoReturn:
    messages = all_messages(data)
    if status_code == 404:
        raise NotFound(f"{action}: nao encontrado", messages, response=data)
    if not messages:
        raise ProtocolError(f"{action}: HTTP {status_code} sem mensagens", response=data)
    raise AuthorityRejected(
        f"{action} rejeitado (HTTP {status_code}): {_join(messages)}", messages, response=data
    )


# --- documents ---


def opt_str(value: object) -> str | None:
    return None if value is None or value == "" else str(value)


def _opt_int(value: object) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ProtocolError(f"Valor inteiro invalido na resposta: {value!r}") from None


def _decode_xml(encoded: object, what: str) -> bytes | None:
    if not encoded:
        return None
    try:
        return decode_and_decompress_bytes(str(encoded))
    except ValueError as exc:
        raise ProtocolError(f"{what}: conteudo XML invalido ({exc})") from exc


def _parse_root(xml: bytes | None) -> etree._Element | None:
    if xml is None:
        return None
    try:
        return parse_xml(xml)
    except ValueError as exc:
        raise ProtocolError(str(exc)) from exc


def parse_status(value: object) -> NfseStatus | None:
    if value is None or value == "":
        return None
    try:
        return NfseStatus(str(value).strip().upper())
    except ValueError:
        raise ProtocolError(f"Situacao desconhecida: {value!r}") from None


def access_key_of(data: dict) -> str | None:
    return opt_str(pick_key(data, "chaveAcesso", "chNFSe"))


def parse_document(data: dict, fallback_key: str | None = None) -> IssuedDocument:
    """Build an ``IssuedDocument`` from a SEFIN NFS-e payload.

    Fields absent from the JSON are read from the embedded NFS-e XML.
    """
    key = access_key_of(data) or fallback_key
    if not key:
        raise ProtocolError("Resposta sem chave de acesso", response=data)
    try:
        validate_access_key(key)
    except ValueError as exc:
        raise ProtocolError(f"Chave de acesso invalida na resposta: {exc}", response=data) from exc

    xml = _decode_xml(pick_key(data, "nfseXmlGZipB64"), "NFS-e")
    root = _parse_root(xml)

    def from_xml(xpath: str) -> str | None:
        return opt_str(find_text(root, xpath)) if root is not None else None

    dps_id = opt_str(pick_key(data, "idDps"))
    if dps_id is None and root is not None:
        inf_dps = root.find(".//n:infDPS", namespaces=NS)
        dps_id = inf_dps.get("Id") if inf_dps is not None else None

    return IssuedDocument(
        access_key=key,
        status=parse_status(pick_key(data, "situacao", "status")) or NfseStatus.NORMAL,
        number=opt_str(pick_key(data, "nNFSe", "numeroNfse")) or from_xml(".//n:nNFSe"),
        protocol=opt_str(pick_key(data, "protocolo")),
        issued_at=opt_str(pick_key(data, "dataHoraProcessamento", "dhProc"))
        or from_xml(".//n:dhProc"),
        dps_id=dps_id,
        substituted_key=opt_str(pick_key(data, "chSubstda", "chaveSubstituida"))
        or from_xml(".//n:subst/n:chSubstda"),
        xml=xml,
    )


def parse_document_list(data: dict | list) -> list[IssuedDocument]:
    """Documents of a period listing; entries without an access key are skipped."""
    raw = data if isinstance(data, list) else pick_key(data, "nfseList", "nfses", "documentos") or []
    documents = []
    for item in raw:
        if not isinstance(item, dict) or not access_key_of(item):
            logger.warning("Item sem chave de acesso ignorado na listagem: %r", item)
            continue
        documents.append(parse_document(item))
    return documents


# --- events ---


def _event_fields_from_xml(xml: bytes) -> dict[str, Any]:
    try:
        root = parse_xml(xml)
    except ValueError as exc:
        raise ProtocolError(str(exc)) from exc
    inf = root.find(".//n:infPedReg", namespaces=NS)
    if inf is None:
        raise ProtocolError("XML de evento sem infPedReg")
    fields: dict[str, Any] = {
        "chNFSe": find_text(inf, "n:chNFSe"),
        "nPedRegEvento": find_text(inf, "n:nPedRegEvento"),
        "dhEvento": find_text(inf, "n:dhEvento"),
    }
    for child in inf:
        match = _EVENT_TAG.match(etree.QName(child).localname)
        if match:
            fields["tipoEvento"] = match.group(1)
            fields["tpAutor"] = find_text(child, "n:tpAutor")
            fields["cMotivo"] = find_text(child, "n:cMotivo")
            fields["xMotivo"] = find_text(child, "n:xMotivo")
    return {k: v for k, v in fields.items() if v}


def parse_event(item: dict, access_key: str | None = None) -> Event:
    xml = _decode_xml(pick_key(item, "eventoXmlGZipB64", "arquivoXml"), "Evento")
    merged = {**_event_fields_from_xml(xml), **item} if xml is not None else item

    raw_type = pick_key(merged, "tipoEvento", "codigo")
    try:
        event_type = EventType(int(raw_type))  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise ProtocolError(f"Tipo de evento desconhecido: {raw_type!r}", response=item) from None

    actor_raw = pick_key(merged, "tpAutor", "autor")
    try:
        actor = ActorRole(str(actor_raw).upper()) if actor_raw else None
    except ValueError:
        raise ProtocolError(f"Autor de evento desconhecido: {actor_raw!r}", response=item) from None

    key = opt_str(pick_key(merged, "chaveAcesso", "chNFSe")) or access_key
    if not key:
        raise ProtocolError("Evento sem chave de acesso", response=item)

    return Event(
        event_type=event_type,
        access_key=key,
        sequence=_opt_int(pick_key(merged, "nPedRegEvento", "sequencia")) or 1,
        registered_at=opt_str(pick_key(merged, "dataHoraRecebimento", "dhEvento")),
        actor=actor,
        reason_code=opt_str(pick_key(merged, "cMotivo")),
        reason_text=opt_str(pick_key(merged, "xMotivo")),
        protocol=opt_str(pick_key(merged, "protocolo")),
    )


def parse_events(data: dict | list, access_key: str) -> list[Event]:
    """Events of one document, oldest first."""
    raw = data if isinstance(data, list) else pick_key(data, "eventos") or []
    events = [parse_event(item, access_key) for item in raw]
    return sorted(events, key=lambda e: (e.registered_at or "", e.sequence))


# --- distribution (ADN) ---


def parse_distribution_item(d: dict) -> DistributionItem:
    nsu = _opt_int(pick_key(d, "NSU"))
    if nsu is None:
        raise ProtocolError("Documento distribuido sem NSU", response=d)
    raw_kind = str(pick_key(d, "TipoDocumento") or "NFSE").upper()
    kind = DocumentKind.EVENTO if "EVENTO" in raw_kind else DocumentKind.NFSE
    raw_event = _opt_int(pick_key(d, "TipoEvento"))
    try:
        event_type = EventType(raw_event) if raw_event is not None else None
    except ValueError:
        logger.warning("Tipo de evento desconhecido no NSU %d: %s", nsu, raw_event)
        event_type = None
    return DistributionItem(
        nsu=nsu,
        access_key=opt_str(pick_key(d, "ChaveAcesso")),
        kind=kind,
        event_type=event_type,
        generated_at=opt_str(pick_key(d, "DataHoraGeracao")),
        xml=_decode_xml(pick_key(d, "ArquivoXml"), f"NSU {nsu}"),
    )


def parse_distribution(data: dict, cursor: int) -> DistributionPage:
    """Build a ``DistributionPage``; an empty page is a normal answer."""
    raw_items = pick_key(data, "LoteDFe") or []
    items = tuple(parse_distribution_item(d) for d in raw_items)
    messages = all_messages(data)

    raw_status = pick_key(data, "StatusProcessamento")
    try:
        status = ProcessingStatus(str(raw_status).upper())
    except ValueError:
        status = (
            ProcessingStatus.DOCUMENTOS_LOCALIZADOS
            if items
            else ProcessingStatus.NENHUM_DOCUMENTO_LOCALIZADO
        )
        if raw_status is not None:
            logger.warning("StatusProcessamento desconhecido: %s", raw_status)

    if status is ProcessingStatus.REJEICAO:
        if not messages:
            raise ProtocolError("Distribuicao rejeitada sem mensagens", response=data)
        raise AuthorityRejected(
            f"Distribuicao rejeitada: {_join(messages)}", messages, response=data
        )

    tp_amb = pick_key(data, "TipoAmbiente")
    return DistributionPage(
        cursor=cursor,
        status=status,
        items=items,
        messages=messages,
        environment=Environment.from_tp_amb(tp_amb) if tp_amb is not None else None,
        last_nsu=_opt_int(pick_key(data, "UltimoNSU")),
        max_nsu=_opt_int(pick_key(data, "MaxNSU")),
        processed_at=opt_str(pick_key(data, "DataHoraProcessamento")),
    )


# --- batch ---


def parse_batch(data: dict, dps_ids: list[str]) -> BatchOutcome:
    """Map a batch response onto the submitted DPS ids, in submission order.

    The batch is accepted only when the authority reports success and no
    item carries errors. A rejected batch issues nothing, so item documents
    are dropped even if the response echoed keys.
    """
    top_messages = all_messages(data)
    raw_items = pick_key(data, "lote", "resultados") or []
    by_id: dict[str, dict] = {}
    for raw in raw_items:
        dps_id = opt_str(pick_key(raw, "idDps"))
        if dps_id is None:
            raise ProtocolError("Item de lote sem idDps", response=data)
        by_id[dps_id] = raw

    unknown = set(by_id) - set(dps_ids)
    if unknown:
        raise ProtocolError(
            f"Lote retornou DPS nao enviadas: {', '.join(sorted(unknown))}", response=data
        )

    items_ok = len(by_id) == len(dps_ids) and all(
        access_key_of(raw) and not errors(raw) for raw in by_id.values()
    )
    accepted = is_success(data) and items_ok

    outcomes = []
    echoed_keys = False
    for dps_id in dps_ids:
        raw = by_id.get(dps_id, {})
        document = None
        if access_key_of(raw):
            echoed_keys = True
            if accepted:
                document = parse_document(raw)
                if document.dps_id is None:
                    document = dataclasses.replace(document, dps_id=dps_id)
        outcomes.append(BatchItemOutcome(dps_id, document, all_messages(raw)))

    if not accepted:
        if not top_messages and not any(o.messages for o in outcomes):
            raise ProtocolError("Lote sem sucesso e sem mensagens", response=data)
        if echoed_keys:
            logger.warning("Lote rejeitado retornou chaves de acesso; nenhuma NFS-e considerada emitida")

    return BatchOutcome(
        accepted=accepted,
        items=tuple(outcomes),
        messages=top_messages,
        protocol=opt_str(pick_key(data, "protocolo")),
    )


# --- drafts ---


def parse_draft(data: dict) -> DraftHandle:
    draft_id = opt_str(pick_key(data, "id", "idRascunho"))
    if draft_id is None:
        raise ProtocolError("Rascunho sem identificador", response=data)
    return DraftHandle(
        draft_id=draft_id,
        name=opt_str(pick_key(data, "nome")),
        dps_id=opt_str(pick_key(data, "idDps")),
        created_at=opt_str(pick_key(data, "dataHoraCriacao")),
        xml=_decode_xml(pick_key(data, "dpsXmlGZipB64"), "Rascunho"),
    )
