"""Lifecycle orchestration over SEFIN (issuance, events, drafts) and ADN (distribution).

The gateway is stateless between calls: it holds read-only configuration
and the certificate, and every result is the authority's current view.
Local validation always runs before any network traffic.
"""

from __future__ import annotations

import dataclasses
import logging
import time
from collections.abc import Callable, Iterable, Iterator, Mapping
from datetime import date, datetime

from lxml import etree

from nfse.config import (
    ADN_TIMEOUT,
    BRT,
    SEFIN_TIMEOUT,
    VER_APLIC,
    Settings,
    get_cert_password,
    get_cert_path,
    load_settings,
)
from nfse.models.document import (
    BatchItemOutcome,
    BatchOutcome,
    DistributionItem,
    DistributionPage,
    DraftHandle,
    Event,
    EventOutcome,
    IssuanceResult,
    IssuedDocument,
    pick_key,
)
from nfse.models.draft import Dps
from nfse.models.enums import (
    ActorRole,
    CancellationReason,
    Environment,
    EventType,
    IssuerRole,
    ManifestationKind,
    NfseStatus,
    SubstitutionReason,
)
from nfse.models.lifecycle import LifecycleAction, ensure_allowed, next_status
from nfse.models.taxpayer import TaxpayerId, parse_taxpayer_id
from nfse.services import adn_client, responses, sefin_client
from nfse.services.event_builder import build_event_request
from nfse.services.exceptions import (
    CertificateError,
    InvalidTransition,
    NotFound,
    ProtocolError,
    ResponseTimeout,
    TransportFailed,
    ValidationFailed,
)
from nfse.services.http_retry import SEFIN_SUBMIT, calc_delay
from nfse.services.transport import AuthorityTransport
from nfse.services.xml_encoder import encode_xml
from nfse.services.xml_signer import sign_dps, sign_event
from nfse.utils.certificate import CertificateHandle
from nfse.utils.compression import compress_and_encode
from nfse.utils.formatters import short_key
from nfse.utils.validators import validate_access_key, validate_date, validate_dps_id

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 50
CANCEL_REASON_MIN = 15
CANCEL_REASON_MAX = 255


def _now_brt() -> str:
    return datetime.now(BRT).isoformat(timespec="seconds")


def _check_access_key(access_key: str) -> None:
    try:
        validate_access_key(access_key)
    except ValueError as exc:
        raise ValidationFailed({"chaveAcesso": [str(exc)]}) from None


def _period_params(start: date | str, end: date | str) -> dict[str, str]:
    errors: dict[str, list[str]] = {}
    params: dict[str, str] = {}
    for name, value in (("dataInicio", start), ("dataFim", end)):
        if isinstance(value, datetime):
            value = value.date()
        text = value.isoformat() if isinstance(value, date) else str(value)
        try:
            validate_date(text)
        except ValueError as exc:
            errors[name] = [str(exc)]
        params[name] = text
    if not errors and params["dataInicio"] > params["dataFim"]:
        errors["dataFim"] = ["deve ser igual ou posterior a dataInicio"]
    if errors:
        raise ValidationFailed(errors)
    return params


class NfseGateway:
    """Issue, query, cancel, substitute and manifest NFS-e documents.

    Every operation accepts a keyword ``timeout`` (seconds) that overrides
    the per-service default for that call.
    """

    def __init__(
        self,
        certificate: CertificateHandle,
        environment: Environment = Environment.HOMOLOGACAO,
        *,
        timeout: float | None = None,
        sefin_timeout: float = SEFIN_TIMEOUT,
        adn_timeout: float = ADN_TIMEOUT,
        endpoints: Mapping[str, str] | None = None,
        ver_aplic: str = VER_APLIC,
        sleep_func: Callable[[float], object] = time.sleep,
    ) -> None:
        self.certificate = certificate
        self.environment = environment
        self.ver_aplic = ver_aplic
        self.transport = AuthorityTransport(
            certificate=certificate,
            environment=environment,
            sefin_timeout=timeout or sefin_timeout,
            adn_timeout=timeout or adn_timeout,
            endpoints=dict(endpoints or {}),
        )
        self._sleep = sleep_func

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        certificate: CertificateHandle | None = None,
    ) -> NfseGateway:
        """Build a gateway from settings.yaml and the CERT_PFX_* environment."""
        settings = settings or load_settings()
        if certificate is None:
            try:
                certificate = CertificateHandle.from_file(get_cert_path(), get_cert_password())
            except KeyError as exc:
                raise CertificateError(f"Variavel de ambiente nao definida: {exc}") from exc
        return cls(
            certificate,
            Environment(settings.environment),
            sefin_timeout=settings.sefin_timeout,
            adn_timeout=settings.adn_timeout,
            endpoints=settings.endpoints,
            ver_aplic=settings.ver_aplic,
        )

    # --- preparation ---

    def _issuer_id(self, draft: Dps) -> TaxpayerId | None:
        if draft.tp_emit is IssuerRole.TOMADOR and draft.recipient is not None:
            return draft.recipient.taxpayer_id
        if draft.tp_emit is IssuerRole.INTERMEDIARIO and draft.intermediary is not None:
            return draft.intermediary.taxpayer_id
        return draft.provider.taxpayer_id

    def _draft_errors(self, draft: Dps) -> dict[str, list[str]]:
        errors = draft.errors()
        if draft.environment is not self.environment:
            errors.setdefault("tpAmb", []).append(
                f"DPS para {draft.environment.value}, gateway configurado para {self.environment.value}"
            )
        subject = self.certificate.subject_taxpayer_id()
        issuer = self._issuer_id(draft)
        if subject is not None and issuer is not None and subject != issuer:
            errors.setdefault("certificado", []).append(
                f"titular do certificado ({subject.formatted}) difere do emitente ({issuer.formatted})"
            )
        return errors

    def _sign(self, draft: Dps) -> etree._Element:
        return sign_dps(draft.to_element(), self.certificate)

    def _author_id(self) -> TaxpayerId:
        author = self.certificate.subject_taxpayer_id()
        if author is None:
            raise CertificateError("Certificado sem CPF/CNPJ identificavel no titular")
        return author

    # --- issuance ---

    def _assigned_key(self, dps_id: str, timeout: float | None) -> str | None:
        """Access key already assigned to *dps_id*, or None if SEFIN never saw it."""
        try:
            return self.query_by_dps_id(dps_id, timeout=timeout)
        except NotFound:
            return None

    def _backoff(self, attempt: int, reason: str) -> None:
        delay = calc_delay(attempt, SEFIN_SUBMIT)
        logger.warning(
            "Retry %d/%d after %s (%.1fs delay)",
            attempt + 1,
            SEFIN_SUBMIT.max_attempts,
            reason,
            delay,
        )
        self._sleep(delay)

    def _emit_signed(self, dps_id: str, encoded: str, timeout: float | None) -> IssuanceResult:
        attempt = 0
        while True:
            try:
                data = sefin_client.submit_dps(self.transport, encoded, timeout=timeout)
            except ResponseTimeout:
                logger.warning("Sem resposta ao emitir %s; consultando a DPS", dps_id)
                key = self._assigned_key(dps_id, timeout)
                if key is not None:
                    logger.warning("DPS %s ja processada (chave %s)", dps_id, short_key(key))
                    document = self.query_by_access_key(key, timeout=timeout)
                    return IssuanceResult(document, (), recovered=True)
                if attempt >= SEFIN_SUBMIT.max_attempts - 1:
                    raise
                self._backoff(attempt, "ResponseTimeout")
                attempt += 1
                continue
            messages = responses.ensure_success(data, "Emissao")
            return IssuanceResult(responses.parse_document(data), messages)

    def emit(self, draft: Dps, *, timeout: float | None = None) -> IssuanceResult:
        """Validate, sign and submit one DPS.

        An ambiguous response timeout is resolved by looking the DPS id up
        before resending, so the same DPS is never issued twice.
        """
        errors = self._draft_errors(draft)
        if errors:
            raise ValidationFailed(errors)
        signed = self._sign(draft)
        result = self._emit_signed(draft.dps_id, encode_xml(signed), timeout)
        document = result.document
        if document.dps_id is None:
            document = dataclasses.replace(document, dps_id=draft.dps_id)
            result = dataclasses.replace(result, document=document)
        logger.info("NFS-e emitida: %s (DPS %s)", short_key(document.access_key), draft.dps_id)
        return result

    def _recover_batch(self, dps_ids: list[str], timeout: float | None) -> BatchOutcome | None:
        keys = {dps_id: self._assigned_key(dps_id, timeout) for dps_id in dps_ids}
        found = [k for k in keys.values() if k is not None]
        if not found:
            return None
        if len(found) != len(dps_ids):
            raise TransportFailed(
                f"Lote em estado indeterminado: {len(found)} de {len(dps_ids)} DPS processadas"
            )
        items = tuple(
            BatchItemOutcome(
                dps_id,
                dataclasses.replace(self.query_by_access_key(key, timeout=timeout), dps_id=dps_id),
            )
            for dps_id, key in keys.items()
            if key is not None
        )
        logger.warning("Lote ja processado; %d NFS-e recuperadas", len(items))
        return BatchOutcome(accepted=True, items=items)

    def emit_batch(self, drafts: Iterable[Dps], *, timeout: float | None = None) -> BatchOutcome:
        """Submit up to MAX_BATCH_SIZE drafts in a single round trip.

        The outcome is atomic: either every DPS is issued or none is.
        Per-item messages are reported on ``BatchOutcome.items``.
        """
        drafts = list(drafts)
        if not 1 <= len(drafts) <= MAX_BATCH_SIZE:
            raise ValidationFailed(
                {"lote": [f"deve conter de 1 a {MAX_BATCH_SIZE} DPS, recebido {len(drafts)}"]}
            )
        errors: dict[str, list[str]] = {}
        for i, draft in enumerate(drafts):
            for field, msgs in self._draft_errors(draft).items():
                errors[f"[{i}].{field}"] = msgs
        if errors:
            raise ValidationFailed(errors)
        dps_ids = [d.dps_id for d in drafts]
        if len(set(dps_ids)) != len(dps_ids):
            raise ValidationFailed({"lote": ["DPS repetida no lote (mesma serie e numero)"]})

        encoded = [encode_xml(self._sign(d)) for d in drafts]
        attempt = 0
        while True:
            try:
                data = sefin_client.submit_batch(self.transport, encoded, timeout=timeout)
            except ResponseTimeout:
                logger.warning("Sem resposta ao emitir lote de %d DPS; consultando", len(drafts))
                recovered = self._recover_batch(dps_ids, timeout)
                if recovered is not None:
                    return recovered
                if attempt >= SEFIN_SUBMIT.max_attempts - 1:
                    raise
                self._backoff(attempt, "ResponseTimeout")
                attempt += 1
                continue
            outcome = responses.parse_batch(data, dps_ids)
            if outcome.accepted:
                logger.info("Lote emitido: %d NFS-e", len(outcome.documents))
            else:
                logger.warning("Lote rejeitado: %d DPS", len(outcome.items))
            return outcome

    # --- queries ---

    def query_by_access_key(self, access_key: str, *, timeout: float | None = None) -> IssuedDocument:
        _check_access_key(access_key)
        data = sefin_client.get_nfse(self.transport, access_key, timeout=timeout)
        responses.ensure_success(data, "Consulta NFS-e")
        return responses.parse_document(data, fallback_key=access_key)

    def query_by_dps_id(self, dps_id: str, *, timeout: float | None = None) -> str:
        """Return the access key SEFIN assigned to *dps_id* (``NotFound`` if none)."""
        try:
            validate_dps_id(dps_id)
        except ValueError as exc:
            raise ValidationFailed({"idDps": [str(exc)]}) from None
        data = sefin_client.get_dps(self.transport, dps_id, timeout=timeout)
        responses.ensure_success(data, "Consulta DPS")
        key = responses.access_key_of(data)
        if not key:
            raise ProtocolError(f"Consulta da DPS {dps_id} sem chave de acesso", response=data)
        return key

    def query_by_nsu(
        self,
        cursor: int,
        issuer_id: str | None = None,
        batch: bool = True,
        *,
        timeout: float | None = None,
    ) -> DistributionPage:
        """One page of the distribution stream after *cursor*.

        An empty page is a normal answer; resume from ``page.next_cursor``.
        """
        if cursor < 0:
            raise ValidationFailed({"NSU": [f"deve ser >= 0, recebido {cursor}"]})
        issuer = parse_taxpayer_id(issuer_id).digits if issuer_id else None
        return adn_client.fetch_page(
            self.transport, cursor, issuer_id=issuer, batch=batch, timeout=timeout
        )

    def iter_distribution(
        self,
        cursor: int = 0,
        issuer_id: str | None = None,
        *,
        timeout: float | None = None,
    ) -> Iterator[DistributionItem]:
        if cursor < 0:
            raise ValidationFailed({"NSU": [f"deve ser >= 0, recebido {cursor}"]})
        issuer = parse_taxpayer_id(issuer_id).digits if issuer_id else None
        return adn_client.iter_documents(self.transport, cursor, issuer_id=issuer, timeout=timeout)

    def query_events(self, access_key: str, *, timeout: float | None = None) -> list[Event]:
        _check_access_key(access_key)
        data = sefin_client.get_events(self.transport, access_key, timeout=timeout)
        if isinstance(data, dict):
            responses.ensure_success(data, "Consulta eventos")
        return responses.parse_events(data, access_key)

    def list_issued(
        self,
        start: date | str,
        end: date | str,
        number: str | None = None,
        series: str | None = None,
        *,
        timeout: float | None = None,
    ) -> list[IssuedDocument]:
        """NFS-e issued by the certificate holder between *start* and *end* (inclusive)."""
        params = _period_params(start, end)
        if number:
            params["numeroNfse"] = str(number)
        if series:
            params["serie"] = str(series)
        data = sefin_client.list_issued(self.transport, params, timeout=timeout)
        if isinstance(data, dict):
            responses.ensure_success(data, "Consulta NFS-e emitidas")
        return responses.parse_document_list(data)

    def list_received(
        self,
        start: date | str,
        end: date | str,
        provider_id: str | None = None,
        *,
        timeout: float | None = None,
    ) -> list[IssuedDocument]:
        """NFS-e taken by the certificate holder, optionally from one provider."""
        params = _period_params(start, end)
        if provider_id:
            params["cnpjPrestador"] = parse_taxpayer_id(provider_id).digits
        data = sefin_client.list_received(self.transport, params, timeout=timeout)
        if isinstance(data, dict):
            responses.ensure_success(data, "Consulta NFS-e recebidas")
        return responses.parse_document_list(data)

    # --- events ---

    def _register_event(
        self,
        access_key: str,
        event_type: EventType,
        action: str,
        timeout: float | None,
        **kwargs,
    ) -> tuple[dict, tuple, Event]:
        request = build_event_request(
            access_key,
            event_type,
            self._author_id(),
            self.environment,
            dh_evento=_now_brt(),
            ver_aplic=self.ver_aplic,
            **kwargs,
        )
        signed = sign_event(request, self.certificate)
        data = sefin_client.post_event(self.transport, access_key, encode_xml(signed), timeout=timeout)
        messages = responses.ensure_success(data, action)

        raw_event = pick_key(data, "evento")
        if isinstance(raw_event, dict):
            event = responses.parse_event(raw_event, access_key)
        else:
            reason_code = kwargs.get("reason_code")
            event = Event(
                event_type=event_type,
                access_key=access_key,
                sequence=kwargs.get("sequence", 1),
                registered_at=responses.opt_str(pick_key(data, "dataHoraRecebimento")),
                actor=kwargs.get("actor"),
                reason_code=str(reason_code) if reason_code is not None else None,
                reason_text=kwargs.get("reason_text"),
                protocol=responses.opt_str(pick_key(data, "protocolo")),
            )
        return data, messages, event

    def cancel(
        self,
        access_key: str,
        reason: CancellationReason,
        reason_text: str,
        *,
        timeout: float | None = None,
    ) -> EventOutcome:
        """Cancel a NORMAL document.

        Depending on the municipality the authority cancels at once
        (CANCELADA) or opens an analysis (CANCELAMENTO_SOLICITADO). Not
        retried after an ambiguous timeout: query the document instead.
        """
        _check_access_key(access_key)
        text = (reason_text or "").strip()
        if not CANCEL_REASON_MIN <= len(text) <= CANCEL_REASON_MAX:
            raise ValidationFailed(
                {"xMotivo": [f"deve ter de {CANCEL_REASON_MIN} a {CANCEL_REASON_MAX} caracteres"]}
            )

        status = self.query_by_access_key(access_key, timeout=timeout).status
        ensure_allowed(status, LifecycleAction.CANCEL)

        data, messages, event = self._register_event(
            access_key,
            EventType.CANCELAMENTO,
            "Cancelamento",
            timeout,
            reason_code=int(reason),
            reason_text=text,
        )

        reported = responses.parse_status(pick_key(data, "situacao")) or NfseStatus.CANCELADA
        action = (
            LifecycleAction.REQUEST_CANCELLATION
            if reported is NfseStatus.CANCELAMENTO_SOLICITADO
            else LifecycleAction.CANCEL
        )
        new_status = next_status(status, action)
        if new_status is not reported:
            raise ProtocolError(
                f"Cancelamento retornou situacao inesperada: {reported.value}", response=data
            )

        logger.info("NFS-e %s: %s", short_key(access_key), new_status.value)
        return EventOutcome(
            access_key, new_status, event, messages, responses.opt_str(pick_key(data, "protocolo"))
        )

    def substitute(
        self,
        old_key: str,
        new_draft: Dps,
        reason: SubstitutionReason,
        reason_text: str | None = None,
        *,
        timeout: float | None = None,
    ) -> IssuanceResult:
        """Issue *new_draft* as the replacement of *old_key*.

        The old document must be NORMAL; on success the authority marks it
        SUBSTITUIDA. Retries follow the same lookup-before-resend rule as ``emit``.
        """
        _check_access_key(old_key)
        draft = new_draft.with_substitution(old_key, reason, reason_text)
        errors = self._draft_errors(draft)
        if errors:
            raise ValidationFailed(errors)
        signed = self._sign(draft)

        status = self.query_by_access_key(old_key, timeout=timeout).status
        ensure_allowed(status, LifecycleAction.SUBSTITUTE)

        result = self._emit_signed(draft.dps_id, encode_xml(signed), timeout)
        document = result.document
        if document.substituted_key is not None and document.substituted_key != old_key:
            raise ProtocolError(
                f"NFS-e substituta referencia {short_key(document.substituted_key)}, "
                f"esperado {short_key(old_key)}"
            )
        document = dataclasses.replace(
            document, substituted_key=old_key, dps_id=document.dps_id or draft.dps_id
        )
        logger.info(
            "NFS-e %s substituida por %s", short_key(old_key), short_key(document.access_key)
        )
        return dataclasses.replace(result, document=document)

    def manifest(
        self,
        access_key: str,
        kind: ManifestationKind,
        actor: ActorRole = ActorRole.TOMADOR,
        reason: str | None = None,
        *,
        timeout: float | None = None,
    ) -> EventOutcome:
        """Register a confirmation or rejection by a counterparty.

        The window is open while the document is NORMAL and *actor* has not
        manifested yet; otherwise ``InvalidTransition``.
        """
        _check_access_key(access_key)
        if kind is ManifestationKind.REJEICAO and not (reason or "").strip():
            raise ValidationFailed({"xMotivo": ["motivo obrigatorio para rejeicao"]})

        status = self.query_by_access_key(access_key, timeout=timeout).status
        ensure_allowed(status, LifecycleAction.MANIFEST)

        events = self.query_events(access_key, timeout=timeout)
        if any(e.event_type.is_manifestation and e.actor is actor for e in events):
            raise InvalidTransition(
                status,
                LifecycleAction.MANIFEST,
                f"Manifestacao ja registrada por {actor.value}",
            )
        sequence = 1 + sum(1 for e in events if e.event_type is kind.event_type)

        data, messages, event = self._register_event(
            access_key,
            kind.event_type,
            "Manifestacao",
            timeout,
            sequence=sequence,
            actor=actor,
            reason_text=reason,
        )
        logger.info("NFS-e %s: manifestacao %s por %s", short_key(access_key), kind.value, actor.value)
        return EventOutcome(
            access_key,
            next_status(status, LifecycleAction.MANIFEST),
            event,
            messages,
            responses.opt_str(pick_key(data, "protocolo")),
        )

    # --- drafts ---

    def create_draft(
        self, draft: Dps, name: str | None = None, *, timeout: float | None = None
    ) -> DraftHandle:
        draft.validate()
        payload: dict = {
            "dpsXmlGZipB64": compress_and_encode(draft.to_canonical_xml()),
            "procEmi": int(draft.proc_emi),
        }
        if name:
            payload["nome"] = name
        data = sefin_client.create_draft(self.transport, payload, timeout=timeout)
        responses.ensure_success(data, "Criacao de rascunho")
        handle = responses.parse_draft(data)
        return dataclasses.replace(
            handle, name=handle.name or name, dps_id=handle.dps_id or draft.dps_id
        )

    def fetch_draft(self, draft_id: str, *, timeout: float | None = None) -> DraftHandle:
        data = sefin_client.get_draft(self.transport, draft_id, timeout=timeout)
        responses.ensure_success(data, "Consulta rascunho")
        return responses.parse_draft({"id": draft_id, **data})

    def update_draft(
        self,
        draft_id: str,
        draft: Dps | None = None,
        name: str | None = None,
        *,
        timeout: float | None = None,
    ) -> DraftHandle:
        """Replace the DPS content and/or the name of a stored draft."""
        if draft is None and not name:
            raise ValidationFailed({"rascunho": ["informe a DPS ou o nome a atualizar"]})
        payload: dict = {}
        if draft is not None:
            draft.validate()
            payload["dpsXmlGZipB64"] = compress_and_encode(draft.to_canonical_xml())
            payload["procEmi"] = int(draft.proc_emi)
        if name:
            payload["nome"] = name
        data = sefin_client.update_draft(self.transport, draft_id, payload, timeout=timeout)
        responses.ensure_success(data, "Atualizacao de rascunho")
        handle = responses.parse_draft({"id": draft_id, **data})
        logger.info("Rascunho %s atualizado", draft_id)
        return dataclasses.replace(
            handle,
            name=handle.name or name,
            dps_id=handle.dps_id or (draft.dps_id if draft is not None else None),
        )

    def delete_draft(self, draft_id: str, *, timeout: float | None = None) -> bool:
        data = sefin_client.delete_draft(self.transport, draft_id, timeout=timeout)
        responses.ensure_success(data, "Remocao de rascunho")
        logger.info("Rascunho %s removido", draft_id)
        return True

    def list_drafts(self, *, timeout: float | None = None) -> list[DraftHandle]:
        data = sefin_client.list_drafts(self.transport, timeout=timeout)
        if isinstance(data, dict):
            responses.ensure_success(data, "Lista rascunhos")
            data = pick_key(data, "rascunhos") or []
        return [responses.parse_draft(item) for item in data]

    # --- health ---

    def check_connectivity(self, *, timeout: float | None = None) -> None:
        """Reach SEFIN and ADN over mTLS; raises ``TransportFailed`` on failure."""
        sefin_client.check_sefin_connectivity(self.transport, timeout=timeout)
        adn_client.check_adn_connectivity(self.transport, timeout=timeout)
