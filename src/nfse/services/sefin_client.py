from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from nfse.services.http_retry import READ, SEFIN_SUBMIT, retry_call
from nfse.services.transport import AuthorityTransport

logger = logging.getLogger(__name__)


def submit_dps(
    transport: AuthorityTransport,
    dps_b64: str,
    *,
    timeout: float | None = None,
) -> dict:
    """Send one signed+encoded DPS to SEFIN and return the raw response.

    Only connection failures are retried here; a response timeout is left
    to the caller, which must look the DPS id up before resending.
    """
    payload = {"dpsXmlGZipB64": dps_b64}
    return retry_call(
        lambda: transport.send("POST", "sefin", "nfse", json=payload, timeout=timeout, action="emissao"),
        SEFIN_SUBMIT,
    )


def submit_batch(
    transport: AuthorityTransport,
    dps_b64_list: list[str],
    *,
    timeout: float | None = None,
) -> dict:
    payload = {"dpsXmlGZipB64List": dps_b64_list}
    return retry_call(
        lambda: transport.send(
            "POST", "sefin", "nfse/lote", json=payload, timeout=timeout, action="emissao em lote"
        ),
        SEFIN_SUBMIT,
    )


def get_nfse(transport: AuthorityTransport, access_key: str, *, timeout: float | None = None) -> dict:
    return retry_call(
        lambda: transport.send("GET", "sefin", f"nfse/{access_key}", timeout=timeout, action="consulta NFS-e"),
        READ,
    )


def get_dps(transport: AuthorityTransport, dps_id: str, *, timeout: float | None = None) -> dict:
    """Look up the access key assigned to a DPS id (``NotFound`` if none)."""
    return retry_call(
        lambda: transport.send("GET", "sefin", f"dps/{dps_id}", timeout=timeout, action="consulta DPS"),
        READ,
    )


def get_events(transport: AuthorityTransport, access_key: str, *, timeout: float | None = None) -> Any:
    return retry_call(
        lambda: transport.send(
            "GET", "sefin", f"nfse/{access_key}/eventos", timeout=timeout, action="consulta eventos"
        ),
        READ,
    )


def list_issued(
    transport: AuthorityTransport,
    params: Mapping[str, str],
    *,
    timeout: float | None = None,
) -> Any:
    """NFS-e issued by the certificate holder in a period (``dataInicio``/``dataFim``)."""
    return retry_call(
        lambda: transport.send(
            "GET",
            "sefin",
            "nfse/emitidas",
            params=params,
            timeout=timeout,
            action="consulta NFS-e emitidas",
        ),
        READ,
    )


def list_received(
    transport: AuthorityTransport,
    params: Mapping[str, str],
    *,
    timeout: float | None = None,
) -> Any:
    """NFS-e received by the certificate holder in a period."""
    return retry_call(
        lambda: transport.send(
            "GET",
            "sefin",
            "nfse/recebidas",
            params=params,
            timeout=timeout,
            action="consulta NFS-e recebidas",
        ),
        READ,
    )


def post_event(
    transport: AuthorityTransport,
    access_key: str,
    event_b64: str,
    *,
    timeout: float | None = None,
) -> dict:
    payload = {"pedidoRegistroEventoXmlGZipB64": event_b64}
    return retry_call(
        lambda: transport.send(
            "POST",
            "sefin",
            f"nfse/{access_key}/eventos",
            json=payload,
            timeout=timeout,
            action="registro de evento",
        ),
        SEFIN_SUBMIT,
    )


def create_draft(transport: AuthorityTransport, payload: dict, *, timeout: float | None = None) -> dict:
    return retry_call(
        lambda: transport.send(
            "POST", "sefin", "rascunhos/DPS", json=payload, timeout=timeout, action="criacao de rascunho"
        ),
        SEFIN_SUBMIT,
    )


def get_draft(transport: AuthorityTransport, draft_id: str, *, timeout: float | None = None) -> dict:
    return retry_call(
        lambda: transport.send(
            "GET", "sefin", f"rascunhos/DPS/{draft_id}", timeout=timeout, action="consulta rascunho"
        ),
        READ,
    )


def list_drafts(transport: AuthorityTransport, *, timeout: float | None = None) -> Any:
    return retry_call(
        lambda: transport.send("GET", "sefin", "rascunhos/DPS", timeout=timeout, action="lista rascunhos"),
        READ,
    )


def update_draft(
    transport: AuthorityTransport,
    draft_id: str,
    payload: dict,
    *,
    timeout: float | None = None,
) -> dict:
    # PUT replaces the draft wholesale, so a resend after a timeout is harmless
    return retry_call(
        lambda: transport.send(
            "PUT",
            "sefin",
            f"rascunhos/DPS/{draft_id}",
            json=payload,
            timeout=timeout,
            action="atualizacao de rascunho",
        ),
        READ,
    )


def delete_draft(transport: AuthorityTransport, draft_id: str, *, timeout: float | None = None) -> dict:
    # Deleting twice is harmless, so response timeouts may be retried too
    return retry_call(
        lambda: transport.send(
            "DELETE", "sefin", f"rascunhos/DPS/{draft_id}", timeout=timeout, action="remocao de rascunho"
        ),
        READ,
    )


def check_sefin_connectivity(transport: AuthorityTransport, *, timeout: float | None = None) -> None:
    """Test SEFIN API connectivity via an mTLS GET to the base URL.

    A non-200 response (e.g. 405) is expected and acceptable: it proves
    the endpoint is reachable and the TLS handshake succeeded.
    """
    status = retry_call(lambda: transport.ping("sefin", timeout=timeout), SEFIN_SUBMIT)
    logger.debug("SEFIN respondeu HTTP %d", status)
