"""NFS-e status machine.

The table below is total: every (status, action) pair has an entry, either
the resulting status or ``None`` for a rejected transition.

``SUBSTITUIDA`` is terminal for every caller-initiated action. Its single
outgoing edge, ``CANCEL_REPLACEMENT``, is applied by the authority when the
replacing document is itself cancelled.
"""

from __future__ import annotations

import enum

from nfse.models.enums import EventType, NfseStatus
from nfse.services.exceptions import InvalidTransition


class LifecycleAction(enum.Enum):
    CANCEL = "CANCELAR"
    REQUEST_CANCELLATION = "SOLICITAR_CANCELAMENTO"
    CONFIRM_CANCELLATION = "DEFERIR_CANCELAMENTO"
    SUBSTITUTE = "SUBSTITUIR"
    CANCEL_REPLACEMENT = "CANCELAR_SUBSTITUTA"
    MANIFEST = "MANIFESTAR"

    @property
    def caller_initiated(self) -> bool:
        return self in _CALLER_ACTIONS


_CALLER_ACTIONS = frozenset(
    {
        LifecycleAction.CANCEL,
        LifecycleAction.REQUEST_CANCELLATION,
        LifecycleAction.SUBSTITUTE,
        LifecycleAction.MANIFEST,
    }
)

_S = NfseStatus
_A = LifecycleAction

TRANSITIONS: dict[tuple[NfseStatus, LifecycleAction], NfseStatus | None] = {
    (_S.NORMAL, _A.CANCEL): _S.CANCELADA,
    (_S.NORMAL, _A.REQUEST_CANCELLATION): _S.CANCELAMENTO_SOLICITADO,
    (_S.NORMAL, _A.CONFIRM_CANCELLATION): None,
    (_S.NORMAL, _A.SUBSTITUTE): _S.SUBSTITUIDA,
    (_S.NORMAL, _A.CANCEL_REPLACEMENT): None,
    (_S.NORMAL, _A.MANIFEST): _S.NORMAL,
    (_S.CANCELAMENTO_SOLICITADO, _A.CANCEL): None,
    (_S.CANCELAMENTO_SOLICITADO, _A.REQUEST_CANCELLATION): None,
    (_S.CANCELAMENTO_SOLICITADO, _A.CONFIRM_CANCELLATION): _S.CANCELADA,
    (_S.CANCELAMENTO_SOLICITADO, _A.SUBSTITUTE): None,
    (_S.CANCELAMENTO_SOLICITADO, _A.CANCEL_REPLACEMENT): None,
    (_S.CANCELAMENTO_SOLICITADO, _A.MANIFEST): None,
    (_S.CANCELADA, _A.CANCEL): None,
    (_S.CANCELADA, _A.REQUEST_CANCELLATION): None,
    (_S.CANCELADA, _A.CONFIRM_CANCELLATION): None,
    (_S.CANCELADA, _A.SUBSTITUTE): None,
    (_S.CANCELADA, _A.CANCEL_REPLACEMENT): None,
    (_S.CANCELADA, _A.MANIFEST): None,
    (_S.SUBSTITUIDA, _A.CANCEL): None,
    (_S.SUBSTITUIDA, _A.REQUEST_CANCELLATION): None,
    (_S.SUBSTITUIDA, _A.CONFIRM_CANCELLATION): None,
    (_S.SUBSTITUIDA, _A.SUBSTITUTE): None,
    (_S.SUBSTITUIDA, _A.CANCEL_REPLACEMENT): _S.CANCELADA_POR_SUBSTITUICAO,
    (_S.SUBSTITUIDA, _A.MANIFEST): None,
    (_S.CANCELADA_POR_SUBSTITUICAO, _A.CANCEL): None,
    (_S.CANCELADA_POR_SUBSTITUICAO, _A.REQUEST_CANCELLATION): None,
    (_S.CANCELADA_POR_SUBSTITUICAO, _A.CONFIRM_CANCELLATION): None,
    (_S.CANCELADA_POR_SUBSTITUICAO, _A.SUBSTITUTE): None,
    (_S.CANCELADA_POR_SUBSTITUICAO, _A.CANCEL_REPLACEMENT): None,
    (_S.CANCELADA_POR_SUBSTITUICAO, _A.MANIFEST): None,
}


def can_apply(status: NfseStatus, action: LifecycleAction) -> bool:
    return TRANSITIONS[(status, action)] is not None


def next_status(status: NfseStatus, action: LifecycleAction) -> NfseStatus:
    """Return the status reached by applying *action*, or raise InvalidTransition."""
    target = TRANSITIONS[(status, action)]
    if target is None:
        raise InvalidTransition(status, action)
    return target


def ensure_allowed(status: NfseStatus, action: LifecycleAction) -> None:
    next_status(status, action)


def action_for_event(event_type: EventType) -> LifecycleAction:
    """Map an authority event code to the action it applies."""
    if event_type is EventType.CANCELAMENTO:
        return LifecycleAction.CANCEL
    if event_type is EventType.SUBSTITUICAO:
        return LifecycleAction.SUBSTITUTE
    return LifecycleAction.MANIFEST


def replay(events, initial: NfseStatus = NfseStatus.NORMAL) -> NfseStatus:
    """Fold a chronological sequence of event types into a status."""
    status = initial
    for event_type in events:
        status = next_status(status, action_for_event(event_type))
    return status
