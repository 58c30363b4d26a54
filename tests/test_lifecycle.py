from __future__ import annotations

import itertools

import pytest

from nfse.models.enums import EventType, NfseStatus
from nfse.models.lifecycle import (
    TRANSITIONS,
    LifecycleAction,
    action_for_event,
    can_apply,
    ensure_allowed,
    next_status,
    replay,
)
from nfse.services.exceptions import InvalidTransition

S = NfseStatus
A = LifecycleAction


def test_table_is_total():
    for status, action in itertools.product(NfseStatus, LifecycleAction):
        assert (status, action) in TRANSITIONS


@pytest.mark.parametrize(
    ("status", "action", "expected"),
    [
        (S.NORMAL, A.CANCEL, S.CANCELADA),
        (S.NORMAL, A.REQUEST_CANCELLATION, S.CANCELAMENTO_SOLICITADO),
        (S.NORMAL, A.SUBSTITUTE, S.SUBSTITUIDA),
        (S.NORMAL, A.MANIFEST, S.NORMAL),
        (S.CANCELAMENTO_SOLICITADO, A.CONFIRM_CANCELLATION, S.CANCELADA),
        (S.SUBSTITUIDA, A.CANCEL_REPLACEMENT, S.CANCELADA_POR_SUBSTITUICAO),
    ],
)
def test_allowed_transitions(status, action, expected):
    assert can_apply(status, action)
    assert next_status(status, action) is expected


@pytest.mark.parametrize("status", [S.CANCELADA, S.CANCELADA_POR_SUBSTITUICAO])
def test_cancelled_states_accept_nothing(status):
    for action in LifecycleAction:
        assert not can_apply(status, action)


def test_substituted_is_terminal_for_callers():
    for action in LifecycleAction:
        if action.caller_initiated:
            assert not can_apply(S.SUBSTITUIDA, action)


def test_terminal_flags():
    assert S.CANCELADA.is_terminal
    assert S.SUBSTITUIDA.is_terminal
    assert not S.NORMAL.is_terminal
    assert not S.CANCELAMENTO_SOLICITADO.is_terminal


def test_pending_cancellation_blocks_caller_actions():
    for action in (A.CANCEL, A.REQUEST_CANCELLATION, A.SUBSTITUTE, A.MANIFEST):
        assert not can_apply(S.CANCELAMENTO_SOLICITADO, action)


def test_invalid_transition_carries_context():
    with pytest.raises(InvalidTransition) as exc_info:
        next_status(S.CANCELADA, A.CANCEL)
    assert exc_info.value.status is S.CANCELADA
    assert exc_info.value.action is A.CANCEL
    assert "CANCELAR" in str(exc_info.value)


def test_ensure_allowed():
    ensure_allowed(S.NORMAL, A.SUBSTITUTE)
    with pytest.raises(InvalidTransition):
        ensure_allowed(S.SUBSTITUIDA, A.SUBSTITUTE)


def test_action_for_event():
    assert action_for_event(EventType.CANCELAMENTO) is A.CANCEL
    assert action_for_event(EventType.SUBSTITUICAO) is A.SUBSTITUTE
    assert action_for_event(EventType.MANIFESTACAO_REJEICAO) is A.MANIFEST


def test_replay():
    events = [EventType.MANIFESTACAO_CONFIRMACAO, EventType.CANCELAMENTO]
    assert replay(events) is S.CANCELADA
    assert replay([]) is S.NORMAL


def test_replay_rejects_impossible_history():
    with pytest.raises(InvalidTransition):
        replay([EventType.CANCELAMENTO, EventType.MANIFESTACAO_CONFIRMACAO])
