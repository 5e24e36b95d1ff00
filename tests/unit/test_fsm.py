"""Tests for the connection state machine."""

from __future__ import annotations

import logging

import pytest

from ovpnmgr.session.fsm import (
    ConnectionFsm,
    FsmEvent,
    UserAction,
    event_for_state,
    transition_table,
)
from ovpnmgr.session.models import ConnectionState

OBSERVED = [e for e in FsmEvent if e.value.startswith("observed_")]


@pytest.mark.parametrize(
    "state,event",
    [pair for pair in transition_table() if pair[1] in OBSERVED],
)
def test_repeated_observation_is_idempotent(state, event):
    fsm = ConnectionFsm("test", state)

    fsm.process_event(event)
    first = fsm.state
    fsm.process_event(event)

    assert fsm.state == first
    assert fsm.rejected_count == 0


@pytest.mark.parametrize("state", list(ConnectionState))
def test_every_state_confirms_itself(state):
    fsm = ConnectionFsm("test", state)

    assert fsm.process_event(event_for_state(state))
    assert fsm.state == state


def test_connect_flow():
    fsm = ConnectionFsm("office")

    assert fsm.process_event(FsmEvent.CONNECT_REQUESTED)
    assert fsm.state == ConnectionState.CONNECTING
    fsm.process_event(FsmEvent.OBSERVED_AUTH_REQUIRED)
    fsm.process_event(FsmEvent.OBSERVED_CONNECTED)
    fsm.process_event(FsmEvent.OBSERVED_PAUSED)
    fsm.process_event(FsmEvent.OBSERVED_RESUMED)

    assert fsm.state == ConnectionState.CONNECTED
    assert fsm.rejected_count == 0


def test_rejected_transition_keeps_state(caplog):
    fsm = ConnectionFsm("office")

    with caplog.at_level(logging.WARNING, logger="ovpnmgr.session.fsm"):
        assert not fsm.process_event(FsmEvent.DISCONNECT_REQUESTED)

    assert fsm.state == ConnectionState.DISCONNECTED
    assert fsm.rejected_count == 1
    assert "Rejected" in caplog.text


def test_sync_forces_unreachable_state():
    fsm = ConnectionFsm("office", ConnectionState.PAUSED)

    changed = fsm.sync(ConnectionState.RECONNECTING)

    assert changed
    assert fsm.state == ConnectionState.RECONNECTING
    assert fsm.forced_count == 1
    assert fsm.rejected_count == 1


def test_sync_uses_table_when_possible():
    fsm = ConnectionFsm("office")

    assert fsm.sync(ConnectionState.CONNECTED)
    assert not fsm.sync(ConnectionState.CONNECTED)
    assert fsm.forced_count == 0


def test_force_state_is_counted(caplog):
    fsm = ConnectionFsm("office")

    with caplog.at_level(logging.WARNING, logger="ovpnmgr.session.fsm"):
        fsm.force_state(ConnectionState.ERROR)

    assert fsm.state == ConnectionState.ERROR
    assert fsm.forced_count == 1
    assert "Forcing" in caplog.text


@pytest.mark.parametrize(
    "state,actions",
    [
        (ConnectionState.DISCONNECTED, {UserAction.CONNECT}),
        (ConnectionState.CONNECTING, {UserAction.DISCONNECT}),
        (ConnectionState.RECONNECTING, {UserAction.DISCONNECT}),
        (ConnectionState.CONNECTED, {UserAction.DISCONNECT, UserAction.PAUSE}),
        (ConnectionState.PAUSED, {UserAction.RESUME, UserAction.DISCONNECT}),
        (ConnectionState.AUTH_REQUIRED, {UserAction.AUTHENTICATE, UserAction.DISCONNECT}),
        (ConnectionState.ERROR, {UserAction.CONNECT, UserAction.DISCONNECT}),
    ],
)
def test_allowed_actions(state, actions):
    fsm = ConnectionFsm("office", state)

    assert fsm.allowed_actions == actions
    for action in UserAction:
        assert fsm.can(action) == (action in actions)
