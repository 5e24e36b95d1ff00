"""Tests for the transport gateway."""

from __future__ import annotations

import pytest

from ovpnmgr.bus.gateway import BusNames, TransportGateway, is_transient
from ovpnmgr.errors import (
    BusError,
    InvalidArgumentError,
    ProtocolMismatchError,
    TransientBackendError,
)
from ovpnmgr.session.models import ConnectedTo, RemoteServer, SessionStatus

SERVICE_UNKNOWN = "org.freedesktop.DBus.Error.ServiceUnknown"


def _transient() -> BusError:
    return BusError("not activated", name=SERVICE_UNKNOWN)


def test_fetch_configs(bus, gateway):
    path = bus.add_config("office", persistent=True)

    profiles = gateway.fetch_configs()

    assert len(profiles) == 1
    assert profiles[0].config_path == path
    assert profiles[0].name == "office"
    assert profiles[0].persistent is True
    assert profiles[0].server is None


def test_fetch_config_with_server(bus, gateway):
    path = bus.add_config("office", content="remote vpn.example.com 443 tcp\n")

    profile = gateway.fetch_config(path, include_server=True)

    assert profile.server == RemoteServer("vpn.example.com", 443, "tcp")


def test_fetch_sessions_reads_properties(bus, gateway):
    path = bus.add_session("office", status=(2, 7, "Connected"), device_name="tun3")

    sessions = gateway.fetch_sessions()

    assert len(sessions) == 1
    session = sessions[0]
    assert session.session_path == path
    assert session.config_name == "office"
    assert session.device_name == "tun3"
    assert session.created == 1_700_000_000
    assert session.status == SessionStatus(2, 7, "Connected")
    assert session.connected_to == ConnectedTo("udp", "198.51.100.7", 1194)


def test_fetch_session_missing_optional_properties(bus, gateway):
    path = bus.add_session("office", connected_to=None)
    del bus.sessions[path]["status"]

    session = gateway.fetch_session(path)

    assert session.connected_to is None
    assert session.status == SessionStatus()


def test_retry_exhausts_after_six_attempts(bus, gateway, sleeps):
    bus.fail("FetchAvailableConfigs", _transient(), times=10)

    with pytest.raises(TransientBackendError) as excinfo:
        gateway.fetch_configs()

    assert excinfo.value.attempts == 6
    assert bus.methods().count("FetchAvailableConfigs") == 6
    assert sleeps == [1.0] * 5


def test_retry_succeeds_after_transient_failures(bus, gateway, sleeps):
    bus.add_session("office")
    bus.fail("FetchAvailableSessions", _transient(), times=5)

    sessions = gateway.fetch_sessions()

    assert len(sessions) == 1
    assert bus.methods().count("FetchAvailableSessions") == 6
    assert len(sleeps) == 5


def test_non_transient_error_is_not_retried(bus, gateway, sleeps):
    bus.fail("FetchAvailableConfigs", BusError("denied", name="org.freedesktop.DBus.Error.AccessDenied"))

    with pytest.raises(BusError):
        gateway.fetch_configs()

    assert bus.methods().count("FetchAvailableConfigs") == 1
    assert sleeps == []


def test_is_transient():
    assert is_transient(_transient())
    assert is_transient(BusError("x", name="org.freedesktop.DBus.Error.NameHasNoOwner"))
    assert is_transient(BusError("x", name="org.freedesktop.DBus.Error.Spawn.ChildExited"))
    assert not is_transient(BusError("x", name="org.freedesktop.DBus.Error.AccessDenied"))
    assert not is_transient(BusError("x"))


def test_custom_attempt_budget(bus, sleeps):
    gateway = TransportGateway(bus, max_attempts=2, retry_delay=0.5, sleep=sleeps.append)
    bus.fail("FetchAvailableConfigs", _transient(), times=3)

    with pytest.raises(TransientBackendError):
        gateway.fetch_configs()

    assert bus.methods().count("FetchAvailableConfigs") == 2
    assert sleeps == [0.5]


def test_empty_identifiers_rejected_before_bus_call(bus, gateway):
    with pytest.raises(InvalidArgumentError):
        gateway.new_tunnel("")
    with pytest.raises(InvalidArgumentError):
        gateway.session_disconnect("")
    with pytest.raises(InvalidArgumentError):
        gateway.import_config("", "remote x 1194")

    assert bus.calls == []


def test_unexpected_reply_shape(bus, gateway):
    bus._do_FetchAvailableConfigs = lambda path: ("not-a-list",)

    with pytest.raises(ProtocolMismatchError):
        gateway.fetch_configs()


def test_statistics_keeps_known_keys(bus, gateway):
    path = bus.add_session(
        "office", statistics={"BYTES_IN": 100, "BYTES_OUT": 50, "TUN_BYTES_IN": 7}
    )

    assert gateway.session_statistics(path) == {"BYTES_IN": 100, "BYTES_OUT": 50}


def test_malformed_statistics_value(bus, gateway):
    path = bus.add_session("office", statistics={"BYTES_IN": "lots", "BYTES_OUT": 50})

    with pytest.raises(ProtocolMismatchError):
        gateway.session_statistics(path)


def test_malformed_request_ids(bus, gateway):
    path = bus.add_session("office", input_queue=[(1, 3, "x", "https://login.example.com")])

    with pytest.raises(ProtocolMismatchError):
        gateway.user_input_check(path, 1, 3)


def test_malformed_input_request(bus, gateway):
    path = bus.add_session("office")
    bus._do_UserInputQueueFetch = lambda p, t, g, i: ("one", g, i, "url", "https://x", False, False)

    with pytest.raises(ProtocolMismatchError):
        gateway.user_input_fetch(path, 1, 3, 9)


def test_import_and_remove_config(bus, gateway):
    path = gateway.import_config("home", "remote home.example.net 1194\n", persistent=True)

    assert bus.configs[path]["name"] == "home"
    assert ("Import", "/net/openvpn/v3/configuration", ("home", "remote home.example.net 1194\n", False, True)) in bus.calls

    gateway.remove_config(path)
    assert path not in bus.configs


def test_user_input_fetch(bus, gateway):
    path = bus.add_session("office", input_queue=[(1, 3, 9, "https://login.example.com/x")])

    assert gateway.user_input_type_groups(path) == [(1, 3)]
    assert gateway.user_input_check(path, 1, 3) == [9]
    request = gateway.user_input_fetch(path, 1, 3, 9)
    assert request.description == "https://login.example.com/x"
    assert request.id == 9


def test_subscribe_attention_delivers_events(bus, gateway):
    path = bus.add_session("office")
    events = []

    handle = gateway.subscribe_attention(path, events.append)
    bus.emit(path, "AttentionRequired", (1, 3, "https://login.example.com"))

    assert len(events) == 1
    assert events[0].session_path == path
    assert events[0].is_web_auth

    gateway.unsubscribe(handle)
    bus.emit(path, "AttentionRequired", (1, 3, "https://login.example.com"))
    assert len(events) == 1


def test_custom_bus_names(bus, sleeps):
    names = BusNames(session_root="/custom/sessions")
    gateway = TransportGateway(bus, names=names, sleep=sleeps.append)

    gateway.fetch_session_paths()

    assert bus.calls[0] == ("FetchAvailableSessions", "/custom/sessions", ())


def test_malformed_attention_signal_is_dropped(bus, gateway):
    path = bus.add_session("office")
    events = []

    gateway.subscribe_attention(path, events.append)
    bus.emit(path, "AttentionRequired", ("web", 3, "https://login.example.com"))

    assert events == []
