"""
Test CommandDispatcher with synthetic topic/payload pairs (no broker).

Usage:
    pytest test_dispatcher.py
"""

import json
import logging
import threading

import pytest

from htcontrol_config import DEFAULTS, ConfigurationError, resolve
from htcontrol_control import transport
from htcontrol_control.dispatcher import (
    CommandDispatcher,
    TopicParseError,
    normalize_action,
    parse_topic,
)
from htcontrol_control.registry import DeviceNotFoundError, DeviceRegistry
from htcontrol_control.transport import TransportResult, TransportSender
from htcontrol_mqtt.schemas import Action, StatusMessage, TransportKind


class RecordingSender:
    """Fake TransportSender: records calls, returns a scripted result."""

    def __init__(self, ok=True):
        self.ok = ok
        self.calls = []

    def send(self, kind, device_id, action):
        self.calls.append((kind, device_id, action))
        if self.ok:
            return TransportResult(ok=True, command=("fake", device_id, action.value), returncode=0)
        return TransportResult(
            ok=False,
            command=("fake", device_id, action.value),
            returncode=1,
            cause=transport.CAUSE_EXIT,
            error="exit status 1",
        )


@pytest.fixture
def settings():
    return resolve(DEFAULTS)


@pytest.fixture
def registry(settings):
    return DeviceRegistry.from_settings(settings)


def make_dispatcher(settings, registry, sender):
    return CommandDispatcher(settings=settings, registry=registry, sender=sender)


def dispatcher_records(caplog):
    return [
        json.loads(r.getMessage())
        for r in caplog.records
        if r.name == "htcontrol.dispatcher"
    ]


# ===== Parsing =====

def test_parse_topic_default_prefix():
    assert parse_topic("ht/control/sonytv", "ht/control") == "sonytv"
    assert parse_topic("ht/control/sonytv/extra", "ht/control") == "sonytv"
    assert parse_topic("home/den/tv/lgtv", "home/den/tv") == "lgtv"


def test_parse_topic_leading_slash_prefix():
    assert parse_topic("/ht/control/sonytv", "/ht/control") == "sonytv"
    assert parse_topic("/ht/control/sonytv", "/ht/control/") == "sonytv"
    with pytest.raises(TopicParseError):
        parse_topic("ht/control/sonytv", "/ht/control")


@pytest.mark.parametrize("topic", ["ht/control", "ht", "ht/control/", "other/control/sonytv"])
def test_parse_topic_rejects_malformed(topic):
    with pytest.raises(TopicParseError):
        parse_topic(topic, "ht/control")


@pytest.mark.parametrize("payload, action", [
    ("on", Action.POWER_ON),
    ("off", Action.POWER_OFF),
    ("poweron", Action.POWER_ON),
    (b"poweroff", Action.POWER_OFF),
    (" ON\n", Action.POWER_ON),
    ("volumeup", None),
    ("", None),
    (b"\xff\xfe", None),
])
def test_normalize_action(payload, action):
    assert normalize_action(payload) == action


# ===== Registry =====

def test_registry_default_table(registry):
    assert registry.lookup("sonytv") == TransportKind.IR
    assert registry.lookup("marantz") == TransportKind.IR
    assert registry.lookup("lgtv") == TransportKind.CEC
    assert registry.devices == {"sonytv", "marantz", "lgtv"}


def test_registry_unknown_device_lists_known(registry):
    with pytest.raises(DeviceNotFoundError, match="lgtv, marantz, sonytv"):
        registry.lookup("toaster")
    assert not registry.is_registered("toaster")


def test_registry_rejects_unknown_kind():
    with pytest.raises(ConfigurationError, match="bluetooth"):
        DeviceRegistry({"speaker": "bluetooth"})


# ===== Dispatch =====

def test_ir_power_on_publishes_on(settings, registry):
    sender = RecordingSender()
    dispatcher = make_dispatcher(settings, registry, sender)

    status = dispatcher.on_inbound("ht/control/sonytv", b"poweron")

    assert sender.calls == [(TransportKind.IR, "sonytv", Action.POWER_ON)]
    assert status == StatusMessage(topic="ht/status/sonytv", payload="on")


def test_short_tokens_map_to_power_actions(settings, registry):
    sender = RecordingSender()
    dispatcher = make_dispatcher(settings, registry, sender)

    status = dispatcher.on_inbound("ht/control/lgtv", "off")

    assert sender.calls == [(TransportKind.CEC, "lgtv", Action.POWER_OFF)]
    assert status == StatusMessage(topic="ht/status/lgtv", payload="off")


def test_unknown_device_is_dropped(settings, registry, caplog):
    sender = RecordingSender()
    dispatcher = make_dispatcher(settings, registry, sender)

    with caplog.at_level(logging.INFO):
        status = dispatcher.on_inbound("ht/control/unknown", b"on")

    assert status is None
    assert sender.calls == []
    records = dispatcher_records(caplog)
    assert len(records) == 1
    assert records[0]["event"] == "error.device_lookup"
    assert records[0]["metadata"]["device"] == "unknown"


@pytest.mark.parametrize("payload", [b"volumeup", b"status", b"", b"1"])
def test_unrecognized_payload_has_no_side_effect(settings, registry, caplog, payload):
    sender = RecordingSender()
    dispatcher = make_dispatcher(settings, registry, sender)

    with caplog.at_level(logging.DEBUG):
        status = dispatcher.on_inbound("ht/control/sonytv", payload)

    assert status is None
    assert sender.calls == []
    (record,) = [r for r in caplog.records if r.name == "htcontrol.dispatcher"]
    assert record.levelno == logging.DEBUG


def test_malformed_topic_is_dropped(settings, registry, caplog):
    sender = RecordingSender()
    dispatcher = make_dispatcher(settings, registry, sender)

    with caplog.at_level(logging.INFO):
        status = dispatcher.on_inbound("ht/control", b"on")

    assert status is None
    assert sender.calls == []
    assert dispatcher_records(caplog)[0]["event"] == "error.topic_parse"


def test_transport_failure_suppresses_status(settings, registry, caplog):
    sender = RecordingSender(ok=False)
    dispatcher = make_dispatcher(settings, registry, sender)

    with caplog.at_level(logging.INFO):
        status = dispatcher.on_inbound("ht/control/sonytv", b"on")

    assert status is None
    assert len(sender.calls) == 1
    dropped = [r for r in dispatcher_records(caplog) if r["event"] == "command.dropped"]
    assert dropped[0]["metadata"]["command"] == "fake sonytv poweron"


def test_custom_topics(registry):
    settings = resolve(DEFAULTS, None, {"control_topic": "den/cmd", "status_topic": "den/state"})
    dispatcher = make_dispatcher(settings, registry, RecordingSender())

    assert dispatcher.on_inbound("ht/control/sonytv", b"on") is None
    assert dispatcher.on_inbound("den/cmd/sonytv", b"on") == StatusMessage("den/state/sonytv", "on")


def test_dispatcher_is_stateless(settings, registry):
    sender = RecordingSender()
    dispatcher = make_dispatcher(settings, registry, sender)

    first = dispatcher.on_inbound("ht/control/sonytv", b"on")
    dispatcher.on_inbound("ht/control/unknown", b"on")
    again = dispatcher.on_inbound("ht/control/sonytv", b"on")

    assert first == again
    assert len(sender.calls) == 2


def test_leading_slash_control_topic(registry):
    settings = resolve(DEFAULTS, None, {"control_topic": "/ht/control"})
    dispatcher = make_dispatcher(settings, registry, RecordingSender())

    assert settings.subscribe_topic == "/ht/control/+"
    assert dispatcher.on_inbound("/ht/control/sonytv", b"on") == StatusMessage("ht/status/sonytv", "on")


class BarrierSender(RecordingSender):
    """Blocks every send until all expected callers are inside send()."""

    def __init__(self, parties):
        super().__init__()
        self.barrier = threading.Barrier(parties, timeout=5)
        self.lock = threading.Lock()

    def send(self, kind, device_id, action):
        with self.lock:
            result = super().send(kind, device_id, action)
        self.barrier.wait()
        return result


def test_concurrent_dispatches_run_in_parallel(settings, registry):
    messages = [
        ("ht/control/sonytv", b"on"),
        ("ht/control/marantz", b"poweroff"),
        ("ht/control/lgtv", b"off"),
        ("ht/control/sonytv", b"off"),
    ]
    sender = BarrierSender(parties=len(messages))
    dispatcher = make_dispatcher(settings, registry, sender)
    results = [None] * len(messages)

    def dispatch(index, topic, payload):
        results[index] = dispatcher.on_inbound(topic, payload)

    threads = [
        threading.Thread(target=dispatch, args=(i, topic, payload))
        for i, (topic, payload) in enumerate(messages)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    # the barrier only opens once every send is in flight at the same time
    assert not sender.barrier.broken
    assert len(sender.calls) == len(messages)
    assert results == [
        StatusMessage("ht/status/sonytv", "on"),
        StatusMessage("ht/status/marantz", "off"),
        StatusMessage("ht/status/lgtv", "off"),
        StatusMessage("ht/status/sonytv", "off"),
    ]


# ===== End to end through the real TransportSender =====

class ScriptedPopen:
    spawned = []

    def __init__(self, args, **kwargs):
        self.args = list(args)
        self.input = None
        self.returncode = None
        ScriptedPopen.spawned.append(self)

    def communicate(self, input=None, timeout=None):
        self.input = input
        self.returncode = 0
        return None, ""

    def kill(self):
        pass


@pytest.fixture
def spawned(monkeypatch):
    ScriptedPopen.spawned = []
    monkeypatch.setattr(transport.subprocess, "Popen", ScriptedPopen)
    return ScriptedPopen.spawned


def test_end_to_end_ir(settings, registry, spawned):
    dispatcher = make_dispatcher(settings, registry, TransportSender.from_settings(settings))

    status = dispatcher.on_inbound("ht/control/sonytv", b"poweron")

    assert [p.args[-2:] for p in spawned] == [["sonytv", "poweron"]]
    assert status == StatusMessage(topic="ht/status/sonytv", payload="on")


def test_end_to_end_cec(settings, registry, spawned):
    dispatcher = make_dispatcher(settings, registry, TransportSender.from_settings(settings))

    status = dispatcher.on_inbound("ht/control/lgtv", b"poweroff")

    assert len(spawned) == 1
    assert spawned[0].input.strip() == "standby 0"
    assert status == StatusMessage(topic="ht/status/lgtv", payload="off")


def test_end_to_end_unknown_device(settings, registry, spawned, caplog):
    dispatcher = make_dispatcher(settings, registry, TransportSender.from_settings(settings))

    with caplog.at_level(logging.INFO):
        status = dispatcher.on_inbound("ht/control/unknown", b"on")

    assert status is None
    assert spawned == []
    assert len(dispatcher_records(caplog)) == 1
