"""Tests del parsing de datagramas de Qlik Sense y del servidor UDP."""

import asyncio

import pytest
from prometheus_client import REGISTRY

from common.config import AppConfig
from sense_ingest.main import create_app
from sense_ingest.udp.events import EventCounter, EventDispatcher, parse_log_event, parse_user_event
from sense_ingest.udp.queue_config import QueueConfig
from sense_ingest.udp.queue_handler import UdpQueueHandler
from sense_ingest.udp.server import start_udp_server

USER_MSG = b"/qseow-proxy-session/;srv1;Start session;LAB;anna;Proxy;AppAccess;Opened;app;sheet"
LOG_MSG = (
    b"/qseow-engine/;12;2026-03-01T12:00:00.000+0100;2026-03-01T12:00:00.000+0100;"
    b"INFO;srv1;Engine.Session;LAB\\svc;Session started"
)


def sample(name, **labels):
    return REGISTRY.get_sample_value(name, labels) or 0


# =============================================================================
# USER EVENTS
# =============================================================================

class TestUserEvents:

    def test_parse_fields(self):
        event = parse_user_event(USER_MSG)

        assert event["messageType"] == "qseow-proxy-session"
        assert event["host"] == "srv1"
        assert event["command"] == "Start session"
        assert event["user_full"] == "LAB\\anna"
        # El último campo conserva los ';'
        assert event["message"] == "Opened;app;sheet"

    def test_unknown_source(self):
        assert parse_user_event(b"/something-else/;a;b") is None

    def test_short_message_padded(self):
        event = parse_user_event("/qseow-proxy-connection/;srv1")

        assert event["command"] == ""
        assert event["user_full"] == ""


# =============================================================================
# LOG EVENTS
# =============================================================================

class TestLogEvents:

    def test_parse_fields(self):
        event = parse_log_event(LOG_MSG)

        assert event["source"] == "qseow-engine"
        assert event["log_row"] == 12
        assert event["ts_iso"] == "2026-03-01T12:00:00.000+0100"
        assert event["windows_user"] == "LAB\\svc"
        assert event["message"] == "Session started"

    def test_bad_row_and_timestamp(self):
        event = parse_log_event(b"/qseow-proxy/;x;yesterday;;WARN")

        assert event["log_row"] == -1
        assert event["ts_iso"] == ""
        assert event["level"] == "WARN"

    def test_unknown_source(self):
        assert parse_log_event(b"/qseow-unknown/;1") is None


# =============================================================================
# DISPATCHER
# =============================================================================

class TestEventDispatcher:

    @pytest.mark.asyncio
    async def test_delivers_to_sinks(self):
        seen = []

        async def sink(event):
            seen.append(event["user_id"])

        dispatcher = EventDispatcher(parse_user_event, sinks=[sink])
        await dispatcher(USER_MSG, {})

        assert seen == ["anna"]

    @pytest.mark.asyncio
    async def test_excluded_user_skipped(self):
        seen = []

        async def sink(event):
            seen.append(event)

        dispatcher = EventDispatcher(
            parse_user_event, sinks=[sink], exclude_users=[{"directory": "LAB", "userId": "anna"}],
        )
        await dispatcher(USER_MSG, {})

        assert seen == []

    @pytest.mark.asyncio
    async def test_sink_error_counts_as_failed(self):
        async def broken(event):
            raise RuntimeError("sink down")

        queue = UdpQueueHandler(QueueConfig(name="user_events"))
        queue.add_message(USER_MSG, {}, EventDispatcher(parse_user_event, sinks=[broken]))
        await queue.wait_for_empty()

        assert queue.metrics.messages_failed == 1


# =============================================================================
# CONTADORES DE EVENTOS
# =============================================================================

USER_LABELS = dict(kind="user_events", source="qseow-proxy-session", host="srv1", subsystem="Proxy")
LOG_LABELS = dict(kind="log_events", source="qseow-engine", host="srv1", subsystem="Engine.Session")


class TestEventCounter:

    @pytest.mark.asyncio
    async def test_user_event_counted_by_source_host_origin(self):
        before = sample("sense_udp_events_total", **USER_LABELS)
        dispatcher = EventDispatcher(parse_user_event, counter=EventCounter("user_events"))

        await dispatcher(USER_MSG, {})
        await dispatcher(USER_MSG, {})

        assert sample("sense_udp_events_total", **USER_LABELS) - before == 2

    @pytest.mark.asyncio
    async def test_log_event_counted_by_subsystem(self):
        before = sample("sense_udp_events_total", **LOG_LABELS)
        dispatcher = EventDispatcher(parse_log_event, counter=EventCounter("log_events"))

        await dispatcher(LOG_MSG, {})

        assert sample("sense_udp_events_total", **LOG_LABELS) - before == 1

    @pytest.mark.asyncio
    async def test_missing_labels_become_unknown(self):
        labels = dict(kind="log_events", source="qseow-proxy", host="Unknown", subsystem="Unknown")
        before = sample("sense_udp_events_total", **labels)
        dispatcher = EventDispatcher(parse_log_event, counter=EventCounter("log_events"))

        await dispatcher(b"/qseow-proxy/;1", {})

        assert sample("sense_udp_events_total", **labels) - before == 1

    @pytest.mark.asyncio
    async def test_excluded_user_still_counted(self):
        before = sample("sense_udp_events_total", **USER_LABELS)
        seen = []

        async def sink(event):
            seen.append(event)

        dispatcher = EventDispatcher(
            parse_user_event,
            sinks=[sink],
            exclude_users=[{"directory": "LAB", "userId": "anna"}],
            counter=EventCounter("user_events"),
        )
        await dispatcher(USER_MSG, {})

        assert seen == []
        assert sample("sense_udp_events_total", **USER_LABELS) - before == 1

    @pytest.mark.asyncio
    async def test_rejected_datagram_counted(self):
        before = sample("sense_udp_events_rejected_total", kind="user_events")
        seen = []

        async def sink(event):
            seen.append(event)

        dispatcher = EventDispatcher(parse_user_event, sinks=[sink], counter=EventCounter("user_events"))
        await dispatcher(b"/not-a-source/;x", {})

        assert seen == []
        assert sample("sense_udp_events_rejected_total", kind="user_events") - before == 1

    @pytest.mark.asyncio
    async def test_flags_gate_each_counter(self):
        accepted_before = sample("sense_udp_events_total", **USER_LABELS)
        rejected_before = sample("sense_udp_events_rejected_total", kind="user_events")
        counter = EventCounter("user_events", count_accepted=False, count_rejected=False)
        dispatcher = EventDispatcher(parse_user_event, counter=counter)

        await dispatcher(USER_MSG, {})
        await dispatcher(b"/not-a-source/;x", {})

        assert sample("sense_udp_events_total", **USER_LABELS) == accepted_before
        assert sample("sense_udp_events_rejected_total", kind="user_events") == rejected_before


class TestEventCountWiring:

    @staticmethod
    def udp_config(**sense_events):
        return AppConfig.from_dict({
            "qlikSenseEvents": sense_events,
            "userEvents": {
                "enable": True,
                "udpServerConfig": {"serverHost": "127.0.0.1", "portUserActivityEvents": 9997},
            },
            "logEvents": {"enable": False},
            "auditEvents": {"enable": False},
        })

    def test_counter_attached_when_enabled(self):
        app = create_app(
            self.udp_config(eventCount={"enable": True}, rejectedEventCount={"enable": False}),
            start_udp=False,
        )
        counter = app.state.udp_dispatchers["user_events"].counter

        assert counter.kind == "user_events"
        assert counter.count_accepted is True
        assert counter.count_rejected is False

    def test_no_counter_when_disabled(self):
        app = create_app(self.udp_config(), start_udp=False)

        assert app.state.udp_dispatchers["user_events"].counter is None


# =============================================================================
# SERVIDOR UDP
# =============================================================================

class TestUdpServer:

    @pytest.mark.asyncio
    async def test_datagram_goes_through_queue(self, wait_until):
        received = []

        async def handler(message, remote):
            received.append((message, remote["address"]))

        queue = UdpQueueHandler(QueueConfig(name="udp_test"))
        transport, _ = await start_udp_server("udp_test", "127.0.0.1", 0, queue, handler)
        port = transport.get_extra_info("sockname")[1]

        loop = asyncio.get_running_loop()
        client, _ = await loop.create_datagram_endpoint(
            asyncio.DatagramProtocol, remote_addr=("127.0.0.1", port)
        )
        try:
            client.sendto(USER_MSG)
            await wait_until(lambda: received)
        finally:
            client.close()
            transport.close()

        assert received == [(USER_MSG, "127.0.0.1")]
        assert queue.metrics.messages_processed == 1
