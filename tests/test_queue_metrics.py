"""Tests del reporter de métricas de colas."""

import pytest
from prometheus_client import REGISTRY

from sense_ingest.metrics.queue_metrics import QueueMetricsReporter, flatten_queue_metrics
from sense_ingest.udp.queue_config import QueueConfig
from sense_ingest.udp.queue_handler import UdpQueueHandler
from sense_ingest.udp.queue_manager import UdpQueueManager


async def noop(message, remote):
    return None


class TestFlatten:

    def test_nested_handler_snapshot(self):
        handler = UdpQueueHandler(QueueConfig(name="nested", max_size=50))
        flat = flatten_queue_metrics(handler.get_metrics())

        assert flat["queue_max_size"] == 50
        assert flat["messages_received"] == 0
        assert flat["backpressure_active"] == 0

    def test_flat_snapshot_passthrough(self):
        manager = UdpQueueManager(QueueConfig(name="flat"))
        snapshot = manager.get_metrics()

        assert flatten_queue_metrics(snapshot) == snapshot


class TestQueueMetricsReporter:

    def test_interval_must_be_positive(self):
        with pytest.raises(ValueError):
            QueueMetricsReporter("q", object(), 0)

    @pytest.mark.asyncio
    async def test_report_publishes_and_clears(self):
        handler = UdpQueueHandler(QueueConfig(name="reported", max_message_size_bytes=4))
        handler.add_message(b"ok", {}, noop)
        handler.add_message(b"too-long", {}, noop)
        await handler.wait_for_empty()

        reporter = QueueMetricsReporter("reported_q", handler, 1)
        before = REGISTRY.get_sample_value(
            "sense_udp_messages_total", {"queue": "reported_q", "status": "received"}
        ) or 0

        flat = reporter.report_once()

        assert flat["messages_received"] == 2
        assert flat["messages_dropped_size"] == 1
        after = REGISTRY.get_sample_value(
            "sense_udp_messages_total", {"queue": "reported_q", "status": "received"}
        )
        assert after - before == 2
        assert REGISTRY.get_sample_value("sense_udp_queue_size", {"queue": "reported_q"}) == 0
        # clear_metrics del handler: solo tiempos
        assert handler.get_metrics()["processing_time"]["max_ms"] == 0

    @pytest.mark.asyncio
    async def test_counter_deltas_after_manager_reset(self):
        manager = UdpQueueManager(QueueConfig(name="audit_reset"))

        async def job():
            return None

        reporter = QueueMetricsReporter("audit_reset_q", manager, 1)
        await manager.add_to_queue(job)
        await manager.wait_for_empty()
        reporter.report_once()

        await manager.add_to_queue(job)
        await manager.wait_for_empty()
        reporter.report_once()

        total = REGISTRY.get_sample_value(
            "sense_udp_messages_total", {"queue": "audit_reset_q", "status": "processed"}
        )
        assert total == 2

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        manager = UdpQueueManager(QueueConfig(name="loop"))
        reporter = QueueMetricsReporter("loop_q", manager, 0.01)

        reporter.start()
        await reporter.stop()

        assert reporter._task is None
