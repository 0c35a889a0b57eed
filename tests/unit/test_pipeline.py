"""
Unit tests for Pipeline wiring (ingest / shutdown) with a fake client.
"""

import threading

from prometheus_client import REGISTRY

from crate_client.models import EventStatus
from crate_sink.buffer import FlushState
from crate_sink.config import EventSinkSettings, MetricSinkSettings
from crate_sink.pipeline import build_event_pipeline, build_metric_pipeline


def sample(name: str, **labels) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


def event_settings(**overrides) -> EventSinkSettings:
    cfg = {"hostname": "127.0.0.1", "port": 4200, "table": "events"}
    cfg.update(overrides)
    return EventSinkSettings.from_mapping(cfg)


def metric_settings(**overrides) -> MetricSinkSettings:
    cfg = {"hostname": "127.0.0.1", "table": "sensu_metrics"}
    cfg.update(overrides)
    return MetricSinkSettings.from_mapping(cfg)


class TestEventPipeline:
    def test_three_events_one_request_in_order(self, make_event, fake_client, clock):
        pipeline = build_event_pipeline(event_settings(buffer_size=3), fake_client, clock=clock)

        for i, status in enumerate([0, 1, 2]):
            pipeline.ingest(make_event(status=status, event_id=f"e{i}"))

        batches = fake_client.shipper.batches
        assert len(batches) == 1
        assert [r.id for r in batches[0]] == ["e0", "e1", "e2"]
        assert [r.status for r in batches[0]] == [
            EventStatus.OK,
            EventStatus.WARNING,
            EventStatus.CRITICAL,
        ]
        assert fake_client.tables == [("events", "events")]
        assert len(pipeline) == 0

    def test_ingest_never_raises_on_garbage(self, fake_client, clock):
        pipeline = build_event_pipeline(event_settings(), fake_client, clock=clock)
        before = sample("crate_sink_records_skipped_total", pipeline="events")

        pipeline.ingest("{{{ not json")
        pipeline.ingest(None)
        pipeline.ingest({"id": "x"})

        assert len(pipeline) == 0
        assert sample("crate_sink_records_skipped_total", pipeline="events") == before + 3

    def test_shipper_exception_counts_as_failed_attempt(self, make_event, clock, log_records):
        class ExplodingClient:
            calls = 0

            def ship_preset(self, kind, table, rows):
                self.calls += 1
                raise TypeError("Object of type set is not JSON serializable")

        client = ExplodingClient()
        settings = event_settings(buffer_size=1, buffer_max_try=2, buffer_max_try_delay=0)
        pipeline = build_event_pipeline(settings, client, clock=clock)

        pipeline.ingest(make_event(event_id="a"))  # must not raise
        assert pipeline.state == FlushState.BACKOFF
        assert pipeline.controller.retry_count == 1
        assert len(pipeline) == 1

        pipeline.ingest(make_event(event_id="b"))
        assert pipeline.controller.retry_count == 2
        assert len(pipeline) == 2

        pipeline.ingest(make_event(event_id="c"))  # max_retries + 1 attempts: dropped
        assert client.calls == 3
        assert len(pipeline) == 0
        assert pipeline.state == FlushState.IDLE
        assert any("have been lost" in r["message"] for r in log_records)

    def test_ingest_after_shutdown_is_bounded(self, make_event, clock):
        settings = event_settings(hostname="crate.local", buffer_size=1, buffer_max_try=1,
                                  buffer_max_try_delay=0)
        pipeline = build_event_pipeline(settings, clock=clock)
        pipeline.shutdown()

        for i in range(5):
            pipeline.ingest(make_event(event_id=f"e{i}"))  # closed client raises inside httpx
            assert len(pipeline) <= 2
        assert pipeline.state != FlushState.FLUSHING

    def test_age_trigger(self, make_event, fake_client, clock):
        pipeline = build_event_pipeline(
            event_settings(buffer_size=100, buffer_max_age=300), fake_client, clock=clock
        )
        pipeline.ingest(make_event(event_id="a"))
        clock.advance(250)
        pipeline.ingest(make_event(event_id="b"))
        assert fake_client.shipper.calls == 0

        clock.advance(51)
        pipeline.ingest(make_event(event_id="c"))
        assert fake_client.shipper.calls == 1
        assert [r.id for r in fake_client.shipper.batches[0]] == ["a", "b", "c"]

    def test_retry_budget_then_fresh_buffer(self, make_event, failing_client, clock, log_records):
        settings = event_settings(buffer_size=1, buffer_max_try=6, buffer_max_try_delay=0)
        pipeline = build_event_pipeline(settings, failing_client, clock=clock)
        dropped_before = sample("crate_sink_rows_dropped_total", pipeline="events")

        for i in range(7):
            pipeline.ingest(make_event(event_id=f"e{i}"))

        assert len(pipeline) == 0
        assert pipeline.controller.retry_count == 0
        assert sample("crate_sink_rows_dropped_total", pipeline="events") == dropped_before + 7
        assert any(r["level"].name == "ERROR" for r in log_records)

        pipeline.ingest(make_event(event_id="e7"))
        assert [r.id for r in failing_client.shipper.batches[-1]] == ["e7"]


class TestMetricPipeline:
    def test_metric_rows_buffered(self, make_metric, fake_client, clock):
        pipeline = build_metric_pipeline(metric_settings(source="dc1"), fake_client, clock=clock)
        output = "load.1min 0.42 1700000000\nbad line\nload.5min 0.50 1700000005"

        pipeline.ingest(make_metric(output))

        assert len(pipeline) == 2
        assert fake_client.shipper.calls == 0
        pipeline.shutdown()

        (batch,) = fake_client.shipper.batches
        assert [r.key for r in batch] == ["1min", "5min"]
        assert {r.source for r in batch} == {"dc1"}
        assert fake_client.tables == [("metrics", "sensu_metrics")]

    def test_default_capacity(self, fake_client, clock):
        pipeline = build_metric_pipeline(metric_settings(), fake_client, clock=clock)
        assert pipeline.controller.config.capacity == 5125


class TestShutdown:
    def test_shutdown_empty_is_noop(self, fake_client, clock):
        pipeline = build_event_pipeline(event_settings(), fake_client, clock=clock)
        pipeline.shutdown()
        pipeline.shutdown()
        assert fake_client.shipper.calls == 0

    def test_shutdown_twice_flushes_once(self, make_event, fake_client, clock):
        pipeline = build_event_pipeline(event_settings(), fake_client, clock=clock)
        pipeline.ingest(make_event())
        pipeline.shutdown()
        pipeline.shutdown()
        assert fake_client.shipper.calls == 1
        assert pipeline.state == FlushState.IDLE

    def test_shutdown_failure_not_retried(self, make_event, failing_client, clock):
        pipeline = build_event_pipeline(event_settings(), failing_client, clock=clock)
        pipeline.ingest(make_event())
        pipeline.shutdown()
        pipeline.shutdown()
        assert failing_client.shipper.calls == 1
        assert len(pipeline) == 0

    def test_context_manager_flushes(self, make_event, fake_client, clock):
        with build_event_pipeline(event_settings(), fake_client, clock=clock) as pipeline:
            pipeline.ingest(make_event())
        assert fake_client.shipper.calls == 1

    def test_owned_client_closed(self, monkeypatch):
        closed = []

        class StubClient:
            def __init__(self, config):
                self.config = config

            def ship_preset(self, kind, table, rows):
                raise AssertionError("not expected")

            def close(self):
                closed.append(True)

        monkeypatch.setattr("crate_sink.pipeline.CrateClient", StubClient)
        pipeline = build_event_pipeline(event_settings())
        pipeline.shutdown()
        pipeline.shutdown()
        assert closed == [True]


def test_concurrent_ingest_preserves_all_rows(make_event, fake_client, clock):
    pipeline = build_event_pipeline(event_settings(buffer_size=7), fake_client, clock=clock)

    def produce(prefix: str):
        for i in range(50):
            pipeline.ingest(make_event(event_id=f"{prefix}-{i}"))

    threads = [threading.Thread(target=produce, args=(p,)) for p in "abcd"]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    pipeline.shutdown()

    shipped = [r.id for batch in fake_client.shipper.batches for r in batch]
    assert len(shipped) == 200
    for p in "abcd":
        mine = [s for s in shipped if s.startswith(f"{p}-")]
        assert mine == [f"{p}-{i}" for i in range(50)]
