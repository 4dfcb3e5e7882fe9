"""Tests for the poll scheduler."""

import pytest
from datetime import datetime, timezone

from liquidcache_admin.client.base import TransportNetworkError, TransportTimeout
from liquidcache_admin.console.store import ViewStateStore
from liquidcache_admin.console.workers import PollScheduler, StreamPhase
from liquidcache_admin.data.models import FragmentSet, ViewStatus
from liquidcache_admin.data.reconcile import Reconciler


class Engine:
    """Scheduler, reconciler and store wired the way the console wires them."""

    def __init__(self, clock, executor, transport, config):
        self.clock = clock
        self.executor = executor
        self.store = ViewStateStore(
            dispatch=clock.call_soon,
            on_stream_opened=lambda name: self.scheduler.open(name),
            on_stream_closed=lambda name: self.scheduler.close(name),
            lock=clock.lock,
        )
        self.reconciler = Reconciler(
            self.store,
            now_fn=lambda: datetime.fromtimestamp(clock.time(), tz=timezone.utc),
            removal_debounce=config.reconcile.removal_debounce,
            stale_after_failures=config.poll.stale_after_failures,
        )
        self.scheduler = PollScheduler(clock, executor, transport, self.reconciler, config.poll)

    def subscribe(self, name):
        views = []
        sub = self.store.subscribe(name, views.append)
        return sub, views

    def complete(self, index=0):
        """Let one queued fetch finish and process its completion."""
        self.executor.run(index)
        self.clock.run_ready()

    def poll_once(self, name):
        """Wait out the armed timer of a stream and finish the fetch it starts."""
        self.clock.advance(self.scheduler.get(name).scheduled_delay)
        self.complete()


@pytest.fixture
def engine(clock, executor, transport, config):
    return Engine(clock, executor, transport, config)


def _down():
    return TransportNetworkError("/overview", "connection refused")


class TestStreamLifecycle:
    def test_first_timer_armed_at_base_interval(self, engine, clock):
        engine.subscribe("overview")
        assert clock.pending_delays() == [5.0]
        assert engine.scheduler.get("overview").phase == StreamPhase.SCHEDULED

    def test_node_detail_without_subscribers_never_schedules(self, engine, clock):
        engine.subscribe("overview")
        engine.scheduler.set_interval("node-detail:n1", 3.0)
        assert engine.scheduler.get("node-detail:n1") is None
        assert clock.pending_delays() == [5.0]

        clock.advance(60)
        assert engine.scheduler.streams() == ["overview"]

    def test_node_detail_interval_override_applies_on_open(self, engine, clock):
        engine.scheduler.set_interval("node-detail:n1", 3.0)
        engine.subscribe("node-detail:n1")
        assert clock.pending_delays() == [3.0]

    def test_set_interval_rearms_live_stream(self, engine, clock):
        engine.subscribe("node-detail:n1")
        assert clock.pending_delays() == [10.0]
        engine.scheduler.set_interval("node-detail:n1", 2.0)
        assert clock.pending_delays() == [2.0]

    @pytest.mark.parametrize("name,seconds", [("overview", 1.0), ("fragments", 1.0), ("node-detail:n1", 0)])
    def test_set_interval_rejected(self, engine, name, seconds):
        with pytest.raises(ValueError):
            engine.scheduler.set_interval(name, seconds)

    def test_last_unsubscribe_terminates(self, engine, clock):
        sub, _ = engine.subscribe("overview")
        stream = engine.scheduler.get("overview")
        sub.close()
        assert stream.phase == StreamPhase.TERMINATED
        assert engine.scheduler.get("overview") is None
        assert clock.pending_count == 0

    def test_in_flight_completion_discarded_after_termination(self, engine, clock, executor, transport, sample_overview):
        transport.script("/overview", sample_overview)
        sub, views = engine.subscribe("overview")
        clock.advance(5)
        assert executor.pending == 1

        sub.close()
        engine.complete()
        assert engine.store.get("overview") is None
        assert len(views) == 1
        assert clock.pending_count == 0

    def test_sequence_numbers_survive_recreation(self, engine, clock, executor, transport, sample_overview):
        transport.script("/overview", sample_overview)
        sub, _ = engine.subscribe("overview")
        clock.advance(5)
        sub.close()

        _, views = engine.subscribe("overview")
        # Finishes the abandoned fetch first, then the new stream's own fetch
        engine.poll_once("overview")
        engine.complete()

        assert engine.store.get("overview").seq == 2
        assert views[-1].seq == 2

    def test_stop_all(self, engine, clock):
        engine.subscribe("overview")
        engine.subscribe("fragments")
        engine.scheduler.stop_all()
        assert engine.scheduler.streams() == []
        assert clock.pending_count == 0


class TestPolling:
    def test_success_publishes_and_rearms(self, engine, clock, transport, sample_overview):
        transport.script("/overview", sample_overview)
        _, views = engine.subscribe("overview")
        engine.poll_once("overview")

        assert views[-1].status == ViewStatus.OK
        assert views[-1].seq == 1
        stream = engine.scheduler.get("overview")
        assert stream.phase == StreamPhase.SCHEDULED
        assert stream.scheduled_delay == 5.0
        assert stream.last_success_at == clock.time()

    def test_request_timeout_passed_to_transport(self, engine, clock, transport, config, sample_overview):
        transport.script("/overview", sample_overview)
        engine.subscribe("overview")
        engine.poll_once("overview")
        assert transport.calls == [("/overview", None, config.poll.request_timeout)]

    def test_node_and_fragment_endpoints(self, engine, transport, config, node, fragment):
        config.poll.fragment_query = "q7"
        transport.script("/nodes/n%2F1", node("n/1"))
        transport.script("/fragments", [fragment("f1")])
        engine.subscribe("node-detail:n/1")
        engine.subscribe("fragments")

        engine.poll_once("node-detail:n/1")
        engine.poll_once("fragments")
        assert transport.calls[0][0] == "/nodes/n%2F1"
        assert transport.calls[1][:2] == ("/fragments", {"query": "q7"})

    def test_backoff_delays(self, engine, clock, transport, sample_overview):
        transport.script("/overview", _down())
        engine.subscribe("overview")
        stream = engine.scheduler.get("overview")

        delays = []
        for _ in range(4):
            delays.append(stream.scheduled_delay)
            engine.poll_once("overview")
        assert delays == [5.0, 10.0, 20.0, 20.0]
        assert stream.consecutive_failures == 4
        assert stream.phase == StreamPhase.BACKOFF

        transport.script("/overview", sample_overview)
        engine.poll_once("overview")
        assert stream.consecutive_failures == 0
        assert stream.scheduled_delay == 5.0

    def test_payload_error_counts_as_failure(self, engine, transport):
        transport.script("/overview", {"nodes": []})
        _, views = engine.subscribe("overview")
        engine.poll_once("overview")

        stream = engine.scheduler.get("overview")
        assert stream.consecutive_failures == 1
        assert stream.scheduled_delay == 10.0
        assert views[-1].status == ViewStatus.UNAVAILABLE
        assert "timestamp" in views[-1].last_error

    def test_overflowing_counter_counts_as_failure(self, engine, transport, node, overview):
        body = overview([node("a")], aggregate=None)
        body["nodes"][0]["hits"] = float("inf")
        transport.script("/overview", body)
        _, views = engine.subscribe("overview")
        engine.poll_once("overview")

        stream = engine.scheduler.get("overview")
        assert stream.phase == StreamPhase.BACKOFF
        assert stream.consecutive_failures == 1
        assert stream.scheduled_delay == 10.0
        assert views[-1].status == ViewStatus.UNAVAILABLE

    def test_unexpected_reconcile_error_keeps_stream_polling(
        self, engine, clock, transport, monkeypatch, sample_overview
    ):
        transport.script("/overview", sample_overview)
        _, views = engine.subscribe("overview")

        def explode(name, seq, payload):
            raise RuntimeError("reconciler bug")

        monkeypatch.setattr(engine.reconciler, "apply_success", explode)
        engine.poll_once("overview")

        stream = engine.scheduler.get("overview")
        assert stream.phase == StreamPhase.BACKOFF
        assert stream.in_flight == set()
        assert clock.pending_delays() == [10.0]
        assert views[-1].last_error == "reconciler bug"

        monkeypatch.undo()
        engine.poll_once("overview")
        assert views[-1].status == ViewStatus.OK

    def test_stale_after_failures_keeps_last_good_data(self, engine, transport, sample_overview):
        transport.script("/overview", sample_overview)
        _, views = engine.subscribe("overview")
        engine.poll_once("overview")
        good = views[-1].data

        transport.script("/overview", TransportTimeout("/overview", "no response"))
        for _ in range(3):
            engine.poll_once("overview")

        assert views[-1].data is good
        assert views[-1].status == ViewStatus.STALE
        assert views[-1].consecutive_failures == 3

    def test_tick_dropped_while_in_flight(self, engine, clock, executor, transport, sample_overview):
        transport.script("/overview", sample_overview)
        engine.subscribe("overview")
        clock.advance(1)
        assert engine.scheduler.refresh("overview")
        assert executor.pending == 1

        clock.advance(4)
        assert executor.pending == 1
        assert clock.pending_count == 0

        engine.complete()
        assert clock.pending_delays() == [5.0]

    def test_refresh_unknown_stream(self, engine):
        assert not engine.scheduler.refresh("overview")

    def test_out_of_order_completions_never_regress(self, engine, clock, executor, transport, node, overview):
        newer = overview([node("a", used=2)], timestamp="2026-01-22T12:00:10Z")
        older = overview([node("a", used=1)], timestamp="2026-01-22T12:00:05Z")
        transport.script("/overview", newer, older)
        _, views = engine.subscribe("overview")

        clock.advance(5)  # seq 1
        engine.scheduler.refresh("overview")  # seq 2
        executor.run(1)  # seq 2 answers first, with the newer body
        executor.run(0)  # seq 1 answers last, with the older body
        clock.run_ready()

        view = engine.store.get("overview")
        assert view.seq == 2
        assert view.data.node("a").used_bytes == 2
        assert all(v.seq in (0, 2) for v in views)

    def test_superseded_failure_does_not_count(self, engine, clock, executor, transport, sample_overview):
        transport.script("/overview", sample_overview, _down())
        engine.subscribe("overview")
        clock.advance(5)  # seq 1
        engine.scheduler.refresh("overview")  # seq 2

        executor.run(1)  # seq 2 succeeds
        executor.run(0)  # seq 1 fails
        clock.run_ready()

        stream = engine.scheduler.get("overview")
        assert stream.consecutive_failures == 0
        assert engine.store.get("overview").status == ViewStatus.OK

    def test_second_subscriber_receives_result_after_first_leaves(self, engine, clock, executor, transport, fragment):
        transport.script("/fragments", [fragment("f1")])
        first, _ = engine.subscribe("fragments")
        _, views = engine.subscribe("fragments")

        clock.advance(15)
        assert executor.pending == 1
        first.close()
        engine.complete()

        assert isinstance(views[-1].data, FragmentSet)
        assert views[-1].data.ids == ("f1",)
        assert engine.scheduler.get("fragments").phase == StreamPhase.SCHEDULED

    def test_system_info_stream(self, engine, transport, config, system_info):
        transport.script("/system_info", system_info())
        _, views = engine.subscribe("system-info")
        assert engine.scheduler.get("system-info").scheduled_delay == config.poll.system_info_interval

        engine.poll_once("system-info")
        assert transport.calls[-1][0] == "/system_info"
        assert views[-1].status == ViewStatus.OK
        assert views[-1].data.host_name == "cache-host-1"
        assert views[-1].data.memory_percent == 25.0

    def test_execution_plans_stream(self, engine, transport, config, plan_entry):
        transport.script(
            "/execution_plans",
            [plan_entry("plan-old", 1_768_996_000), plan_entry("plan-new", 1_768_996_700)],
        )
        _, views = engine.subscribe("execution-plans")
        assert engine.scheduler.get("execution-plans").scheduled_delay == config.poll.execution_plans_interval

        engine.poll_once("execution-plans")
        assert transport.calls[-1][0] == "/execution_plans"
        assert [p.plan_id for p in views[-1].data] == ["plan-new", "plan-old"]

    def test_unparseable_plan_listing_backs_off(self, engine, transport):
        transport.script("/execution_plans", [["p1", "{not json"]])
        _, views = engine.subscribe("execution-plans")
        engine.poll_once("execution-plans")

        assert engine.scheduler.get("execution-plans").phase == StreamPhase.BACKOFF
        assert "embedded JSON" in views[-1].last_error
