"""Pytest configuration and shared fixtures."""

import json
from concurrent.futures import Executor, Future
from pathlib import Path
from tempfile import TemporaryDirectory

import pytest

from liquidcache_admin.client.base import Ack, BaseTransport
from liquidcache_admin.console.clock import ManualClock
from liquidcache_admin.console.config import Config


class DeferredExecutor(Executor):
    """Executor whose jobs only run when a test says so."""

    def __init__(self):
        self.jobs = []  # (future, fn, args, kwargs)
        self.shut_down = False

    def submit(self, fn, *args, **kwargs):
        future = Future()
        self.jobs.append((future, fn, args, kwargs))
        return future

    @property
    def pending(self):
        return len(self.jobs)

    def run(self, index=0):
        """Run one queued job (oldest by default) and settle its future."""
        future, fn, args, kwargs = self.jobs.pop(index)
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as exc:
            future.set_exception(exc)
        return future

    def run_all(self):
        while self.jobs:
            self.run()

    def shutdown(self, wait=True, *, cancel_futures=False):
        self.shut_down = True


class FakeTransport(BaseTransport):
    """Transport answering from per-endpoint scripts.

    Each script is a list of replies; the last reply repeats. A reply that is
    an exception instance is raised.
    """

    def __init__(self):
        self.responses = {}
        self.command_replies = []
        self.calls = []
        self.commands = []
        self.closed = False

    def script(self, endpoint, *replies):
        self.responses[endpoint] = list(replies)

    def _next(self, replies):
        reply = replies.pop(0) if len(replies) > 1 else replies[0]
        if isinstance(reply, Exception):
            raise reply
        return reply

    def fetch(self, endpoint, params=None, timeout=None):
        self.calls.append((endpoint, params, timeout))
        if endpoint not in self.responses:
            raise KeyError(f"no scripted reply for {endpoint}")
        return self._next(self.responses[endpoint])

    def submit_command(self, command, timeout=None):
        self.commands.append(command)
        if not self.command_replies:
            return Ack(True, "")
        return self._next(self.command_replies)

    def close(self):
        self.closed = True


def make_node(node_id, capacity=1000, used=100, hits=0, misses=0, evictions=0, last_seen=None):
    node = {
        "id": node_id,
        "capacity_bytes": capacity,
        "used_bytes": used,
        "hits": hits,
        "misses": misses,
        "evictions": evictions,
    }
    if last_seen is not None:
        node["last_seen"] = last_seen
    return node


def make_overview(nodes, timestamp="2026-01-22T12:00:00Z", aggregate="sum"):
    """Overview body; aggregate='sum' fills in the node sums, None omits it."""
    body = {"timestamp": timestamp, "nodes": nodes}
    if aggregate == "sum":
        body["aggregate"] = {
            key: sum(n.get(key, 0) for n in nodes) for key in ("hits", "misses", "evictions")
        }
    elif aggregate is not None:
        body["aggregate"] = aggregate
    return body


def make_fragment(fragment_id, query_id="q1", size=64):
    return {"id": fragment_id, "query_id": query_id, "size_bytes": size}


def make_system_info(host_name="cache-host-1", used=8 * 1024 ** 3, total=32 * 1024 ** 3):
    return {
        "name": "Ubuntu",
        "kernel": "6.8.0",
        "os": "Linux 24.04 Ubuntu",
        "host_name": host_name,
        "cpu_cores": 16,
        "total_memory_bytes": total,
        "used_memory_bytes": used,
        "server_resident_memory_bytes": 512 * 1024 ** 2,
        "server_virtual_memory_bytes": 2 * 1024 ** 3,
    }


def make_plan_node(name, children=(), metrics=None):
    """Plan operator as the service encodes it: children are JSON strings."""
    return {
        "name": name,
        "schema": [{"name": "id", "data_type": "Int64"}],
        "metrics": metrics or {},
        "children": [json.dumps(child) for child in children],
    }


def make_plan_entry(plan_id, created_at, root=None, stats=None):
    """One (plan id, JSON document) pair of the execution plan listing."""
    document = {
        "plan": json.dumps(root or make_plan_node("ProjectionExec")),
        "id": plan_id,
        "created_at": created_at,
        "stats": None if stats is None else json.dumps(stats),
    }
    return [plan_id, json.dumps(document)]


@pytest.fixture
def temp_data_dir():
    """Create a temporary data directory for tests."""
    with TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def clock():
    return ManualClock(start=1_768_996_800.0)  # 2026-01-21T12:00:00Z


@pytest.fixture
def executor():
    return DeferredExecutor()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def config():
    config = Config()
    config.poll.overview_interval = 5.0
    config.poll.node_detail_interval = 10.0
    config.poll.fragments_interval = 15.0
    config.poll.backoff_ceiling = 4
    return config


@pytest.fixture
def node():
    return make_node


@pytest.fixture
def overview():
    return make_overview


@pytest.fixture
def fragment():
    return make_fragment


@pytest.fixture
def sample_overview():
    """Consistent two-node overview body."""
    return make_overview(
        [
            make_node("node-b", capacity=2048, used=1024, hits=30, misses=10, evictions=2,
                      last_seen="2026-01-22T11:59:50Z"),
            make_node("node-a", capacity=4096, used=512, hits=70, misses=20, evictions=3,
                      last_seen="2026-01-22T11:59:30Z"),
        ]
    )


@pytest.fixture
def system_info():
    return make_system_info


@pytest.fixture
def plan_entry():
    return make_plan_entry


@pytest.fixture
def plan_node():
    return make_plan_node
