"""Shared fixtures: an in-memory cluster API and canned payloads."""

import copy

import pytest

from esdoctor.normalizer import RawPayloads, normalize

GB = 1024 ** 3

CPU_DUMP = "\n".join([
    "::: {node-a}{n1}{eph-1}{10.0.0.1}{10.0.0.1:9300}{dimr}",
    "   Hot threads at 2021-07-20T10:00:00.000Z, interval=500ms, busiestThreads=3, ignoreIdleThreads=true:",
    "",
    "   95.0% (475ms out of 500ms) cpu usage by thread 'elasticsearch[node-a][search][T#1]'",
    "     10/10 snapshots sharing following 2 elements",
    "       org.apache.lucene.search.IndexSearcher.search(IndexSearcher.java:445)",
    "       java.lang.Thread.run(Thread.java:829)",
    "",
    "::: {node-b}{n2}{eph-2}{10.0.0.2}{10.0.0.2:9300}{dr}",
    "   Hot threads at 2021-07-20T10:00:00.000Z, interval=500ms, busiestThreads=3, ignoreIdleThreads=true:",
    "",
    "   12.5% (62.5ms out of 500ms) cpu usage by thread 'elasticsearch[node-b][write][T#2]'",
    "     unique snapshot",
    "       org.elasticsearch.index.engine.InternalEngine.index(InternalEngine.java:920)",
    "",
])


def shard_copy(node, primary, state="STARTED", relocating_node=None):
    return {"state": state, "primary": primary, "node": node, "relocating_node": relocating_node}


def shard_stats(node, primary, docs, store, segments=None):
    return {
        "routing": {"state": "STARTED", "primary": primary, "node": node},
        "docs": {"count": docs},
        "store": {"size_in_bytes": store},
        "segments": segments or {"count": 1, "memory_in_bytes": 0},
    }


def node_stats(name, roles, total, free):
    return {"name": name, "roles": roles, "fs": {"total": {"total_in_bytes": total, "free_in_bytes": free}}}


def cluster_responses():
    """
    Three nodes (n1=node-b, n2=node-a, n3=node-c master only) and two indices:
    orders (2 shards, 1 replica, one replica unassigned) and logs (1 shard, 0 replicas).
    """
    return {
        "/": {"name": "node-b", "version": {"number": "7.13.3"}},
        "_cluster/health": {"cluster_name": "test", "status": "yellow"},
        "_cluster/state/routing_table": {
            "routing_table": {"indices": {
                "orders": {"shards": {
                    "0": [shard_copy("n1", True), shard_copy("n2", False)],
                    "1": [shard_copy("n2", True), shard_copy(None, False, "UNASSIGNED")],
                }},
                "logs": {"shards": {
                    "0": [shard_copy("n1", True)],
                }},
            }},
        },
        "_settings": {
            "orders": {"settings": {"index": {"number_of_replicas": "1", "number_of_shards": "2"}}},
            "logs": {"settings": {"index": {"number_of_replicas": "0", "number_of_shards": "1"}}},
        },
        "_stats": {"indices": {
            "orders": {
                "total": {"docs": {"count": 300}},
                "shards": {
                    # replica listed first: matching must go by node, not by position
                    "0": [shard_stats("n2", False, 100, 2000), shard_stats("n1", True, 100, 1000)],
                    "1": [shard_stats("n2", True, 50, 500)],
                },
            },
            "logs": {
                "total": {"docs": {"count": 10}},
                "shards": {"0": [shard_stats("n1", True, 10, 100, {
                    "count": 3, "memory_in_bytes": 600, "terms_memory_in_bytes": 400, "norms_memory_in_bytes": 200,
                })]},
            },
        }},
        "_nodes/stats": {"nodes": {
            "n1": node_stats("node-b", ["data", "master", "ingest"], 100 * GB, 60 * GB),
            "n2": node_stats("node-a", ["data_hot", "data_content"], 100 * GB, 50 * GB),
            "n3": node_stats("node-c", ["master"], 20 * GB, 19 * GB),
        }},
        "_cluster/stats": {"cluster_name": "test", "indices": {"count": 2}},
        "_tasks": {"tasks": {
            "n1:1": {
                "node": "n1", "id": 1, "action": "indices:data/read/search", "description": "search orders",
                "running_time_in_nanos": 10 * 60 * 10 ** 9, "cancellable": True,
                "children": [
                    {"node": "n2", "id": 7, "action": "indices:data/read/search[phase/query]",
                     "running_time_in_nanos": 10 ** 9, "parent_task_id": "n1:1"},
                ],
            },
        }},
        "_cluster/pending_tasks": {"tasks": []},
    }


class FakeClient:
    """In-memory stand-in for ElasticsearchClient."""

    endpoint = "http://fake:9200"

    def __init__(self, responses=None, texts=None):
        self.responses = responses if responses is not None else cluster_responses()
        self.texts = texts if texts is not None else {"cpu": CPU_DUMP}
        self.calls = []

    def get(self, path, params=None, cancel_event=None):
        self.calls.append(path)
        value = self.responses[path]
        if isinstance(value, Exception):
            raise value
        return copy.deepcopy(value)

    def get_text(self, path, params=None, cancel_event=None):
        self.calls.append(f"{path}?type={params['type']}")
        value = self.texts[params["type"]]
        if isinstance(value, Exception):
            raise value
        return value() if callable(value) else value


def payloads_from(responses, hot_threads=None):
    from esdoctor.models import ESVersion

    return RawPayloads(
        version=ESVersion.parse(responses["/"]["version"]["number"]),
        cluster_health=responses["_cluster/health"],
        cluster_state=responses["_cluster/state/routing_table"],
        indices_settings=responses["_settings"],
        indices_stats=responses["_stats"],
        nodes_stats=responses["_nodes/stats"],
        cluster_stats=responses["_cluster/stats"],
        tasks=responses["_tasks"],
        pending_tasks=responses["_cluster/pending_tasks"],
        **({"hot_threads": hot_threads} if hot_threads is not None else {}),
    )


@pytest.fixture
def responses():
    return cluster_responses()


@pytest.fixture
def fake_client():
    return FakeClient()


@pytest.fixture
def graph(responses):
    return normalize(payloads_from(responses))


class Recorder:
    """Collects (code, message) pairs emitted by checks."""

    def __init__(self):
        self.comments = []

    def __call__(self, code, message):
        self.comments.append((code, message))

    def codes(self):
        return [code for code, _ in self.comments]

    def with_code(self, code):
        return [message for c, message in self.comments if c == code]


@pytest.fixture
def recorder():
    return Recorder()
