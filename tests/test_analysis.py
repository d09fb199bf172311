"""Tests for the diagnostic checks."""

import pytest

from esdoctor import analysis
from esdoctor.analysis import (
    CheckError, check_cluster_health, check_disk_sizes, check_hot_threads, check_pending_tasks,
    check_replicas, check_segments_memory, check_shard_states, check_storage_balance, check_tasks,
    check_version, run_checks, shards_frame,
)
from esdoctor.hotthreads import parse
from esdoctor.models import HotThreadsGroup
from esdoctor.normalizer import normalize
from tests.conftest import CPU_DUMP, GB, cluster_responses, node_stats, payloads_from, shard_copy


def graph_from(responses, hot_threads=None):
    return normalize(payloads_from(responses, hot_threads))


def red_cluster():
    """orders has 5 primaries with 2 unassigned; logs is fully allocated."""
    responses = cluster_responses()
    responses["_cluster/health"]["status"] = "red"
    copies = [[shard_copy("n1", True)] for _ in range(3)] + [[shard_copy(None, True, "UNASSIGNED")] for _ in range(2)]
    responses["_cluster/state/routing_table"]["routing_table"]["indices"]["orders"] = {
        "shards": {str(i): c for i, c in enumerate(copies)},
    }
    return responses


def with_data_nodes(responses, used_gb, total_gb=100):
    responses["_nodes/stats"]["nodes"] = {
        f"n{i}": node_stats(f"node-{i}", ["data"], total_gb * GB, (total_gb - used) * GB)
        for i, used in enumerate(used_gb, start=1)
    }
    return responses


class TestShardsFrame:
    def test_columns_and_rows(self, graph):
        frame = shards_frame(graph)
        assert list(frame.columns) == analysis.SHARD_COLUMNS
        assert len(frame) == len(graph.shards)
        assert frame["active"].sum() == 4


class TestVersion:
    def test_reports_version(self, graph, recorder):
        check_version(graph, recorder)
        assert recorder.comments == [("I001", "Elasticsearch version is 7.13.3")]

    def test_missing_version(self, recorder):
        graph = normalize(payloads_from(cluster_responses()).model_copy(update={"version": None}))
        with pytest.raises(CheckError):
            check_version(graph, recorder)


class TestClusterHealth:
    """Status comments and the indices missing shards."""

    def test_green(self, responses, recorder):
        responses["_cluster/health"]["status"] = "green"
        check_cluster_health(graph_from(responses), recorder)
        assert recorder.codes() == ["S010"]
        assert "2 indices and 5 shards" in recorder.comments[0][1]

    def test_red_lists_missing_primaries(self, recorder):
        check_cluster_health(graph_from(red_cluster()), recorder)
        assert recorder.codes() == ["W011"]
        message = recorder.comments[0][1]
        assert "orders (2 of 5)" in message
        assert "logs" not in message

    def test_red_sorts_by_missing_then_name(self, recorder):
        responses = red_cluster()
        responses["_cluster/state/routing_table"]["routing_table"]["indices"]["logs"] = {
            "shards": {"0": [shard_copy(None, True, "UNASSIGNED")]},
        }
        responses["_cluster/state/routing_table"]["routing_table"]["indices"]["alerts"] = {
            "shards": {"0": [shard_copy(None, True, "INITIALIZING")]},
        }
        check_cluster_health(graph_from(responses), recorder)
        message = recorder.with_code("W011")[0]
        assert message.endswith("3 indices are missing primary shards: orders (2 of 5), alerts (1 of 1), logs (1 of 1)")

    def test_yellow_lists_missing_replicas(self, graph, recorder):
        check_cluster_health(graph, recorder)
        assert recorder.codes() == ["W012"]
        assert recorder.comments[0][1].endswith("1 indices are missing replica shards: orders (1 of 2)")

    def test_unknown_status_is_a_failure(self, responses, recorder):
        responses["_cluster/health"]["status"] = "purple"
        with pytest.raises(CheckError, match="purple"):
            check_cluster_health(graph_from(responses), recorder)
        assert recorder.comments == []


class TestReplicas:
    """Replica settings per index and their distribution."""

    def test_fixture_cluster(self, graph, recorder):
        check_replicas(graph, recorder)
        assert recorder.codes() == ["W020", "I022", "S023", "S023"]
        assert recorder.with_code("W020")[0].startswith("Index logs has no replicas: it lives in 1/3 of the nodes (33.3%)")
        assert recorder.with_code("I022")[0] == "Index orders has 1 replica(s) and lives in 2/3 of the nodes (66.7%)"
        assert recorder.with_code("S023") == [
            "1 of 2 indices (50.0%) have 0 replica(s)",
            "1 of 2 indices (50.0%) have 1 replica(s)",
        ]

    def test_presence_counts_every_node(self, responses, recorder):
        responses["_nodes/stats"]["nodes"]["n4"] = node_stats("node-d", ["master"], 20 * GB, 19 * GB)
        check_replicas(graph_from(responses), recorder)
        assert "lives in 1/2 of the nodes (50.0%)" in recorder.with_code("I022")[0]

    def test_zero_replicas_as_string(self, responses, recorder):
        responses["_settings"]["orders"]["settings"]["index"]["number_of_replicas"] = "0"
        check_replicas(graph_from(responses), recorder)
        assert recorder.codes().count("W020") == 2
        assert recorder.with_code("S023") == ["2 of 2 indices (100.0%) have 0 replica(s)"]

    def test_many_replicas_is_an_advice(self, responses, recorder):
        responses["_settings"]["orders"]["settings"]["index"]["number_of_replicas"] = "3"
        check_replicas(graph_from(responses), recorder)
        assert "A021" in recorder.codes()
        assert "I022" not in recorder.codes()

    def test_unreadable_replicas(self, responses, recorder):
        responses["_settings"]["orders"]["settings"]["index"]["number_of_replicas"] = "many"
        with pytest.raises(CheckError, match="orders"):
            check_replicas(graph_from(responses), recorder)
        assert recorder.codes() == ["W020", "S023"]

    def test_missing_setting(self, responses, recorder):
        del responses["_settings"]["logs"]
        with pytest.raises(CheckError, match="logs"):
            check_replicas(graph_from(responses), recorder)
        assert recorder.codes() == ["I022", "S023"]
        assert recorder.with_code("S023") == ["1 of 1 indices (100.0%) have 1 replica(s)"]

    def test_index_without_settings_does_not_hide_others(self, responses, recorder):
        responses["_settings"]["aaa"] = {"settings": {"index": {}}}
        with pytest.raises(CheckError, match="aaa"):
            check_replicas(graph_from(responses), recorder)
        assert recorder.codes() == ["W020", "I022", "S023", "S023"]
        assert recorder.with_code("W020")[0].startswith("Index logs has no replicas")

    def test_no_indices(self, recorder):
        responses = cluster_responses()
        responses["_settings"] = {}
        responses["_stats"] = {"indices": {}}
        responses["_cluster/state/routing_table"] = {"routing_table": {"indices": {}}}
        check_replicas(graph_from(responses), recorder)
        assert recorder.comments == []


class TestShardStates:
    """Per shard details and the state distribution."""

    def test_fixture_cluster(self, graph, recorder):
        check_shard_states(graph, recorder)
        assert recorder.codes().count("I030") == 5
        assert recorder.with_code("W031") == ["Shard orders[1][r] on no node is UNASSIGNED"]
        assert recorder.with_code("S032") == [
            "4 of 5 shards (80.0%) are STARTED",
            "1 of 5 shards (20.0%) are UNASSIGNED",
        ]

    def test_shard_details(self, graph, recorder):
        check_shard_states(graph, recorder)
        first = recorder.with_code("I030")[0]
        assert first == ("Shard orders[0][p] on node node-b is STARTED: 100 docs, 1000b (10b per doc), "
                         "1 segments using 0b of memory")

    def test_relocating_target_is_reported(self, responses, recorder):
        responses["_cluster/state/routing_table"]["routing_table"]["indices"]["logs"]["shards"]["0"] = [
            shard_copy("n1", True, "RELOCATING", relocating_node="n2"),
        ]
        check_shard_states(graph_from(responses), recorder)
        assert "Shard logs[0][p] on node node-b is RELOCATING, relocating to n2" in recorder.with_code("W031")

    def test_unknown_state_is_a_failure(self, responses, recorder):
        responses["_cluster/state/routing_table"]["routing_table"]["indices"]["logs"]["shards"]["0"][0]["state"] = "LOST"
        with pytest.raises(CheckError, match="LOST"):
            check_shard_states(graph_from(responses), recorder)
        assert recorder.comments == []


class TestStorageBalance:
    """Disk usage distribution across data nodes."""

    def test_distribution_summary(self, graph, recorder):
        check_storage_balance(graph, recorder)
        assert recorder.codes() == ["S040"]
        assert recorder.comments[0][1].startswith("Disk usage across 2 data nodes: min=40.0gb, p10=40.0gb")
        assert recorder.comments[0][1].endswith("max=50.0gb")

    def test_nodes_outside_the_band(self, recorder):
        graph = graph_from(with_data_nodes(cluster_responses(), [10, 10, 10, 10, 20, 5]))
        check_storage_balance(graph, recorder)
        warnings = recorder.with_code("W041")
        assert len(warnings) == 2
        assert warnings[0].startswith("Node node-5 uses 20.0gb of disk (+100.0%), above")
        assert warnings[1].startswith("Node node-6 uses 5.0gb of disk (-50.0%), below")

    def test_balanced(self, recorder):
        graph = graph_from(with_data_nodes(cluster_responses(), [10, 11, 9, 10]))
        check_storage_balance(graph, recorder)
        assert recorder.codes() == ["S040"]

    def test_no_data_nodes(self, responses, recorder):
        responses["_nodes/stats"]["nodes"] = {"n3": node_stats("node-c", ["master"], GB, GB)}
        check_storage_balance(graph_from(responses), recorder)
        assert recorder.comments == []


class TestDiskSizes:
    def test_homogeneous(self, responses, recorder):
        responses["_nodes/stats"]["nodes"]["n3"] = node_stats("node-c", ["master"], 100 * GB, 99 * GB)
        check_disk_sizes(graph_from(responses), recorder)
        assert recorder.comments == []

    def test_master_only_node_counts(self, graph, recorder):
        check_disk_sizes(graph, recorder)
        assert recorder.with_code("W042") == [
            "Nodes have 2 different disk sizes: 2 nodes with 100.0gb, 1 nodes with 20.0gb",
        ]

    def test_heterogeneous(self, responses, recorder):
        responses["_nodes/stats"]["nodes"]["n2"] = node_stats("node-a", ["data"], 200 * GB, 100 * GB)
        check_disk_sizes(graph_from(responses), recorder)
        assert recorder.with_code("W042") == [
            "Nodes have 3 different disk sizes: 1 nodes with 20.0gb, 1 nodes with 100.0gb, 1 nodes with 200.0gb",
        ]


class TestSegmentsMemory:
    def test_breakdown(self, graph, recorder):
        check_segments_memory(graph, recorder)
        assert recorder.with_code("S050") == [
            "Segments use 600b of memory across 4 shards: terms 400b (66.7%), norms 200b (33.3%)",
        ]

    def test_no_memory(self, responses, recorder):
        del responses["_stats"]["indices"]["logs"]
        check_segments_memory(graph_from(responses), recorder)
        assert recorder.with_code("S050") == ["Segments of 3 shards are not using any memory"]


class TestHotThreads:
    def test_cpu_summary_and_warnings(self, responses, recorder):
        group = HotThreadsGroup(cpu=parse(CPU_DUMP))
        check_hot_threads(graph_from(responses, group), recorder)
        assert recorder.codes() == ["S060", "W061"]
        assert recorder.with_code("S060")[0] == (
            "Hottest cpu threads: elasticsearch[node-a][search][T#1] on node-a at 95.0%; "
            "elasticsearch[node-b][write][T#2] on node-b at 12.5%"
        )
        assert recorder.with_code("W061")[0].startswith(
            "Thread elasticsearch[node-a][search][T#1] on node node-a used 95.0% of cpu (475.0ms out of 500.0ms)"
        )

    def test_other_dimensions_do_not_warn(self, responses, recorder):
        block = parse(CPU_DUMP.replace(" cpu usage", " block usage"))
        check_hot_threads(graph_from(responses, HotThreadsGroup(block=block)), recorder)
        assert recorder.codes() == ["S060"]

    def test_empty_dump(self, responses, recorder):
        check_hot_threads(graph_from(responses, HotThreadsGroup(wait=parse(""))), recorder)
        assert recorder.comments == [("S060", "No wait hot threads were reported")]

    def test_nothing_collected(self, graph, recorder):
        check_hot_threads(graph, recorder)
        assert recorder.comments == []


class TestTasks:
    def test_long_running(self, graph, recorder):
        check_tasks(graph, recorder)
        assert recorder.with_code("S070") == ["2 tasks are running in the cluster: 1 root tasks and 1 child tasks"]
        assert recorder.with_code("W071") == [
            "Task n1:1 (indices:data/read/search) on node node-b has been running for 10.0 minutes "
            "with 1 child tasks: search orders",
        ]

    def test_no_tasks(self, responses, recorder):
        responses["_tasks"] = {"tasks": {}}
        check_tasks(graph_from(responses), recorder)
        assert recorder.comments == [("S070", "No tasks are running in the cluster")]


class TestPendingTasks:
    def test_empty_queue(self, graph, recorder):
        check_pending_tasks(graph, recorder)
        assert recorder.comments == [("I080", "The cluster has no pending tasks")]

    def test_queue(self, responses, recorder):
        responses["_cluster/pending_tasks"] = {"tasks": [
            {"priority": "URGENT", "time_in_queue_millis": 1500, "source": "create-index"},
            {"priority": "HIGH", "time_in_queue_millis": 200, "source": "shard-started"},
            {"priority": "HIGH", "time_in_queue_millis": 100, "source": "shard-started"},
        ]}
        check_pending_tasks(graph_from(responses), recorder)
        assert recorder.comments == [
            ("W081", "The cluster has 3 pending tasks (2 HIGH, 1 URGENT), the oldest waiting for 1.5s"),
        ]


class TestRunChecks:
    """Check orchestration."""

    def test_all_checks_on_fixture_cluster(self, graph, recorder):
        assert run_checks(graph, recorder) == 0
        assert recorder.codes()[0] == "I001"
        assert "W012" in recorder.codes()

    def test_failure_does_not_stop_other_checks(self, graph, recorder):
        def broken(graph, emit):
            raise RuntimeError("boom")

        def after(graph, emit):
            emit("I999", "still running")

        failures = run_checks(graph, recorder, checks=[broken, after, broken])
        assert failures == 2
        assert recorder.comments == [("I999", "still running")]

    def test_failures_are_logged(self, graph, recorder, caplog):
        def broken(graph, emit):
            raise CheckError("cannot read")

        run_checks(graph, recorder, checks=[broken])
        assert "Check broken failed: cannot read" in caplog.text
