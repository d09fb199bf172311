# esdoctor/analysis.py
import logging

import pandas as pd

from .config import (
    PERCENTILE_BUCKETS, STORAGE_TOLERANCE_PCT, HIGH_REPLICA_THRESHOLD,
    HOT_THREAD_USAGE_THRESHOLD, HOT_THREADS_TOP_N, LONG_RUNNING_TASK_MINUTES,
)
from .hotthreads import sort_by_usage
from .models import HotThreadsType, ShardState
from .stats import fraction, humanize_bytes, pct, percentiles

SHARD_COLUMNS = ['uid', 'index', 'shard', 'primary', 'state', 'active', 'node', 'docs', 'store']

log = logging.getLogger("esdoctor.analysis")


class CheckError(ValueError):
    """El chequeo no pudo interpretar sus datos (no es lo mismo que encontrar un problema)."""


class ChecksFailedError(Exception):
    def __init__(self, failures, diagnosis=None):
        super().__init__(f"{failures} checks failed")
        self.failures = failures
        self.diagnosis = diagnosis


def shards_frame(graph) -> pd.DataFrame:
    rows = [{
        'uid': s.uid, 'index': s.index, 'shard': s.id, 'primary': s.primary, 'state': s.state,
        'active': s.is_active, 'node': s.node_name, 'docs': s.docs_count, 'store': s.store_bytes,
    } for s in graph.shards]
    return pd.DataFrame(rows, columns=SHARD_COLUMNS)


# --- Chequeos ---
# Cada chequeo recibe el grafo (solo lectura) y `emit(code, message)`.

def check_version(graph, emit):
    if graph.version is None:
        raise CheckError("Elasticsearch version was not discovered")
    emit("I001", f"Elasticsearch version is {graph.version}")


def _missing_shards(graph, primary):
    """[(índice, copias no activas, copias totales)] ordenado por faltantes desc y nombre."""
    frame = shards_frame(graph)
    copies = frame[frame['primary'] == primary]
    if copies.empty:
        return []
    grouped = copies.groupby('index').agg(total=('uid', 'size'), active=('active', 'sum')).reset_index()
    grouped['missing'] = grouped['total'] - grouped['active']
    grouped = grouped[grouped['missing'] > 0].sort_values(by=['missing', 'index'], ascending=[False, True])
    return [(row['index'], int(row['missing']), int(row['total'])) for _, row in grouped.iterrows()]


def _format_missing(missing):
    return ", ".join(f"{index} ({count} of {total})" for index, count, total in missing)


def check_cluster_health(graph, emit):
    status = graph.cluster.health.get('status')
    if status == 'green':
        emit("S010", f"Cluster status is green: {len(graph.indices)} indices and {len(graph.shards)} shards are allocated")
    elif status == 'red':
        missing = _missing_shards(graph, primary=True)
        emit("W011", f"Cluster status is red: {len(missing)} indices are missing primary shards: {_format_missing(missing)}")
    elif status == 'yellow':
        missing = _missing_shards(graph, primary=False)
        emit("W012", f"Cluster status is yellow: {len(missing)} indices are missing replica shards: {_format_missing(missing)}")
    else:
        raise CheckError(f"unrecognized cluster status {status!r}")


def check_replicas(graph, emit):
    if not graph.indices:
        return
    if not graph.nodes:
        raise CheckError("cannot check replicas without any node")

    replicas_by_index = {}
    unreadable = []
    for index in sorted(graph.indices.values(), key=lambda i: i.name):
        try:
            replicas = index.number_of_replicas
        except (KeyError, ValueError) as e:
            log.warning(f"No se pudo leer number_of_replicas del índice {index.name}: {e!r}")
            unreadable.append(index.name)
            continue
        replicas_by_index[index.name] = replicas

        num, den, percent = fraction(len(index.nodes), len(graph.nodes))
        presence = f"{num}/{den} of the nodes ({percent:.1f}%)"
        if replicas == 0:
            emit("W020", f"Index {index.name} has no replicas: it lives in {presence} and losing any of them loses data")
        elif replicas > HIGH_REPLICA_THRESHOLD:
            emit("A021", f"Index {index.name} has {replicas} replicas and lives in {presence}: "
                         f"more than {HIGH_REPLICA_THRESHOLD} replicas is rarely needed, consider lowering it")
        else:
            emit("I022", f"Index {index.name} has {replicas} replica(s) and lives in {presence}")

    counts = pd.Series(replicas_by_index, dtype="int64").value_counts().sort_index()
    total = len(replicas_by_index)
    for replicas, count in counts.items():
        emit("S023", f"{count} of {total} indices ({pct(count, total):.1f}%) have {replicas} replica(s)")

    if unreadable:
        raise CheckError(f"cannot read the number of replicas of indices {', '.join(unreadable)}")


def check_shard_states(graph, emit):
    if not graph.shards:
        return
    known = {state.value for state in ShardState}
    for shard in graph.shards:
        if shard.state not in known:
            raise CheckError(f"unrecognized state {shard.state!r} for shard {shard.label}")

    for shard in graph.shards:
        where = f"node {shard.node_name}" if shard.node_name else "no node"
        avg_doc = shard.store_bytes / shard.docs_count if shard.docs_count else 0
        emit("I030", f"Shard {shard.label} on {where} is {shard.state}: {shard.docs_count} docs, "
                     f"{humanize_bytes(shard.store_bytes)} ({humanize_bytes(avg_doc)} per doc), "
                     f"{shard.segments_count} segments using {humanize_bytes(shard.segments_memory_bytes)} of memory")
        if shard.state != ShardState.STARTED.value:
            relocating = f", relocating to {shard.relocating_node}" if shard.relocating_node else ""
            emit("W031", f"Shard {shard.label} on {where} is {shard.state}{relocating}")

    counts = pd.Series([s.state for s in graph.shards]).value_counts()
    total = len(graph.shards)
    for state, count in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0])):
        emit("S032", f"{count} of {total} shards ({pct(count, total):.1f}%) are {state}")


def _percentile_label(i, buckets):
    if i == 0:
        return "min"
    if i == buckets:
        return "max"
    return f"p{i * 100 // buckets}"


def check_storage_balance(graph, emit):
    nodes = sorted(graph.data_nodes(), key=lambda n: n.name)
    if not nodes:
        return
    cuts = percentiles([n.disk_used_bytes for n in nodes], PERCENTILE_BUCKETS)
    distribution = ", ".join(f"{_percentile_label(i, PERCENTILE_BUCKETS)}={humanize_bytes(v)}" for i, v in enumerate(cuts))
    emit("S040", f"Disk usage across {len(nodes)} data nodes: {distribution}")

    median = cuts[PERCENTILE_BUCKETS // 2]
    tolerance = median * STORAGE_TOLERANCE_PCT / 100
    for node in nodes:
        used = node.disk_used_bytes
        if used > median + tolerance:
            direction = "above"
        elif used < median - tolerance:
            direction = "below"
        else:
            continue
        deviation = f" ({pct(used - median, median):+.1f}%)" if median else ""
        emit("W041", f"Node {node.name} uses {humanize_bytes(used)} of disk{deviation}, {direction} the "
                     f"±{STORAGE_TOLERANCE_PCT}% band around the median of {humanize_bytes(median)}")


def check_disk_sizes(graph, emit):
    nodes = list(graph.nodes.values())
    if not nodes:
        return
    counts = pd.Series([n.disk_total_bytes for n in nodes]).value_counts()
    if len(counts) > 1:
        distribution = ", ".join(f"{count} nodes with {humanize_bytes(size)}"
                                 for size, count in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0])))
        emit("W042", f"Nodes have {len(counts)} different disk sizes: {distribution}")


def check_segments_memory(graph, emit):
    breakdowns = [s.segments_memory_breakdown for s in graph.shards if s.stats]
    if not breakdowns:
        return
    totals = pd.DataFrame(breakdowns).fillna(0).sum()
    totals = totals.sort_index().sort_values(ascending=False, kind="stable")
    total = totals.sum()
    if not total:
        emit("S050", f"Segments of {len(breakdowns)} shards are not using any memory")
        return
    parts = ", ".join(f"{category} {humanize_bytes(value)} ({pct(value, total):.1f}%)" for category, value in totals.items())
    emit("S050", f"Segments use {humanize_bytes(total)} of memory across {len(breakdowns)} shards: {parts}")


def check_hot_threads(graph, emit):
    for dimension, hot_threads in graph.hot_threads.collected():
        hottest = list(reversed(sort_by_usage(hot_threads)))
        if not hottest:
            emit("S060", f"No {dimension} hot threads were reported")
            continue

        def node_name(hot_node):
            node = graph.find_node(hot_node.id)
            return node.name if node else hot_node.id

        top = "; ".join(f"{t.name} on {node_name(n)} at {t.usage_percent:.1f}%" for n, t in hottest[:HOT_THREADS_TOP_N])
        emit("S060", f"Hottest {dimension} threads: {top}")
        if dimension != HotThreadsType.CPU.value:
            continue
        for hot_node, thread in hottest:
            if thread.usage_percent < HOT_THREAD_USAGE_THRESHOLD:
                break
            emit("W061", f"Thread {thread.name} on node {node_name(hot_node)} used {thread.usage_percent:.1f}% of cpu "
                         f"({thread.time_ns / 1e6:.1f}ms out of {thread.interval_ns / 1e6:.1f}ms)")


def check_tasks(graph, emit):
    if not graph.tasks:
        emit("S070", "No tasks are running in the cluster")
        return
    roots = graph.root_tasks()
    emit("S070", f"{len(graph.tasks)} tasks are running in the cluster: {len(roots)} root tasks and "
                 f"{len(graph.tasks) - len(roots)} child tasks")

    threshold_ns = LONG_RUNNING_TASK_MINUTES * 60e9
    slow = sorted((t for t in graph.tasks.values() if t.running_time_ns > threshold_ns),
                  key=lambda t: t.running_time_ns, reverse=True)
    for task in slow:
        node = graph.nodes.get(task.node_id)
        emit("W071", f"Task {task.id} ({task.action}) on node {node.name if node else task.node_id} has been running for "
                     f"{task.running_time_ns / 60e9:.1f} minutes with {len(task.children)} child tasks: {task.description or 'N/A'}")


def check_pending_tasks(graph, emit):
    pending = graph.cluster.pending_tasks.get('tasks', [])
    if not pending:
        emit("I080", "The cluster has no pending tasks")
        return
    longest = max(t.get('time_in_queue_millis', 0) for t in pending)
    priorities = pd.Series([t.get('priority', 'UNKNOWN') for t in pending]).value_counts()
    by_priority = ", ".join(f"{count} {priority}" for priority, count in sorted(priorities.items(), key=lambda kv: (-kv[1], kv[0])))
    emit("W081", f"The cluster has {len(pending)} pending tasks ({by_priority}), the oldest waiting for {longest / 1000:.1f}s")


CHECKS = [
    check_version,
    check_cluster_health,
    check_replicas,
    check_shard_states,
    check_storage_balance,
    check_disk_sizes,
    check_segments_memory,
    check_hot_threads,
    check_tasks,
    check_pending_tasks,
]


def run_checks(graph, emit, logger=None, checks=None):
    """
    Ejecuta los chequeos en orden. El fallo de uno no detiene a los demás:
    se registra con su traza y se cuenta. Devuelve el número de fallos.
    """
    log = logger or logging.getLogger("esdoctor.analysis")
    failures = 0
    for check in (CHECKS if checks is None else checks):
        name = getattr(check, '__name__', repr(check))
        log.debug(f"Ejecutando chequeo {name}")
        try:
            check(graph, emit)
        except Exception as e:
            failures += 1
            log.error(f"Check {name} failed: {e}", exc_info=True)
    return failures
