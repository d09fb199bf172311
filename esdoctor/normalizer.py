# esdoctor/normalizer.py
"""
Reconcilia los payloads crudos de la API (que no comparten forma entre sí) en un
único ClusterGraph con referencias cruzadas consistentes.

Un clúster parcialmente degradado es el caso normal que diagnostica esta
herramienta: las referencias opcionales que faltan quedan ausentes y nunca
abortan la normalización.
"""
import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from .models import (
    ClusterGraph, ClusterInfo, ESVersion, HotThreadsGroup, Index, Node, NodeRoles, Shard, Task,
)


class RawPayloads(BaseModel):
    """Respuestas crudas de cada endpoint, tal como llegan de la API."""
    version: Optional[ESVersion] = None
    cluster_health: Dict[str, Any] = Field(default_factory=dict)
    cluster_state: Dict[str, Any] = Field(default_factory=dict)
    indices_settings: Dict[str, Any] = Field(default_factory=dict)
    indices_stats: Dict[str, Any] = Field(default_factory=dict)
    nodes_stats: Dict[str, Any] = Field(default_factory=dict)
    cluster_stats: Dict[str, Any] = Field(default_factory=dict)
    tasks: Dict[str, Any] = Field(default_factory=dict)
    pending_tasks: Dict[str, Any] = Field(default_factory=dict)
    hot_threads: HotThreadsGroup = Field(default_factory=HotThreadsGroup)


def normalize(payloads: RawPayloads, logger=None) -> ClusterGraph:
    log = logger or logging.getLogger("esdoctor.normalizer")
    graph = ClusterGraph(
        version=payloads.version,
        cluster=ClusterInfo(
            health=payloads.cluster_health,
            stats=payloads.cluster_stats,
            state=payloads.cluster_state,
            pending_tasks=payloads.pending_tasks,
        ),
        hot_threads=payloads.hot_threads,
    )
    _load_nodes(graph, payloads.nodes_stats, log)
    _load_indices(graph, payloads.indices_settings, payloads.indices_stats)
    _load_shards(graph, payloads.cluster_state, payloads.indices_stats, log)
    _link_index_nodes(graph)
    _load_tasks(graph, payloads.tasks, log)
    log.info(
        f"Grafo normalizado: {len(graph.nodes)} nodos, {len(graph.indices)} índices, "
        f"{len(graph.shards)} shards, {len(graph.tasks)} tareas"
    )
    return graph


def _load_nodes(graph, nodes_stats, log):
    for node_id, data in nodes_stats.get('nodes', {}).items():
        node = Node(id=node_id, name=data.get('name', node_id), roles=data.get('roles', []), stats=data)
        graph.nodes[node_id] = node
        graph.roles.all.append(node_id)
        if node.is_data:
            graph.roles.data.append(node_id)
        if node.is_master:
            graph.roles.master.append(node_id)
    log.debug(f"Nodos: {len(graph.roles.all)} en total, {len(graph.roles.data)} de datos, {len(graph.roles.master)} master")


def _load_indices(graph, indices_settings, indices_stats):
    stats_by_index = indices_stats.get('indices', {})
    names = list(indices_settings.keys()) + [n for n in stats_by_index if n not in indices_settings]
    for name in names:
        settings = indices_settings.get(name, {}).get('settings', {}).get('index', {})
        # las estadísticas por shard se enlazan en _load_shards
        stats = {k: v for k, v in stats_by_index.get(name, {}).items() if k != 'shards'}
        graph.indices[name] = Index(name=name, metadata=settings, stats=stats)


def _find_shard_stats(indices_stats, index_name, shard_number, routing):
    """Busca la entrada de estadísticas de la copia asignada al mismo nodo (y mismo tipo primario/réplica)."""
    candidates = indices_stats.get('indices', {}).get(index_name, {}).get('shards', {}).get(str(shard_number), [])
    node_id = routing.get('node')
    if not node_id:
        return None
    matches = [c for c in candidates if c.get('routing', {}).get('node') == node_id]
    if len(matches) > 1:
        matches = [c for c in matches if c.get('routing', {}).get('primary') == routing.get('primary')] or matches
    return matches[0] if matches else None


def _load_shards(graph, cluster_state, indices_stats, log):
    routing_table = cluster_state.get('routing_table', {}).get('indices', {})
    for index_name, routing_index in routing_table.items():
        index = graph.indices.get(index_name)
        if index is None:
            log.debug(f"Índice {index_name} en la tabla de routing pero sin metadata ni estadísticas")
            index = graph.indices[index_name] = Index(name=index_name)

        for shard_number, copies in sorted(routing_index.get('shards', {}).items(), key=lambda kv: int(kv[0])):
            for routing in copies:
                node_id = routing.get('node')
                node = graph.nodes.get(node_id) if node_id else None
                if node_id and node is None:
                    log.debug(f"Shard {index_name}[{shard_number}] asignado a un nodo desconocido {node_id}")

                shard = Shard(
                    uid=len(graph.shards),
                    id=int(shard_number),
                    index=index_name,
                    primary=bool(routing.get('primary')),
                    state=routing.get('state', ''),
                    node_id=node.id if node else None,
                    node_name=node.name if node else None,
                    relocating_node=routing.get('relocating_node'),
                    stats=_find_shard_stats(indices_stats, index_name, shard_number, routing),
                )
                graph.shards.append(shard)
                index.shards.append(shard.uid)
                if node is not None:
                    node.shards.append(shard.uid)


def _link_index_nodes(graph):
    for index in graph.indices.values():
        node_ids = {graph.shards[uid].node_id for uid in index.shards} - {None}
        index.nodes = sorted(node_ids, key=lambda node_id: (graph.nodes[node_id].name, node_id))


def _load_tasks(graph, tasks_payload, log):
    for task_data in tasks_payload.get('tasks', {}).values():
        _load_task(graph, task_data, None, log)


def _load_task(graph, data, parent, log):
    task_id = f"{data.get('node')}:{data.get('id')}"
    if task_id in graph.tasks:
        log.debug(f"Tarea {task_id} repetida, se ignora para mantener el árbol acíclico")
        return
    task = Task(
        id=task_id,
        local_id=data.get('id', 0),
        node_id=data.get('node', ''),
        parent_id=parent.id if parent else None,
        action=data.get('action', ''),
        description=data.get('description', ''),
        start_time_ms=data.get('start_time_in_millis', 0),
        running_time_ns=data.get('running_time_in_nanos', 0),
        cancellable=data.get('cancellable', False),
    )
    graph.tasks[task_id] = task
    if parent is not None:
        parent.children.append(task_id)
    for child in data.get('children', []):
        _load_task(graph, child, task, log)
