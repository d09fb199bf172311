# esdoctor/hotthreads.py
# Hot threads de Elasticsearch:
# - docs: https://www.elastic.co/guide/en/elasticsearch/reference/master/cluster-nodes-hot-threads.html
# - formato: HotThreads.java y RestNodesHotThreadsAction.java en el repositorio de Elasticsearch
import logging
import re
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from enum import Enum

from .config import HOT_THREADS_INTERVAL, HOT_THREADS_SNAPSHOTS, HOT_THREADS_THREADS, HOT_THREADS_TYPES
from .models import HotThreads, HotThreadsGroup, HotThreadsNode, HotThreadsType, SnapshotSummary, Thread

NODE_PREFIX = "::: "
TITLE_PREFIX = "   Hot threads at "
STACK_LINE_PREFIX = "       "
UNIQUE_SNAPSHOT_PREFIX = "     unique snapshot"
SNAPSHOTS_PREFIX = "     "
THREAD_PREFIX = "   "

# ejemplo (toString de DiscoveryNode):
#   ::: {node-1}{jba9tWi1QVCQUXBjh-jbEw}{YxgG6NkiSTGAMhS7avYosA}{127.0.0.1}{127.0.0.1:9300}{dimr}
NODE_ID_PATTERN = re.compile(r"^\{([^}]+)\}")

# ejemplo:
#   28.1% (140.5ms out of 500ms) cpu usage by thread 'elasticsearch[node-1][refresh][T#4]'
# versiones recientes añaden el desglose: 28.1% [cpu=28.1%, other=0.0%] (140.5ms out of 500ms) ...
# La comilla final a veces no aparece: Amazon OpenSearch reemplaza el nombre por "[AMAZON INTERNAL]"
THREAD_PATTERN = re.compile(
    r"\d+(?:\.\d+)?%(?: \[[^\]]*\])? \((\d+(?:\.\d+)?)(\w+) out of (\d+(?:\.\d+)?)(\w+)\) (\w+) usage by thread '([^']+)"
)

# ejemplo:
#   9/10 snapshots sharing following 8 elements
SNAPSHOTS_PATTERN = re.compile(r"(\d+)/\d+ snapshots sharing following \d+ elements")

NANOS_PER_UNIT = {
    "micros": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
}

# unidades genéricas, solo si no es una de las que usa Elasticsearch
GENERIC_NANOS_PER_UNIT = {
    "nanos": 1, "ns": 1,
    "us": 1_000, "µs": 1_000,
    "millis": 1_000_000,
    "m": 60 * 1_000_000_000, "min": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}


class HotThreadsParseError(ValueError):
    def __init__(self, line_number, line, reason="could not parse"):
        super().__init__(f"{reason} line {line_number}: {line!r}")
        self.line_number = line_number
        self.line = line


class State(Enum):
    SEEKING_NODE = "seeking_node"
    IN_NODE = "in_node"
    IN_THREAD = "in_thread"
    IN_SNAPSHOT = "in_snapshot"


def parse_duration_ns(amount, unit):
    nanos = NANOS_PER_UNIT.get(unit) or GENERIC_NANOS_PER_UNIT.get(unit)
    if nanos is None:
        raise ValueError(f"unknown time unit {unit!r}")
    return int(round(float(amount) * nanos))


class HotThreadsParser:
    """
    Máquina de estados sobre las líneas del volcado de hot threads. Cada familia
    de prefijos es una transición; se prueban del prefijo más específico al más
    general, en el orden de `_transitions`.
    """
    def __init__(self, logger=None):
        self.log = logger or logging.getLogger("esdoctor.hotthreads")
        self._transitions = [
            (NODE_PREFIX, self._on_node),
            (TITLE_PREFIX, self._on_title),
            (STACK_LINE_PREFIX, self._on_stack_line),
            (UNIQUE_SNAPSHOT_PREFIX, self._on_unique_snapshot),
            (SNAPSHOTS_PREFIX, self._on_snapshots),
            (THREAD_PREFIX, self._on_thread),
        ]
        self._reset()

    def _reset(self):
        self.state = State.SEEKING_NODE
        self.result = HotThreads()
        self.node = None
        self.thread = None
        self.snapshot = None

    def parse(self, text):
        self._reset()
        lines = text.split("\n")
        self.log.debug(f"Parseando {len(lines)} líneas de hot threads")
        for line_number, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            handler = next((h for prefix, h in self._transitions if line.startswith(prefix)), None)
            if handler is None:
                self.log.debug(f"Línea {line_number} de hot threads ignorada: {line!r}")
                continue
            handler(line_number, line)
        return self.result

    # --- Transiciones ---

    def _on_node(self, line_number, line):
        match = NODE_ID_PATTERN.match(line[len(NODE_PREFIX):])
        if not match:
            raise HotThreadsParseError(line_number, line, "could not parse node")
        self.node = HotThreadsNode(id=match.group(1))
        self.result.nodes[self.node.id] = self.node
        self.thread = self.snapshot = None
        self.state = State.IN_NODE

    def _on_title(self, line_number, line):
        pass

    def _on_thread(self, line_number, line):
        if self.state == State.SEEKING_NODE:
            raise HotThreadsParseError(line_number, line, "thread found before any node in")
        match = THREAD_PATTERN.search(line.strip())
        if not match:
            raise HotThreadsParseError(line_number, line, "could not parse thread")
        taken, taken_unit, total, total_unit, usage_type, thread_name = match.groups()
        try:
            taken_ns = parse_duration_ns(taken, taken_unit)
            interval_ns = parse_duration_ns(total, total_unit)
        except ValueError:
            raise HotThreadsParseError(line_number, line, "could not parse thread") from None
        if interval_ns == 0:
            raise HotThreadsParseError(line_number, line, "zero interval in thread")

        # todos los threads de un volcado son del mismo tipo: basta con el primero
        if self.result.type is None:
            self.result.type = usage_type

        self.thread = Thread(
            name=thread_name,
            usage_percent=taken_ns * 100 / interval_ns,
            time_ns=taken_ns,
            interval_ns=interval_ns,
            type=usage_type,
        )
        self.node.threads.append(self.thread)
        self.snapshot = None
        self.state = State.IN_THREAD

    def _open_snapshot(self, line_number, line, occurred):
        if self.state not in (State.IN_THREAD, State.IN_SNAPSHOT):
            raise HotThreadsParseError(line_number, line, "snapshot found outside of a thread in")
        self.snapshot = SnapshotSummary(occurred=occurred)
        self.thread.snapshots.append(self.snapshot)
        self.state = State.IN_SNAPSHOT

    def _on_unique_snapshot(self, line_number, line):
        self._open_snapshot(line_number, line, 1)

    def _on_snapshots(self, line_number, line):
        match = SNAPSHOTS_PATTERN.search(line.strip())
        if not match:
            raise HotThreadsParseError(line_number, line, "could not parse snapshot")
        self._open_snapshot(line_number, line, int(match.group(1)))

    def _on_stack_line(self, line_number, line):
        if self.state != State.IN_SNAPSHOT:
            raise HotThreadsParseError(line_number, line, "stack line found outside of a snapshot in")
        self.snapshot.stack.append(line.strip())


def parse(text, logger=None):
    return HotThreadsParser(logger).parse(text)


# --- Recolección ---

class HotThreadsOptions:
    def __init__(self, interval=HOT_THREADS_INTERVAL, snapshots=HOT_THREADS_SNAPSHOTS,
                 threads=HOT_THREADS_THREADS, types=HOT_THREADS_TYPES):
        self.interval = interval
        self.snapshots = snapshots
        self.threads = threads
        # sin duplicados, respetando el orden
        self.types = list(dict.fromkeys(HotThreadsType(t).value for t in types))

    def params(self, dimension):
        return {"interval": self.interval, "snapshots": self.snapshots, "threads": self.threads, "type": dimension}

    def __repr__(self):
        return (f"HotThreadsOptions(interval={self.interval!r}, snapshots={self.snapshots}, "
                f"threads={self.threads}, types={self.types})")


def fetch_single(client, dimension, options, cancel_event=None, logger=None):
    log = logger or logging.getLogger("esdoctor.hotthreads")
    text = client.get_text("_nodes/hot_threads", params=options.params(dimension), cancel_event=cancel_event)
    try:
        result = parse(text, log)
    except HotThreadsParseError as e:
        log.error(f"Fallo al parsear los hot threads de tipo {dimension}: {e}")
        raise
    log.debug(f"Hot threads {dimension}: {len(result.nodes)} nodos")
    return result


def fetch(client, options=None, cancel_event=None, logger=None):
    """
    Recolecta los hot threads de cada tipo en paralelo. El primer error gana:
    activa `cancel_event`, cancela lo que no empezó y se propaga; los resultados
    de las peticiones en curso se descartan.
    """
    options = options or HotThreadsOptions()
    log = logger or logging.getLogger("esdoctor.hotthreads")
    cancel_event = cancel_event or threading.Event()
    log.debug(f"Recolectando hot threads con {options}")

    group = HotThreadsGroup()
    if not options.types:
        return group

    with ThreadPoolExecutor(max_workers=len(options.types)) as pool:
        futures = {
            pool.submit(fetch_single, client, dimension, options, cancel_event, log): dimension
            for dimension in options.types
        }
        try:
            for future in as_completed(futures):
                group.set(futures[future], future.result())
        except Exception:
            cancel_event.set()
            for future in futures:
                future.cancel()
            raise
    return group


def sort_by_usage(*collections):
    """Pares (nodo, thread) de todas las colecciones, del más frío al más caliente."""
    pairs = [
        (node, thread)
        for hot_threads in collections if hot_threads is not None
        for node in hot_threads.nodes.values()
        for thread in node.threads
    ]
    return sorted(pairs, key=lambda pair: pair[1].usage_percent)
