# esdoctor/models.py
import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field


class VersionError(ValueError):
    pass


_VERSION_PATTERN = re.compile(r"(\d+)\.(\d+)\.(\d+)")


# Elasticsearch usa versionado semántico https://semver.org/
class ESVersion(BaseModel):
    major: int
    minor: int
    patch: int

    @classmethod
    def parse(cls, version: str) -> "ESVersion":
        match = _VERSION_PATTERN.fullmatch(version or "")
        if not match:
            raise VersionError(f"invalid version {version!r}: must contain 3 numbers joined by . (dot)")
        major, minor, patch = (int(g) for g in match.groups())
        return cls(major=major, minor=minor, patch=patch)

    def __str__(self):
        return f"{self.major}.{self.minor}.{self.patch}"


# --- Comentarios de Diagnóstico ---

class CommentType(str, Enum):
    INFO = "info"
    SUMMARY = "summary"
    ADVICE = "advice"
    WARNING = "warning"


COMMENT_CODE_PATTERN = re.compile(r"([ISAW])\d{3}")
_TYPES_BY_LETTER = {"I": CommentType.INFO, "S": CommentType.SUMMARY, "A": CommentType.ADVICE, "W": CommentType.WARNING}


class Comment(BaseModel):
    time: datetime
    type: CommentType
    code: str
    message: str

    @classmethod
    def new(cls, code: str, message: str, when: Optional[datetime] = None) -> "Comment":
        """El tipo se deduce de la letra del código: I001 es info, W011 es warning, etc."""
        match = COMMENT_CODE_PATTERN.fullmatch(code)
        if not match:
            raise ValueError(f"invalid comment code {code!r}: expected a letter in ISAW followed by 3 digits")
        return cls(time=when or datetime.now().astimezone(), type=_TYPES_BY_LETTER[match.group(1)], code=code, message=message)

    def __str__(self):
        return f"{self.code} {self.message}"


# --- Hot Threads ---

class HotThreadsType(str, Enum):
    CPU = "cpu"
    BLOCK = "block"
    WAIT = "wait"


class SnapshotSummary(BaseModel):
    occurred: int
    stack: List[str] = Field(default_factory=list)


class Thread(BaseModel):
    name: str
    usage_percent: float
    time_ns: int
    interval_ns: int
    type: str
    snapshots: List[SnapshotSummary] = Field(default_factory=list)


class HotThreadsNode(BaseModel):
    id: str
    threads: List[Thread] = Field(default_factory=list)


class HotThreads(BaseModel):
    type: Optional[str] = None
    nodes: Dict[str, HotThreadsNode] = Field(default_factory=dict)


class HotThreadsGroup(BaseModel):
    cpu: Optional[HotThreads] = None
    block: Optional[HotThreads] = None
    wait: Optional[HotThreads] = None

    def set(self, dimension, hot_threads: HotThreads):
        setattr(self, HotThreadsType(dimension).value, hot_threads)

    def collected(self) -> List[Tuple[str, HotThreads]]:
        return [(t.value, getattr(self, t.value)) for t in HotThreadsType if getattr(self, t.value) is not None]


# --- Grafo del Clúster ---

class ShardState(str, Enum):
    UNASSIGNED = "UNASSIGNED"
    INITIALIZING = "INITIALIZING"
    STARTED = "STARTED"
    RELOCATING = "RELOCATING"


class Node(BaseModel):
    id: str
    name: str
    roles: List[str] = Field(default_factory=list)
    stats: Dict[str, Any] = Field(default_factory=dict)
    shards: List[int] = Field(default_factory=list)

    @property
    def is_data(self) -> bool:
        return any(role.startswith("data") for role in self.roles)

    @property
    def is_master(self) -> bool:
        return "master" in self.roles

    @property
    def disk_total_bytes(self) -> int:
        return self.stats.get('fs', {}).get('total', {}).get('total_in_bytes', 0)

    @property
    def disk_used_bytes(self) -> int:
        fs_total = self.stats.get('fs', {}).get('total', {})
        return fs_total.get('total_in_bytes', 0) - fs_total.get('free_in_bytes', 0)


class Shard(BaseModel):
    uid: int
    id: int
    index: str
    primary: bool
    state: str
    node_id: Optional[str] = None
    node_name: Optional[str] = None
    relocating_node: Optional[str] = None
    stats: Optional[Dict[str, Any]] = None

    @property
    def label(self) -> str:
        return f"{self.index}[{self.id}][{'p' if self.primary else 'r'}]"

    @property
    def is_active(self) -> bool:
        return self.state in (ShardState.STARTED.value, ShardState.RELOCATING.value)

    def _stat(self, section, key):
        return (self.stats or {}).get(section, {}).get(key, 0)

    @property
    def docs_count(self) -> int:
        return self._stat('docs', 'count')

    @property
    def store_bytes(self) -> int:
        return self._stat('store', 'size_in_bytes')

    @property
    def segments_count(self) -> int:
        return self._stat('segments', 'count')

    @property
    def segments_memory_bytes(self) -> int:
        return self._stat('segments', 'memory_in_bytes')

    @property
    def segments_memory_breakdown(self) -> Dict[str, int]:
        """Memoria de segmentos por categoría: terms, norms, doc_values, etc."""
        segments = (self.stats or {}).get('segments', {})
        return {
            key[:-len('_memory_in_bytes')]: value
            for key, value in segments.items()
            if key.endswith('_memory_in_bytes') and isinstance(value, int)
        }


class Index(BaseModel):
    name: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    stats: Dict[str, Any] = Field(default_factory=dict)
    shards: List[int] = Field(default_factory=list)
    nodes: List[str] = Field(default_factory=list)

    @property
    def number_of_replicas(self) -> int:
        return int(self.metadata['number_of_replicas'])

    @property
    def number_of_shards(self) -> int:
        return int(self.metadata['number_of_shards'])


class Task(BaseModel):
    id: str
    local_id: int
    node_id: str
    parent_id: Optional[str] = None
    children: List[str] = Field(default_factory=list)
    action: str = ""
    description: str = ""
    start_time_ms: int = 0
    running_time_ns: int = 0
    cancellable: bool = False


class ClusterInfo(BaseModel):
    health: Dict[str, Any] = Field(default_factory=dict)
    stats: Dict[str, Any] = Field(default_factory=dict)
    state: Dict[str, Any] = Field(default_factory=dict)
    pending_tasks: Dict[str, Any] = Field(default_factory=dict)


class NodeRoles(BaseModel):
    all: List[str] = Field(default_factory=list)
    data: List[str] = Field(default_factory=list)
    master: List[str] = Field(default_factory=list)


class ClusterGraph(BaseModel):
    """
    Modelo normalizado del clúster. Las referencias cruzadas son ids estables
    (uid de shard, id de nodo, nombre de índice, id sintético de tarea) y se
    resuelven con los métodos de búsqueda, así el volcado JSON nunca entra en ciclo.
    """
    version: Optional[ESVersion] = None
    cluster: ClusterInfo = Field(default_factory=ClusterInfo)
    nodes: Dict[str, Node] = Field(default_factory=dict)
    roles: NodeRoles = Field(default_factory=NodeRoles)
    indices: Dict[str, Index] = Field(default_factory=dict)
    shards: List[Shard] = Field(default_factory=list)
    tasks: Dict[str, Task] = Field(default_factory=dict)
    hot_threads: HotThreadsGroup = Field(default_factory=HotThreadsGroup)

    # --- Búsquedas ---

    def shard(self, uid: int) -> Shard:
        return self.shards[uid]

    def index_shards(self, index: Index) -> List[Shard]:
        return [self.shards[uid] for uid in index.shards]

    def node_shards(self, node: Node) -> List[Shard]:
        return [self.shards[uid] for uid in node.shards]

    def index_nodes(self, index: Index) -> List[Node]:
        return [self.nodes[node_id] for node_id in index.nodes]

    def shard_index(self, shard: Shard) -> Optional[Index]:
        return self.indices.get(shard.index)

    def shard_node(self, shard: Shard) -> Optional[Node]:
        return self.nodes.get(shard.node_id) if shard.node_id else None

    def data_nodes(self) -> List[Node]:
        return [self.nodes[node_id] for node_id in self.roles.data]

    def find_node(self, key: str) -> Optional[Node]:
        """Busca un nodo por id o por nombre (los hot threads usan el nombre)."""
        if key in self.nodes:
            return self.nodes[key]
        return next((n for n in self.nodes.values() if n.name == key), None)

    def root_tasks(self) -> List[Task]:
        return [t for t in self.tasks.values() if t.parent_id is None]

    def task_parent(self, task: Task) -> Optional[Task]:
        return self.tasks.get(task.parent_id) if task.parent_id else None

    def task_children(self, task: Task) -> List[Task]:
        return [self.tasks[child_id] for child_id in task.children]
