# esdoctor/analyzer.py
import logging

from pydantic import ValidationError

from . import hotthreads
from .client import DecodeError
from .models import ESVersion, VersionError
from .normalizer import RawPayloads


class ClusterAnalyzer:
    """Orquesta la recolección de datos del clúster. Cada ejecución hace una recolección completa, sin caché."""
    def __init__(self, client, logger=None):
        self.client = client
        self.log = logger or logging.getLogger("esdoctor.analyzer")

    def discover_version(self, cancel_event=None) -> ESVersion:
        info = self.client.get("/", cancel_event=cancel_event)
        number = info.get('version', {}).get('number') if isinstance(info, dict) else None
        try:
            version = ESVersion.parse(number)
        except VersionError as e:
            raise DecodeError(f"failed to discover the ES version: {e}") from e
        self.log.info(f"Elasticsearch is on version {version}")
        return version

    def fetch_all_data(self, hot_threads_options=None, cancel_event=None) -> RawPayloads:
        self.log.debug(f"Recolectando datos de {self.client.endpoint}")
        version = self.discover_version(cancel_event)

        def get(path, params=None):
            return self.client.get(path, params=params, cancel_event=cancel_event)

        raw = {
            'version': version,
            'cluster_health': get("_cluster/health"),
            'cluster_state': get("_cluster/state/routing_table"),
            'indices_settings': get("_settings", {'expand_wildcards': 'all'}),
            'indices_stats': get("_stats", {'level': 'shards', 'expand_wildcards': 'all'}),
            'nodes_stats': get("_nodes/stats"),
            'cluster_stats': get("_cluster/stats"),
            'tasks': get("_tasks", {'detailed': 'true', 'group_by': 'parents'}),
            'pending_tasks': get("_cluster/pending_tasks"),
        }
        self.log.info("Datos de soporte recolectados, recolectando hot threads")
        raw['hot_threads'] = hotthreads.fetch(self.client, hot_threads_options, cancel_event, self.log)

        try:
            return RawPayloads(**raw)
        except ValidationError as e:
            raise DecodeError(f"unexpected response shape from Elasticsearch: {e}") from e
