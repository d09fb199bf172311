# esdoctor/config.py
import os
import logging
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler

# --- Configuración Inicial ---
load_dotenv()

# --- Conexión a Elasticsearch ---
ES_HOST = os.getenv("ES_HOST")
VERIFY_SSL = os.getenv("ES_VERIFY_SSL", "false").lower() in ("1", "true", "yes")
REQUEST_TIMEOUT_S = float(os.getenv("ES_REQUEST_TIMEOUT_S", "60"))
HEADERS = {'Content-Type': 'application/json'}
LOG_FILE = os.getenv("ES_LOG_FILE")

# --- Hot Threads ---
HOT_THREADS_INTERVAL = "500ms"
HOT_THREADS_SNAPSHOTS = 10
HOT_THREADS_THREADS = 10
HOT_THREADS_TYPES = ("cpu",)

# --- Umbrales de Diagnóstico ---
PERCENTILE_BUCKETS = 10
STORAGE_TOLERANCE_PCT = 20
HIGH_REPLICA_THRESHOLD = 2
HOT_THREAD_USAGE_THRESHOLD = 90
HOT_THREADS_TOP_N = 5
LONG_RUNNING_TASK_MINUTES = 5

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def setup_logging(verbosity=0, log_file=LOG_FILE):
    """Configura el logging del proceso. Solo lo llama la CLI, nunca el núcleo."""
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    if log_file:
        logging.basicConfig(level=level, format=LOG_FORMAT, filename=log_file, filemode='w', force=True)
    else:
        logging.basicConfig(level=level, format='%(message)s', handlers=[RichHandler(console=Console(stderr=True), show_path=False)], force=True)
    # urllib3 es muy ruidoso en DEBUG
    logging.getLogger("urllib3").setLevel(max(level, logging.INFO))
