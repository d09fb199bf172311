# esdoctor/diagnosis.py
import logging
import threading

from .analysis import CHECKS, ChecksFailedError, run_checks
from .analyzer import ClusterAnalyzer
from .comments import CommentLog
from .normalizer import normalize


class Diagnosis:
    """Resultado de una ejecución: el grafo normalizado y los comentarios emitidos."""
    def __init__(self, graph, writer=None, logger=None):
        self.graph = graph
        self.writer = writer
        self.log = logger or logging.getLogger("esdoctor")
        self.failed_checks = 0
        on_append = (lambda comment: writer.write(self, comment)) if writer is not None else None
        self.comments = CommentLog(on_append=on_append, logger=self.log)

    def emit(self, code, message):
        self.comments.emit(code, message)

    def comments_dump(self):
        return [c.model_dump(mode="json") for c in self.comments.snapshot()]

    def dump(self):
        """Volcado completo: datos de soporte, datos procesados y comentarios."""
        result = self.graph.model_dump(mode="json")
        result['comments'] = self.comments_dump()
        result['failed_checks'] = self.failed_checks
        return result


def diagnose(client, writer=None, logger=None, cancel_event=None, hot_threads_options=None, checks=None):
    """
    Punto de entrada: recolecta, normaliza y ejecuta los chequeos.

    Los errores de recolección (incluido el parseo de hot threads) se propagan
    de inmediato. Si algún chequeo falla, se lanza ChecksFailedError con el
    diagnóstico parcial en `.diagnosis`.
    """
    log = logger or logging.getLogger("esdoctor")
    cancel_event = cancel_event or threading.Event()
    log.debug(f"Ejecutando diagnóstico sobre {client.endpoint} con hot threads {hot_threads_options}")

    payloads = ClusterAnalyzer(client, log).fetch_all_data(hot_threads_options, cancel_event)
    graph = normalize(payloads, log)

    diagnosis = Diagnosis(graph, writer, log)
    if writer is not None:
        writer.begin(diagnosis)
    diagnosis.failed_checks = run_checks(graph, diagnosis.emit, log, CHECKS if checks is None else checks)
    if writer is not None:
        writer.end(diagnosis)

    if diagnosis.failed_checks:
        raise ChecksFailedError(diagnosis.failed_checks, diagnosis)
    return diagnosis
