# esdoctor/comments.py
import logging
import threading

from .models import Comment


class CommentWriter:
    """Interfaz de salida de comentarios: inicio de ejecución, cada comentario y fin."""
    def begin(self, diagnosis):
        pass

    def write(self, diagnosis, comment: Comment):
        pass

    def end(self, diagnosis):
        pass


class CommentLog:
    """
    Lista de comentarios de solo-añadir. Se puede leer mientras otros hilos añaden.

    Un único lock exclusivo protege tanto las escrituras como las lecturas:
    `snapshot()` lo toma solo el tiempo de copiar la lista, así que no hace
    falta un lock compartido de lectura.
    """
    def __init__(self, on_append=None, logger=None):
        self._comments = []
        self._lock = threading.Lock()
        self._on_append = on_append
        self.log = logger or logging.getLogger("esdoctor.comments")

    def emit(self, code, message):
        self.append(Comment.new(code, message))

    def append(self, comment: Comment):
        with self._lock:
            self._comments.append(comment)
        self.log.debug(f"Comentario {comment}")
        if self._on_append is not None:
            try:
                self._on_append(comment)
            except Exception as e:
                self.log.error(f"Failed to write comment {comment}: {e}", exc_info=True)

    def snapshot(self):
        with self._lock:
            return list(self._comments)

    def __len__(self):
        with self._lock:
            return len(self._comments)
