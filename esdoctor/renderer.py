# esdoctor/renderer.py
import json
import sys
from collections import Counter

from rich.console import Console
from rich.text import Text

from .comments import CommentWriter
from .models import CommentType

STYLES = {
    CommentType.WARNING: "bold red",
    CommentType.ADVICE: "yellow",
    CommentType.SUMMARY: "bright_blue",
    CommentType.INFO: "",
}


class TextCommentWriter(CommentWriter):
    """Un comentario por línea, pensado para humanos. Filtra por tipo y cuenta todos al final."""
    def __init__(self, console=None, types=None, coloured=True):
        self.console = console or Console(highlight=False)
        self.types = set(types) if types is not None else set(CommentType)
        self.coloured = coloured

    def _style(self, comment_type):
        return STYLES[comment_type] if self.coloured else ""

    def write(self, diagnosis, comment):
        if comment.type not in self.types:
            return
        self.console.print(Text.assemble((comment.code, self._style(comment.type)), " ", comment.message), soft_wrap=True)

    def end(self, diagnosis):
        counts = Counter(c.type for c in diagnosis.comments.snapshot())
        worst = next((t for t in (CommentType.WARNING, CommentType.ADVICE, CommentType.SUMMARY) if counts[t]), CommentType.INFO)
        self.console.print(Text.assemble(
            ("Result", self._style(worst)),
            f": {counts[CommentType.WARNING]} warnings, {counts[CommentType.ADVICE]} advices, "
            f"{counts[CommentType.SUMMARY]} summaries and {counts[CommentType.INFO]} informational comments",
        ))


class JSONCommentWriter(CommentWriter):
    """Imprime todo al final: la lista de comentarios o, con `dump`, el diagnóstico completo."""
    def __init__(self, stream=None, dump=False):
        self.stream = stream or sys.stdout
        self.dump = dump

    def end(self, diagnosis):
        data = diagnosis.dump() if self.dump else diagnosis.comments_dump()
        self.stream.write(json.dumps(data, indent=2) + "\n")
        self.stream.flush()
