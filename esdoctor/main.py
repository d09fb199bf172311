# esdoctor/main.py
import argparse
import logging
import sys
import threading

from rich.console import Console
from rich.markup import escape

from .analysis import ChecksFailedError
from .client import CollectionError, ElasticsearchClient
from .config import ES_HOST, VERIFY_SSL, HOT_THREADS_INTERVAL, HOT_THREADS_SNAPSHOTS, HOT_THREADS_THREADS, HOT_THREADS_TYPES, setup_logging
from .diagnosis import diagnose
from .hotthreads import HotThreadsOptions, HotThreadsParseError
from .models import CommentType
from .renderer import JSONCommentWriter, TextCommentWriter

console = Console(stderr=True, highlight=False)

EPILOG = """
Ejemplos:
  1. Solo comentarios de tipo warning
     esdoctor https://some.address:9200 -w
  2. Comentarios summary, advice y warning
     esdoctor https://some.address:9200 -saw
  3. Todos los comentarios con logging detallado
     esdoctor https://some.address:9200 -A -vv
  4. Comentarios en formato JSON
     esdoctor https://some.address:9200 -f json
  5. Volcado completo del diagnóstico en JSON
     esdoctor https://some.address:9200 -f json-dump
"""


def build_parser():
    parser = argparse.ArgumentParser(
        prog="esdoctor",
        description="Ejecuta una serie de diagnósticos sobre un clúster Elasticsearch e imprime los resultados.",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('endpoint', nargs='?', default=ES_HOST, help="Endpoint HTTP del clúster (por defecto ES_HOST).")
    parser.add_argument('-v', '--verbosity', action='count', default=0,
                        help="Verbosidad del logging; se puede repetir (-vv). Por defecto solo errores y warnings.")
    parser.add_argument('-f', '--format', choices=['text', 'json', 'json-dump'], default='text',
                        help="Formato de salida: text (default), json o json-dump.")
    parser.add_argument('-j', '--json', action='store_true', help="Igual que --format=json.")
    parser.add_argument('-J', '--json-dump', action='store_true', help="Igual que --format=json-dump.")
    parser.add_argument('-i', '--info', action='store_true', help="Imprime comentarios informativos (solo formato text).")
    parser.add_argument('-s', '--summary', action='store_true', help="Imprime comentarios summary (solo formato text).")
    parser.add_argument('-a', '--advice', action='store_true', help="Imprime comentarios advice (solo formato text).")
    parser.add_argument('-w', '--warning', action='store_true', help="Imprime comentarios warning (solo formato text).")
    parser.add_argument('-A', '--all', action='store_true', help="Imprime todos los comentarios (solo formato text).")
    parser.add_argument('--no-color', action='store_true', help="Desactiva los colores.")
    parser.add_argument('--hot-threads', default=",".join(HOT_THREADS_TYPES),
                        help="Tipos de hot threads a recolectar, separados por coma: cpu, block, wait.")
    parser.add_argument('--interval', default=HOT_THREADS_INTERVAL, help="Intervalo de muestreo de hot threads.")
    parser.add_argument('--snapshots', type=int, default=HOT_THREADS_SNAPSHOTS, help="Snapshots por thread.")
    parser.add_argument('--threads', type=int, default=HOT_THREADS_THREADS, help="Threads más calientes por nodo.")
    return parser


def build_writer(args, parser):
    if args.format == 'json' or args.json:
        return JSONCommentWriter(dump=False)
    if args.format == 'json-dump' or args.json_dump:
        return JSONCommentWriter(dump=True)

    types = None
    if not args.all:
        flags = [(args.info, CommentType.INFO), (args.summary, CommentType.SUMMARY),
                 (args.advice, CommentType.ADVICE), (args.warning, CommentType.WARNING)]
        types = [t for enabled, t in flags if enabled]
        if not types:
            parser.error("need to specify at least one level of comments to be printed when running with text format. "
                         "Use -A for all comments or a combination of the -i, -s, -a and -w flags")
    return TextCommentWriter(console=Console(highlight=False, no_color=args.no_color), types=types, coloured=not args.no_color)


def build_hot_threads_options(args, parser):
    types = [t.strip() for t in args.hot_threads.split(",") if t.strip()]
    try:
        return HotThreadsOptions(interval=args.interval, snapshots=args.snapshots, threads=args.threads, types=types)
    except ValueError as e:
        parser.error(f"invalid --hot-threads value {args.hot_threads!r}: {e}")


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    writer = build_writer(args, parser)
    options = build_hot_threads_options(args, parser)
    if not args.endpoint:
        parser.error("an endpoint is required, either as an argument or through the ES_HOST environment variable")

    # A partir de aquí los fallos son de ejecución, no de uso
    setup_logging(args.verbosity)
    log = logging.getLogger("esdoctor")
    cancel_event = threading.Event()
    try:
        client = ElasticsearchClient(args.endpoint, verify_ssl=VERIFY_SSL, logger=log)
        diagnose(client, writer=writer, logger=log, cancel_event=cancel_event, hot_threads_options=options)
    except ChecksFailedError as e:
        console.print(f"[bold red]Execution failed:[/bold red] {escape(str(e))}")
        return 1
    except (CollectionError, HotThreadsParseError) as e:
        log.error(f"Execution failed: {e}")
        console.print(f"[bold red]❌ Execution failed:[/bold red] {escape(str(e))}")
        return 1
    except KeyboardInterrupt:
        cancel_event.set()
        console.print("\n[bold]Interrupción por teclado. Saliendo...[/bold]")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
