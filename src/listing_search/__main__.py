import argparse
import json
import logging
import sys

from .errors import SearchError
from .log_utils import configure_logging
from .search.engine import MapSearchRequest, SearchEngine
from .storage.db import connect, get_db_path
from .storage.schema import ensure_schema


def _json_arg(value):
    try:
        return json.loads(value)
    except json.JSONDecodeError as exc:
        raise argparse.ArgumentTypeError(f"invalid JSON: {exc}") from None


def _bounds_arg(value):
    parts = [p.strip() for p in str(value).split(",")]
    if len(parts) != 4:
        raise argparse.ArgumentTypeError("expected north,south,east,west")
    try:
        north, south, east, west = (float(p) for p in parts)
    except ValueError:
        raise argparse.ArgumentTypeError("bounds must be numbers") from None
    return {"north": north, "south": south, "east": east, "west": west}


def build_parser():
    parser = argparse.ArgumentParser(
        description="Listing search and map query CLI",
    )
    parser.add_argument(
        "--db",
        default=None,
        help="SQLite path (defaults to LISTINGS_SQLITE_PATH or ./listings.sqlite)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (DEBUG, INFO, etc.)",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Emit log records as bare JSON lines",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    search = sub.add_parser("search", help="Run a map/list search")
    search.add_argument(
        "--filters",
        type=_json_arg,
        default={},
        help='FilterSet as JSON, e.g. \'{"status": ["Active"]}\'',
    )
    search.add_argument(
        "--bounds",
        type=_bounds_arg,
        default=None,
        help="Viewport as north,south,east,west",
    )
    search.add_argument(
        "--polygons",
        type=_json_arg,
        default=None,
        help="Polygon shapes as JSON (list of [lat, lng] rings)",
    )
    search.add_argument("--count-only", action="store_true", help="Print only the total")
    search.add_argument("--limit", type=int, default=None, help="Page size")
    search.add_argument("--offset", type=int, default=0, help="Page offset")

    options = sub.add_parser("options", help="Faceted filter options")
    options.add_argument(
        "--filters",
        type=_json_arg,
        default={},
        help="FilterSet as JSON",
    )

    autocomplete = sub.add_parser("autocomplete", help="Search-box suggestions")
    autocomplete.add_argument("term", help="Text typed so far")

    sub.add_parser("init-db", help="Create every table if missing")
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level, json_lines=args.log_json)
    log = logging.getLogger("lse.cli")

    path = args.db or get_db_path()
    try:
        conn = connect(path)
    except SearchError as exc:
        print(json.dumps({"error": str(exc)}), file=sys.stderr)
        return 2

    try:
        if args.command == "init-db":
            ensure_schema(conn)
            log.info("schema ready at %s", path)
            print(json.dumps({"db": path, "status": "ok"}))
            return 0

        engine = SearchEngine(conn)
        if args.command == "search":
            result = engine.search_map(
                MapSearchRequest(
                    filters=args.filters or {},
                    bounds=args.bounds,
                    polygons=args.polygons,
                    count_only=args.count_only,
                    force_fresh=True,
                    limit=args.limit,
                    offset=args.offset,
                )
            )
            payload = {"total": result} if isinstance(result, int) else result.to_dict()
        elif args.command == "options":
            payload = engine.filter_options(args.filters or {}, force_fresh=True)
        else:
            payload = engine.autocomplete(args.term)
    except SearchError as exc:
        log.error("command failed: %s", exc)
        print(json.dumps({"error": str(exc)}), file=sys.stderr)
        return 1
    finally:
        conn.close()

    print(json.dumps(payload, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
