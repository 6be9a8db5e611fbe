"""Command-line interface for holofood-grabber."""

import argparse
import logging
import os
import sys
from typing import Dict, List, Optional

from holofood_grabber.core import HoloFoodGrabber
from holofood_grabber.entities import ENTITY_TYPES
from holofood_grabber.errors import HoloFoodError
from holofood_grabber.output import write_csv, write_table_set, write_tsv
from holofood_grabber.transport import DEFAULT_BASE_URL


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="holofood-grabber",
        description="Search and retrieve HoloFood records as TSV/CSV tables.",
    )
    parser.add_argument(
        "--api-url", type=str, default=None,
        help=f"HoloFood API base URL (env: HOLOFOOD_API_URL, default: {DEFAULT_BASE_URL})",
    )
    parser.add_argument(
        "--cache-dir", type=str, default=None,
        help="Directory for cached API responses (env: HOLOFOOD_CACHE_DIR)",
    )
    parser.add_argument(
        "--page-size", type=int, default=50,
        help="Records requested per page (default: 50)",
    )
    parser.add_argument(
        "--format", choices=["tsv", "csv"], default="tsv", dest="fmt",
        help="Output format (default: tsv)",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable verbose/debug logging",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    search = sub.add_parser("search", help="Search an entity type")
    search.add_argument("entity_type", choices=sorted(ENTITY_TYPES))
    search.add_argument(
        "--filter", action="append", default=[], metavar="KEY=VALUE",
        help="Filter, repeatable (e.g. --filter system=salmon)",
    )
    search.add_argument(
        "--max-hits", type=int, default=None,
        help="Stop after this many records (default: all)",
    )
    search.add_argument(
        "-o", "--output", type=str, default="holofood_search.tsv",
        help="Output file path (default: holofood_search.tsv)",
    )

    fetch = sub.add_parser("fetch", help="Retrieve records by accession")
    fetch.add_argument("entity_type", choices=sorted(ENTITY_TYPES))
    _add_accession_args(fetch)
    fetch.add_argument(
        "--flatten", action="store_true",
        help="Write one wide table instead of one table per record type",
    )
    fetch.add_argument(
        "--expand", action="append", default=[], metavar="RELATION",
        help="Also fetch referenced entities (e.g. --expand animal)",
    )
    fetch.add_argument(
        "-o", "--output", type=str, default="holofood_tables",
        help="Output directory, or file with --flatten (default: holofood_tables)",
    )

    result = sub.add_parser("result", help="Build per-sample-type experiment tables")
    _add_accession_args(result)
    result.add_argument(
        "--use-cache", action="store_true",
        help="Reuse cached API responses",
    )
    result.add_argument(
        "--no-animals", action="store_true",
        help="Do not fetch the animals the samples belong to",
    )
    result.add_argument(
        "-o", "--output", type=str, default="holofood_result",
        help="Output directory (default: holofood_result)",
    )
    return parser


def _add_accession_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "accessions", nargs="*",
        help="One or more accessions (e.g., SAMEA112904734)",
    )
    parser.add_argument(
        "-f", "--file", type=str, default=None,
        help="File containing accessions, one per line",
    )


def parse_filters(pairs: List[str]) -> Dict[str, object]:
    filters: Dict[str, object] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"Filter must look like KEY=VALUE, got {pair!r}")
        if key in filters:
            previous = filters[key]
            filters[key] = (previous if isinstance(previous, list) else [previous]) + [value]
        else:
            filters[key] = value
    return filters


def read_accessions(args: argparse.Namespace) -> List[str]:
    accessions = list(args.accessions or [])
    if args.file:
        with open(args.file) as fh:
            for line in fh:
                stripped = line.strip()
                if stripped and not stripped.startswith("#"):
                    accessions.append(stripped)
    return accessions


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )

    grabber = HoloFoodGrabber(
        base_url=args.api_url or os.environ.get("HOLOFOOD_API_URL", DEFAULT_BASE_URL),
        page_size=args.page_size,
        cache_dir=args.cache_dir or os.environ.get("HOLOFOOD_CACHE_DIR"),
    )
    write = write_csv if args.fmt == "csv" else write_tsv

    try:
        if args.command == "search":
            try:
                filters = parse_filters(args.filter)
            except ValueError as exc:
                parser.error(str(exc))
            table = grabber.search(args.entity_type, filters, args.max_hits)
            write(table, args.output)
            print(f"Done. {len(table)} {args.entity_type} record(s).")
            print(f"Output: {args.output}")
            return

        try:
            accessions = read_accessions(args)
        except FileNotFoundError:
            print(f"Error: file not found: {args.file}", file=sys.stderr)
            sys.exit(1)
        if not accessions:
            parser.error("No accessions provided. Supply them as arguments or via --file.")

        print(f"Fetching {len(accessions)} accession(s)...")
        if args.command == "fetch":
            result = grabber.fetch_by_accession(
                args.entity_type, accessions, flatten=args.flatten, expand=args.expand
            )
            if args.flatten:
                write(result, args.output)
                print(f"Done. {len(result)} {args.entity_type} record(s).")
            else:
                write_table_set(result, args.output, args.fmt)
                print(f"Done. {len(result)} table(s), {len(result.not_found)} not found.")
        else:
            container = grabber.assemble_result(
                accessions, use_cache=args.use_cache, include_animals=not args.no_animals
            )
            tables = {"col_data": container.col_data, "sample_map": container.sample_map}
            for name, experiment in container.experiments.items():
                tables[f"{name}_assay"] = experiment.assay
                tables[f"{name}_row_data"] = experiment.row_data
            write_table_set(tables, args.output, args.fmt)
            print(f"Done. {len(container)} experiment(s): {', '.join(container.names()) or 'none'}.")
        print(f"Output: {args.output}")
    except HoloFoodError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
