# vault_search/main.py

import argparse
import logging
import sys
from typing import List, Optional

import toml
from pydantic import ValidationError

from shared.config import Config
from shared.errors import ConfigError, VaultSearchError
from shared.initializer import create_arg_parser, initialize_service_from_args

logger = logging.getLogger(__name__)

PREVIEW_CHARS = 200


def build_parser() -> argparse.ArgumentParser:
    parser = create_arg_parser()
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init", help="Create the data directories and config file.")

    index_parser = subparsers.add_parser("index", help="Index a directory of notes.")
    index_parser.add_argument("path", help="Directory to index.")
    index_parser.add_argument(
        "--force", action="store_true", help="Reindex files even if unchanged."
    )

    watch_parser = subparsers.add_parser(
        "watch", help="Index a directory, then keep the index current."
    )
    watch_parser.add_argument("path", help="Directory to watch.")

    search_parser = subparsers.add_parser("search", help="Search the index.")
    search_parser.add_argument("query", nargs="+", help="Query text; file:<name> filters.")
    search_parser.add_argument(
        "-n", "--limit", type=int, default=None, help="Maximum results to show."
    )
    search_parser.add_argument(
        "--scope",
        action="append",
        default=None,
        metavar="RELATIVE_PATH",
        help="Restrict the search to this file; repeat for several files.",
    )

    subparsers.add_parser("status", help="Show what is indexed.")
    return parser


def handle_init(config: Config) -> None:
    if config.is_initialized():
        print(f"vault-search is already initialized at: {config.get_base_dir()}")
        return

    config.init_directories()
    config_file = config.get_base_dir() / "config.toml"
    if not config_file.exists():
        with open(config_file, "w", encoding="utf-8") as f:
            toml.dump(config.model_dump(exclude_none=True), f)

    print(f"Created data directory: {config.get_base_dir()}")
    print(f"Configuration written to: {config_file}")
    print("Next steps:")
    print("  1. Index your notes: vault-search index /path/to/notes")
    print("  2. Or watch for changes: vault-search watch /path/to/notes")


def print_results(query: str, results: list) -> None:
    print(f'Searching for: "{query}"')
    if not results:
        print("\nNo results found.")
        return
    print(f"\nFound {len(results)} results:")
    for i, (entry, score) in enumerate(results, start=1):
        print(f"\n{i}. {entry.file_path} (similarity: {score:.3f})")
        if entry.context:
            print(f"   Context: {entry.context}")
        preview = " ".join(entry.text.split())
        if len(preview) > PREVIEW_CHARS:
            preview = preview[:PREVIEW_CHARS] + "..."
        print(f"   Preview: {preview}")
        print(f"   Lines: {entry.start_line}-{entry.end_line}")


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s:%(name)s:%(message)s",
    )

    try:
        config, service = initialize_service_from_args(args)

        if args.command == "init":
            handle_init(config)

        elif args.command == "index":
            report = service.index_directory(args.path, force=args.force)
            if report.model_reset:
                print("Embedding model changed; the index was rebuilt from scratch.")
            print("Indexing complete!")
            print(f"  Processed: {report.processed} files")
            print(f"  Chunks indexed: {report.chunks_indexed}")
            print(f"  Skipped (unchanged): {report.skipped} files")
            if report.removed:
                print(f"  Removed (deleted): {report.removed} files")
            if report.failed:
                print(f"  Errors: {report.failed} files")
                for failed in report.failed_files:
                    print(f"    {failed}")

        elif args.command == "watch":
            print(f"Watching directory: {args.path}")
            print("Press Ctrl+C to stop watching...")
            service.watch(args.path)

        elif args.command == "search":
            if args.limit is not None:
                try:
                    config.search.max_results = args.limit
                except ValidationError as e:
                    raise ConfigError(f"Invalid --limit {args.limit}: {e}") from e
            query = " ".join(args.query)
            print_results(query, service.search(query, scope=args.scope))

        elif args.command == "status":
            for key, value in service.status().items():
                print(f"{key}: {value}")

    except VaultSearchError as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


def run() -> None:
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("Stopped.")


if __name__ == "__main__":
    run()
