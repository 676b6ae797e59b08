#!/usr/bin/env python3
"""
Semantic Indexer CLI

Index a workspace into a vector database and search it from the command line.
Settings come from the environment and an optional .env file.
"""

import argparse
import json
import logging
import sys
import threading
import time
from typing import List, Optional

from .config import load_config
from .errors import IndexerError, IndexingError
from .indexer import CodebaseIndexer, FileOutcome, IndexingResult, RunOutcome, create_indexer
from .retriever import format_results
from .status import IndexStatus, ProgressEvent, ProgressEventType

logger = logging.getLogger("semantic_indexer")

STATUS_ICONS = {
    IndexStatus.NO_WORKSPACE: "📭",
    IndexStatus.NOT_INDEXED: "⚪",
    IndexStatus.INDEXING: "🔄",
    IndexStatus.READY: "✅",
    IndexStatus.STALE: "🟡",
    IndexStatus.ERROR: "❌",
}


def setup_logging(verbose: bool = False, log_file: Optional[str] = None):
    """Send library logs to stderr, and to a file when asked."""
    formatter = logging.Formatter(
        '%(asctime)s | %(levelname)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)


def print_progress(event: ProgressEvent):
    if event.type is ProgressEventType.STARTED:
        print("🚀 Starting codebase indexing...")
    elif event.type is ProgressEventType.FILE_PROCESSED:
        print(f"📝 [{event.processed}/{event.total}] {event.file_path}")
    elif event.type is ProgressEventType.COMPLETED:
        print(f"✅ {event.message}")
    elif event.type is ProgressEventType.CANCELLED:
        print("🛑 Indexing cancelled")
    elif event.type is ProgressEventType.ERROR:
        print(f"❌ {event.message}")


def print_result(result: IndexingResult):
    print(f"📂 Files scanned: {result.files_discovered}")
    print(f"📝 Files indexed: {result.files_indexed}")
    print(f"⏭️  Unchanged: {result.files_unchanged}")
    if result.files_failed:
        print(f"⚠️  Skipped/failed: {result.files_failed}")
        for error in result.errors[:10]:
            print(f"   • {error}")
    print(f"🧩 Points written: {result.points_written}")
    print(f"⏱️  Time: {result.duration_seconds:.2f}s")


def run_index(indexer: CodebaseIndexer, force: bool) -> int:
    """Run a full index in a worker thread so Ctrl-C can cancel it cleanly."""
    outcome = {}
    indexer.add_progress_listener(print_progress)

    def worker():
        try:
            outcome["result"] = indexer.index_workspace(force=force)
        except IndexingError as e:
            outcome["error"] = e

    thread = threading.Thread(target=worker, name="indexing", daemon=True)
    thread.start()
    try:
        while thread.is_alive():
            thread.join(0.2)
    except KeyboardInterrupt:
        print("\n🛑 Stopping after the current step...")
        indexer.cancel()
        thread.join()

    if "error" in outcome:
        error = outcome["error"]
        if error.result is not None:
            print_result(error.result)
        return 1

    result = outcome["result"]
    if result.outcome is RunOutcome.NO_WORKSPACE:
        print("❌ No workspace folder. Pass --workspace or set SEMANTIC_INDEX_WORKSPACE")
        return 1
    if result.outcome is RunOutcome.ALREADY_INDEXING:
        print("⚠️  Indexing is already in progress")
        return 1

    print_result(result)
    return 0 if result.outcome is RunOutcome.COMPLETED else 130


def run_update(indexer: CodebaseIndexer, paths: List[str], remove: bool = False) -> int:
    exit_code = 0
    for path in paths:
        if remove:
            file_result = indexer.remove_file(path)
        else:
            file_result = indexer.update_file(path)

        if file_result.outcome is FileOutcome.FAILED:
            print(f"❌ {file_result.error}")
            exit_code = 1
        elif file_result.outcome is FileOutcome.INDEXED:
            print(f"✅ {file_result.file_path}: {file_result.points_written} points")
        else:
            print(f"• {file_result.file_path}: {file_result.outcome.value}")
    return exit_code


def run_status(indexer: CodebaseIndexer, as_json: bool) -> int:
    report = indexer.get_status()
    if as_json:
        print(json.dumps(report.to_dict(), indent=2))
        return 0

    print(f"{STATUS_ICONS[report.status]} Status: {report.status.value}")
    if report.stats is not None:
        print(f"   Repository: {report.stats.repo_id}")
        print(f"   Vectors: {report.stats.vector_count}")
        print(f"   Last commit: {report.stats.last_commit or 'n/a'}")
    if report.message:
        print(f"   {report.message}")
    return 0


def run_search(indexer: CodebaseIndexer, query: str, limit: Optional[int]) -> int:
    results = indexer.search(query, limit)
    print(format_results(results, query))
    return 0


def run_watch(indexer: CodebaseIndexer, interval: float) -> int:
    """Re-run incremental indexing on an interval until interrupted."""
    print(f"👀 Watching {indexer.workspace_root} (every {interval:.0f}s, Ctrl-C to stop)")
    try:
        while True:
            try:
                result = indexer.index_workspace()
                if result.files_indexed:
                    print(f"🔄 {result.summary()}")
            except IndexingError as e:
                print(f"⚠️  Sweep failed, retrying in {interval:.0f}s: {e}")
            time.sleep(interval)
    except KeyboardInterrupt:
        print("\n👋 Stopped watching")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Incremental semantic indexing for source trees')
    parser.add_argument('-w', '--workspace', type=str, help='Workspace folder to index')
    parser.add_argument('--env-file', type=str, help='Path to a .env file')
    parser.add_argument('--log-file', type=str, help='Also write logs to this file')
    parser.add_argument('-v', '--verbose', action='store_true', help='Verbose logging')

    commands = parser.add_subparsers(dest='command', required=True)

    index_parser = commands.add_parser('index', help='Index changed files in the workspace')
    index_parser.add_argument('--force', action='store_true', help='Reindex every file')

    update_parser = commands.add_parser('update', help='Reindex specific files')
    update_parser.add_argument('paths', nargs='+')

    remove_parser = commands.add_parser('remove', help='Drop files from the index')
    remove_parser.add_argument('paths', nargs='+')

    status_parser = commands.add_parser('status', help='Show index status')
    status_parser.add_argument('--json', action='store_true', help='Print the status object as JSON')

    search_parser = commands.add_parser('search', help='Semantic search over the index')
    search_parser.add_argument('query')
    search_parser.add_argument('-n', '--limit', type=int, default=None, help='Maximum results')

    commands.add_parser('check', help='Check that the embedding provider and vector store are reachable')

    commands.add_parser('clear', help='Forget indexed state so the next run reprocesses everything')

    watch_parser = commands.add_parser('watch', help='Keep the index up to date by polling')
    watch_parser.add_argument('--interval', type=float, default=5.0, help='Seconds between sweeps')

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose, args.log_file)

    try:
        config = load_config(args.env_file, workspace_root=args.workspace)
        indexer = create_indexer(config)

        if args.command == 'index':
            return run_index(indexer, args.force)
        if args.command == 'update':
            return run_update(indexer, args.paths)
        if args.command == 'remove':
            return run_update(indexer, args.paths, remove=True)
        if args.command == 'status':
            return run_status(indexer, args.json)
        if args.command == 'search':
            return run_search(indexer, args.query, args.limit)
        if args.command == 'check':
            indexer.validate_connections()
            print("✅ Embedding provider and vector store are reachable")
            return 0
        if args.command == 'clear':
            indexer.clear_index()
            print("🧹 Index state cleared")
            return 0
        if args.command == 'watch':
            return run_watch(indexer, args.interval)
    except IndexerError as e:
        logger.error(str(e))
        print(f"❌ Error: {e}")
        return 1

    return 2


if __name__ == "__main__":
    sys.exit(main())
