import argparse
import asyncio
import logging
import os
import signal
import sys

from core.config import Settings
from core.embeddings import get_backend
from core.errors import ConfigurationError, EmbeddingError
from core.search import SimilaritySearchService, search_with_retry
from db.setup import init_db, make_engine
from db.store import ColorStore
from ingest.pipeline import IngestionPipeline
from ingest.source import count_rows


def run_init_db(settings):
    print("Initializing database...")
    init_db(make_engine(settings.database_url), settings)
    print("Database initialized.")


def build_pipeline(settings, args):
    backend = get_backend(settings, args.backend)
    store = ColorStore(make_engine(settings.database_url))
    overrides = {"progress": not args.no_progress}
    if args.batch_size:
        overrides["batch_size"] = args.batch_size
    return IngestionPipeline.from_settings(settings, backend, store, **overrides)


def _csv_path(settings, args):
    csv_path = args.csv or settings.csv_path
    if not os.path.isfile(csv_path):
        raise ConfigurationError(f"CSV file not found: {csv_path}")
    return csv_path


def _handle_interrupt(pipeline):
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, pipeline.cancel)
    except NotImplementedError:
        # Windows event loops; Ctrl+C will abort instead
        pass


async def run_ingest(settings, args):
    csv_path = _csv_path(settings, args)
    pipeline = build_pipeline(settings, args)
    _handle_interrupt(pipeline)
    print(
        f"Ingesting rows [{args.start}, {args.stop}) of {csv_path} "
        f"with {pipeline.backend.name}"
    )
    report = await pipeline.ingest_range(csv_path, args.start, args.stop)
    print_report(report)
    return report


async def run_full(settings, args):
    """Ingest the file (up to --stop) as contiguous ranges of --step rows."""
    csv_path = _csv_path(settings, args)
    pipeline = build_pipeline(settings, args)
    _handle_interrupt(pipeline)
    total = count_rows(csv_path)
    if args.stop is not None:
        total = min(total, args.stop)
    print(
        f"--- Ingesting rows [{args.start}, {total}) of {csv_path} "
        f"in steps of {args.step} ---"
    )
    failed = 0
    for start in range(args.start, total, args.step):
        stop = min(start + args.step, total)
        report = await pipeline.ingest_range(csv_path, start, stop)
        failed += report.failed
        print(f"Updated rows {start} to {report.next_offset} ({report.failed} failed)")
        if report.cancelled:
            print(f"Interrupted. Resume with --run-full --start {report.next_offset}")
            break
    print(f"--- Full ingestion complete: {failed} failed rows ---")


def print_report(report):
    print(report.summary())
    for failure in report.failures:
        print(f"  row {failure.offset} {failure.name!r} {failure.stage}: {failure.reason}")
    if report.cancelled:
        print(f"Interrupted. Resume with --start {report.next_offset}")


async def run_search(settings, args):
    backend = get_backend(settings, args.backend)
    store = ColorStore(make_engine(settings.database_url))
    service = SimilaritySearchService.from_settings(settings, backend, store)
    result = await search_with_retry(service, args.search, k=args.k)
    if not result.ok:
        print(f"Search failed ({result.status.value}): {result.error}")
        return 1
    print(f"Top {len(result.matches)} colors for {result.query!r} ({result.backend}):")
    for rank, match in enumerate(result.matches, start=1):
        star = "*" if match.is_curated else " "
        print(f"{rank:>3}. {star} #{match.hex_color} {match.name} ({match.distance:.4f})")
    return 0


async def run_embed_test(settings, args):
    backend = get_backend(settings, args.backend)
    try:
        embedding = await backend.embed(args.embed_test)
    except EmbeddingError as e:
        print(f"Embedding failed: {e}")
        return 1
    print(embedding[:8], "...")
    print(f"{backend.model}: {len(embedding)} dimensions")
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(description="Color Genie: color name embeddings")
    parser.add_argument(
        "--init-db",
        action="store_true",
        help="Create tables, vector indexes and search functions.",
    )
    parser.add_argument(
        "--ingest", action="store_true", help="Ingest one row range of the CSV."
    )
    parser.add_argument(
        "--run-full",
        action="store_true",
        help="Ingest the whole CSV as contiguous ranges of --step rows.",
    )
    parser.add_argument("--search", type=str, help="Find colors matching a phrase.")
    parser.add_argument(
        "--embed-test", type=str, help="Embed a text and print its dimensions."
    )
    parser.add_argument(
        "--backend", type=str, help="Embedding backend: openai or mistral."
    )
    parser.add_argument("--csv", type=str, help="Source CSV path.")
    parser.add_argument(
        "--start", type=int, default=0, help="First data row (0-based)."
    )
    parser.add_argument("--stop", type=int, help="Data row to stop before (also caps --run-full).")
    parser.add_argument(
        "--step", type=int, default=1000, help="Rows per range for --run-full."
    )
    parser.add_argument("--batch-size", type=int, help="Rows per embedding request.")
    parser.add_argument("--k", type=int, help="Number of matches to return.")
    parser.add_argument(
        "--no-progress", action="store_true", help="Hide the progress bar."
    )
    args = parser.parse_args(argv)

    try:
        settings = Settings.from_env()
        logging.basicConfig(
            level=settings.log_level.upper(),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        if args.init_db:
            run_init_db(settings)
        elif args.ingest:
            report = asyncio.run(run_ingest(settings, args))
            return 1 if report.failed and not report.stored else 0
        elif args.run_full:
            asyncio.run(run_full(settings, args))
        elif args.search:
            return asyncio.run(run_search(settings, args))
        elif args.embed_test:
            return asyncio.run(run_embed_test(settings, args))
        else:
            parser.print_help()
    except ConfigurationError as e:
        print(f"Configuration error: {e}")
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
