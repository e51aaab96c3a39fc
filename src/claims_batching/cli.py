"""Command line entry point for batching runs and cost estimates.

    claims-batching process [--submitted-by USER] [--json]
    claims-batching estimate --insurer CODE --specialty NAME --priority N --amount X [--date YYYY-MM-DD]
    claims-batching init-db
"""
import argparse
import asyncio
import json
import sys
from datetime import date

import structlog

from claims_batching.cost import estimate_cost
from claims_batching.exceptions import BatchingError
from claims_batching.processor import ClaimBatchingProcessor
from claims_batching.settings import Settings, configure_logging
from claims_batching.store import PostgresClaimStore

logger = structlog.get_logger()


async def process_command(args, settings: Settings) -> int:
    """Batch pending claims for every insurer."""
    store = await PostgresClaimStore.create(settings)
    try:
        processor = ClaimBatchingProcessor(store, max_concurrent_insurers=settings.max_concurrent_insurers)
        results = await processor.process_pending(submitted_by=args.submitted_by)
    finally:
        await store.close()

    if args.json:
        print(json.dumps({
            'batches': {code: [s.as_dict() for s in summaries] for code, summaries in results.items()},
            'summary': processor.metrics.summary(),
        }, indent=2))
    elif not results:
        print("No pending claims to process.")
    else:
        for code, summaries in results.items():
            print(f"{code}: {len(summaries)} batches")
            for s in summaries:
                print(f"  {s.batch_id}: {s.claim_count} claims, value {s.total_value:.2f}, cost {s.processing_cost:.2f}")

    for code, failure in processor.metrics.failures.items():
        print(f"Failed to batch claims for {code}: {failure}", file=sys.stderr)
    return 1 if processor.metrics.failures else 0


async def estimate_command(args, settings: Settings) -> int:
    """Show the cost breakdown for a prospective claim."""
    store = await PostgresClaimStore.create(settings)
    try:
        insurer = await store.get_insurer(args.insurer)
    finally:
        await store.close()

    on = date.fromisoformat(args.date) if args.date else date.today()
    estimate = estimate_cost(args.specialty, args.priority, args.amount, insurer, on)
    print(json.dumps(estimate.as_dict(), indent=2))
    return 0


async def init_db_command(args, settings: Settings) -> int:
    """Create the insurers and claims tables if they do not exist."""
    store = await PostgresClaimStore.create(settings)
    try:
        await store.initialize_schema()
    finally:
        await store.close()
    logger.info("Schema initialized")
    print("Schema ready.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="claims-batching", description="Batch pending insurance claims")
    subparsers = parser.add_subparsers(dest="command", required=True)

    process = subparsers.add_parser("process", help="Batch all pending claims")
    process.add_argument("--submitted-by", default=None, help="Only batch claims from this submitter")
    process.add_argument("--json", action="store_true", help="Print results as JSON")
    process.set_defaults(handler=process_command)

    estimate = subparsers.add_parser("estimate", help="Estimate the processing cost of a claim")
    estimate.add_argument("--insurer", required=True, help="Insurer code")
    estimate.add_argument("--specialty", required=True)
    estimate.add_argument("--priority", type=int, required=True)
    estimate.add_argument("--amount", type=float, required=True)
    estimate.add_argument("--date", default=None, help="Processing date (YYYY-MM-DD), defaults to today")
    estimate.set_defaults(handler=estimate_command)

    init_db = subparsers.add_parser("init-db", help="Create the claims tables")
    init_db.set_defaults(handler=init_db_command)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings()
    configure_logging(settings)
    try:
        return asyncio.run(args.handler(args, settings))
    except BatchingError as e:
        logger.error("Command failed", command=args.command, error=str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
