"""Command-line interface for the expense pipeline."""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .config import Config
from .pipeline import WorkflowPipeline
from .result import Err
from .storage import DatabaseClient


def process_eml_file(pipeline: WorkflowPipeline, eml_path: Path) -> bool:
    """Process a single .eml file through the pipeline.

    Args:
        pipeline: Initialized pipeline
        eml_path: Path to .eml file

    Returns:
        bool: Whether the run succeeded
    """
    print(f"\nProcessing: {eml_path.name}")

    with open(eml_path, 'rb') as f:
        email_bytes = f.read()

    outcome = pipeline.run(email_bytes)

    if isinstance(outcome, Err):
        print(f"  FAILED at {outcome.error.step or 'unknown step'}: {outcome.error.message}")
        return False

    result = outcome.value
    if result.already_processed:
        print(f"  Already processed (email id {result.email_id})")
        return True

    print(f"  Email id: {result.email_id}, expense id: {result.expense_id} ({result.expense_status.value})")
    if not result.finalized:
        print("  Warning: email status could not be finalized")

    timings = ", ".join(f"{name}: {secs:.3f}s" for name, secs in result.step_timings.items())
    print(f"  Performance: {timings}")
    return True


def collect_eml_files(paths: list[Path]) -> list[Path]:
    """Expand directories into their .eml files."""
    files = []
    for path in paths:
        if path.is_dir():
            files.extend(sorted(path.glob("*.eml")))
        else:
            files.append(path)
    return files


def main(argv: Optional[list[str]] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(prog="expensemail", description=__doc__)
    subcommands = parser.add_subparsers(dest="command", required=True)
    subcommands.add_parser("init-db", help="create tables and seed categories")
    process = subcommands.add_parser("process", help="run .eml files through the pipeline")
    process.add_argument("paths", nargs="+", type=Path, help=".eml files or directories")
    args = parser.parse_args(argv)

    load_dotenv()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = Config.from_env()
    db = DatabaseClient(config.database_url)

    try:
        if args.command == "init-db":
            db.initialize()
            print("Database initialized")
            return 0

        pipeline = WorkflowPipeline.from_config(config, db=db)
        eml_files = collect_eml_files(args.paths)
        failures = sum(1 for eml in eml_files if not process_eml_file(pipeline, eml))

        print("\n" + "=" * 80)
        print(f"Processed {len(eml_files)} email(s), {failures} failed")
        return 1 if failures else 0
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
