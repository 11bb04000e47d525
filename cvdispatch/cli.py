#!/usr/bin/env python3
# Copyright 2025 Ivo Mateev
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Command-line interface for cvdispatch.

Three phases:
1. Gather user requirements (parse args) -> CliOptions
2. Prepare the execution environment (config, store, mailer, worker)
3. Run every job payload through the worker pool
"""

from __future__ import annotations

import argparse
import json
import traceback
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from .completion import CompletionClient
from .config import PipelineConfig
from .errors import IntakeError
from .extractors import ExtractionCache, InMemoryExtractionCache, list_extractors, preprocess_upload
from .intake import IntakeValidator
from .ledger import SqliteApplicationStore
from .logging_utils import LOG, VERBOSITY_NORMAL, mask_identifier, setup_logging
from .metrics import MetricsRegistry
from .notifications import LoggingMailer, LoggingRequesterChannel, SmtpMailer
from .pipeline import build_pipeline, build_verifier
from .reaper import ResourceReaper
from .shared import ApplicationRequest
from .timeouts import TimeoutRunner
from .worker import ApplicationWorker, JobResult, JobStatus


@dataclass(frozen=True)
class CliOptions:
    payloads: List[Path]
    db: Optional[Path] = None
    dry_run: bool = False
    workers: Optional[int] = None
    debug: bool = False
    verbosity: int = VERBOSITY_NORMAL
    log_file: Optional[str] = None
    list_extractors: bool = False
    retention: Optional[float] = None
    keep_documents: bool = False


def gather_user_requirements(argv: Optional[List[str]] = None) -> CliOptions:
    """
    Phase 1: Parse command-line arguments. No side effects.
    """
    parser = argparse.ArgumentParser(
        description="Run application fulfillment jobs: extract the applicant, write cover letters, "
        "record applications and email recruiters.",
        epilog="""
Examples:
  Run one job without sending real email:
    cvdispatch --payload job.json --dry-run

  Run several jobs against a specific database with 3 workers:
    cvdispatch --payload a.json b.json --db data/applications.db --workers 3

  Delete uploaded documents 30 seconds after dispatch instead of waiting
  the full retention window:
    cvdispatch --payload job.json --retention 30
""",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--payload", nargs="+", type=Path, default=[], metavar="JSON",
                        help="Job payload file(s). A file may hold one job object or a list of them.")
    parser.add_argument("--db", type=Path, help="SQLite database path (default: $CVDISPATCH_DB or cvdispatch.db)")
    parser.add_argument("--dry-run", action="store_true", help="Log outgoing email instead of sending it")
    parser.add_argument("--workers", type=int, help="Number of jobs processed concurrently")
    parser.add_argument("--debug", action="store_true", help="Verbose logging with stack traces")
    parser.add_argument("--verbosity", type=int, default=VERBOSITY_NORMAL, choices=(0, 1, 2),
                        help="0=warnings only, 1=progress (default), 2=debug")
    parser.add_argument("--log-file", help="Also write full logs to this file")
    parser.add_argument("--list-extractors", action="store_true", help="List extraction strategies and exit")
    parser.add_argument("--retention", type=float, metavar="SECONDS",
                        help="Seconds to keep each document after dispatch (default: 600). "
                        "The command waits for pending deletions before exiting.")
    parser.add_argument("--keep-documents", action="store_true",
                        help="Exit without waiting for pending document deletions")

    args = parser.parse_args(argv)
    if not args.payload and not args.list_extractors:
        parser.error("--payload is required")
    if args.workers is not None and args.workers < 1:
        parser.error("--workers must be at least 1")
    if args.retention is not None and args.retention < 0:
        parser.error("--retention must not be negative")

    return CliOptions(
        payloads=list(args.payload),
        db=args.db,
        dry_run=args.dry_run,
        workers=args.workers,
        debug=args.debug,
        verbosity=args.verbosity,
        log_file=args.log_file,
        list_extractors=args.list_extractors,
        retention=args.retention,
        keep_documents=args.keep_documents,
    )


def load_payloads(paths: List[Path]) -> List[Dict[str, Any]]:
    payloads: List[Dict[str, Any]] = []
    for path in paths:
        if not path.is_file():
            raise FileNotFoundError(f"Payload file not found: {path}")
        data = json.loads(path.read_text(encoding="utf-8"))
        if isinstance(data, list):
            payloads.extend(data)
        else:
            payloads.append(data)
    return payloads


def prepare_config(options: CliOptions, base: Optional[PipelineConfig] = None) -> PipelineConfig:
    """Phase 2a: environment configuration plus CLI overrides."""
    config = base or PipelineConfig.from_env()
    if options.db is not None:
        config = replace(config, db_path=options.db)
    if options.workers is not None:
        config = replace(config, worker=replace(config.worker, concurrency=options.workers))
    if options.retention is not None:
        config = replace(config, reaper=replace(config.reaper, retention_s=options.retention))
    return config


def _summarize(results: List[JobResult]) -> None:
    counts = {status: sum(1 for r in results if r.status == status) for status in JobStatus}
    LOG.info("=" * 60)
    LOG.info(
        "Completed: %d/%d jobs (%d rejected, %d failed, %d dead-lettered)",
        counts[JobStatus.COMPLETED], len(results), counts[JobStatus.REJECTED],
        counts[JobStatus.FAILED], counts[JobStatus.DEAD_LETTERED],
    )
    for r in results:
        if r.status in (JobStatus.FAILED, JobStatus.DEAD_LETTERED):
            LOG.info("  - %s: %s", r.job_id, r.error)


def preprocess_payloads(
    payloads: List[Dict[str, Any]],
    cache: ExtractionCache,
    config: PipelineConfig,
) -> int:
    """
    Ingest uploads the way the upload handler would: read each document once
    and cache the heuristic applicant under the requester's key, so the
    cascade's cache strategy can answer without another extraction.

    Payloads that cannot be parsed or read are left for the worker to report.
    A requester with more than one distinct document in the batch is not
    cached, since the key cannot tell the documents apart.

    Returns:
        Number of requesters cached
    """
    documents: Dict[str, Set[Path]] = {}
    requests: List[ApplicationRequest] = []
    for payload in payloads:
        try:
            request = ApplicationRequest.from_payload(payload)
        except IntakeError as e:
            LOG.debug("Skipping pre-processing: %s", e)
            continue
        requests.append(request)
        documents.setdefault(request.requester_identifier, set()).add(request.document.path)

    intake = IntakeValidator()
    verifier = build_verifier(config.extraction)
    done: Dict[str, bool] = {}
    for request in requests:
        requester = request.requester_identifier
        if requester in done:
            continue
        if len(documents[requester]) > 1:
            LOG.info("Not pre-processing %s: several documents in this batch", mask_identifier(requester))
            done[requester] = False
            continue
        try:
            text = intake.validate(request.document, requester)
        except IntakeError as e:
            LOG.debug("Skipping pre-processing: %s", e)
            done[requester] = False
            continue
        applicant = preprocess_upload(cache, requester, text, verifier=verifier, ttl_s=config.extraction.cache_ttl_s)
        done[requester] = applicant is not None

    cached = sum(1 for ok in done.values() if ok)
    LOG.info("Pre-processed %d/%d requester upload(s)", cached, len(done))
    return cached


def release_documents(reaper: ResourceReaper, options: CliOptions, retention_s: float) -> None:
    """Let pending deletions fire before the process exits, unless told to keep the documents."""
    if options.keep_documents:
        reaper.cancel_all()
        return
    if reaper.pending:
        LOG.info(
            "Waiting up to %.0fs for %d pending document deletion(s); use --keep-documents to skip",
            retention_s, reaper.pending,
        )
    reaper.drain()


def execute(options: CliOptions, config: PipelineConfig) -> int:
    """
    Phase 3: run all payloads.

    Returns:
        Exit code (0 = every job completed or was rejected, 1 = any job dead-lettered)
    """
    payloads = load_payloads(options.payloads)
    if not payloads:
        LOG.error("No jobs found in %s", ", ".join(str(p) for p in options.payloads))
        return 1

    metrics = MetricsRegistry()
    store = SqliteApplicationStore(config.db_path)
    runner = TimeoutRunner()
    io_runner = TimeoutRunner(thread_name_prefix="io")
    reaper = ResourceReaper(config.reaper.retention_s)
    cache = InMemoryExtractionCache()
    mailer = LoggingMailer() if options.dry_run else SmtpMailer(config.smtp)
    client = CompletionClient.from_settings(config.openai) if config.openai.api_key else None
    if client is None:
        LOG.warning("OPENAI_API_KEY not set; using heuristic extraction and template cover letters only")

    preprocess_payloads(payloads, cache, config)
    pipeline = build_pipeline(
        config,
        store=store,
        mailer=mailer,
        channel=LoggingRequesterChannel(),
        runner=runner,
        metrics=metrics,
        reaper=reaper,
        client=client,
        cache=cache,
        io_runner=io_runner,
    )
    worker = ApplicationWorker(pipeline, settings=config.worker)
    try:
        results = worker.run_all(payloads)
    finally:
        worker.shutdown()
        runner.shutdown()
        io_runner.shutdown()
        store.close()
        release_documents(reaper, options, config.reaper.retention_s)

    _summarize(results)
    metrics.log_summary()
    return 1 if any(r.status == JobStatus.DEAD_LETTERED for r in results) else 0


def main(argv: Optional[List[str]] = None) -> int:
    options = gather_user_requirements(argv)

    if options.log_file:
        Path(options.log_file).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)
    setup_logging(options.debug, log_file=options.log_file, verbosity=options.verbosity)

    if options.list_extractors:
        for item in list_extractors():
            print(f"{item['name']:<12} {item['description']}")
        return 0

    try:
        config = prepare_config(options)
        return execute(options, config)
    except Exception as e:
        LOG.error(str(e))
        if options.debug:
            LOG.error(traceback.format_exc())
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
