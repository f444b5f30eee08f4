"""Pipeline service module.

This module provides the high-level run API:
- run_pipeline(): Run all stages for one selector and record the outcome
- run_pipelines(): Run several selectors as independent concurrent runs
- list_runs() / get_run(): Query the run ledger

Each run owns work_dir/<run_uuid>/ (source, staging prefix, build tree,
logs, dist); concurrent runs share nothing but the database.
"""

from __future__ import annotations

import logging
import shutil
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import httpx
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from nvim_crossbuild.build.runner import CommandRunner, Deadline
from nvim_crossbuild.config import get_settings
from nvim_crossbuild.db import (
    create_all_tables,
    get_engine,
    get_session,
    get_session_factory,
)
from nvim_crossbuild.deps.io import load_catalog
from nvim_crossbuild.errors import INTERNAL_ERROR, RUN_NOT_FOUND, PipelineError
from nvim_crossbuild.pipeline.models import RunRecord, StageRecord
from nvim_crossbuild.pipeline.stages import STAGES, RunContext
from nvim_crossbuild.toolchain.resolver import parse_selector
from nvim_crossbuild.types import (
    PackageDescriptor,
    ReleaseRecord,
    RunStatus,
    Selector,
)

if TYPE_CHECKING:
    from nvim_crossbuild.config import Settings
    from nvim_crossbuild.deps.schema import DependencyCatalog

logger = logging.getLogger(__name__)

# Run subdirectories removed after success when keep_work_dir is off
DISPOSABLE_SUBDIRS = ("src", "deps", "staging", "build", "toolchain")


class RunNotFoundError(Exception):
    """Raised when a run is not found."""

    def __init__(self, run_id: str, code: str = RUN_NOT_FOUND) -> None:
        super().__init__(f"Run not found: {run_id}")
        self.run_id = run_id
        self.code = code


@dataclass(frozen=True)
class RunOutcome:
    """Result of one pipeline run.

    Attributes:
        run_id: Public run identifier.
        selector: Selector the run was started with.
        status: Final run status.
        work_dir: Run working directory.
        failed_stage: Stage that failed, if any.
        error: The failure, if any.
        version: Resolved release version.
        package: Assembled package, if packaging ran.
        release: Published release, if publishing ran.
    """

    run_id: str
    selector: Selector
    status: RunStatus
    work_dir: Path
    failed_stage: str | None = None
    error: PipelineError | None = None
    version: str | None = None
    package: PackageDescriptor | None = None
    release: ReleaseRecord | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is RunStatus.SUCCEEDED

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON output."""
        result: dict[str, Any] = {
            "run_id": self.run_id,
            "selector": self.selector.value,
            "status": self.status.value,
            "work_dir": str(self.work_dir),
            "version": self.version,
        }
        if self.error is not None:
            result["failed_stage"] = self.failed_stage
            result["error"] = self.error.to_dict()
        if self.package is not None:
            result["package"] = {
                "path": str(self.package.package_path),
                "versioned_path": str(self.package.versioned_path),
                "architecture": self.package.architecture.value,
                "sha256": self.package.sha256,
                "size_bytes": self.package.size_bytes,
                "depends": list(self.package.depends),
            }
        if self.release is not None:
            result["release"] = {
                "tag": self.release.tag,
                "name": self.release.name,
                "html_url": self.release.html_url,
                "assets": list(self.release.assets),
            }
        return result


def _start_stage(session: Session, run: RunRecord, name: str) -> StageRecord:
    stage = StageRecord(
        run=run,
        stage=name,
        status=RunStatus.RUNNING.value,
        started_at=datetime.now(),
    )
    session.add(stage)
    session.commit()
    return stage


def _finish_stage(
    stage: StageRecord,
    status: RunStatus,
    log_path: Path | None = None,
    error_code: str | None = None,
) -> None:
    stage.status = status.value
    stage.finished_at = datetime.now()
    if log_path is not None:
        stage.log_path = str(log_path)
    stage.error_code = error_code


def _record_outputs(run: RunRecord, ctx: RunContext) -> None:
    if ctx.spec is not None:
        run.architecture = ctx.spec.architecture.value
    run.version = ctx.version
    if ctx.package is not None:
        run.package_path = str(ctx.package.package_path)
        run.versioned_package_path = str(ctx.package.versioned_path)
        run.package_sha256 = ctx.package.sha256
        run.package_size_bytes = ctx.package.size_bytes
    if ctx.release is not None:
        run.release_tag = ctx.release.tag
        run.release_url = ctx.release.html_url


def _export_package(package: PackageDescriptor, dist_dir: Path) -> None:
    dist_dir.mkdir(parents=True, exist_ok=True)
    for path in (package.package_path, package.versioned_path, package.manifest_path):
        if path is not None and path.exists():
            shutil.copy2(path, dist_dir / path.name)
    logger.info("Exported %s to %s", package.package_path.name, dist_dir)


def _cleanup_work_dir(work_dir: Path) -> None:
    for name in DISPOSABLE_SUBDIRS:
        path = work_dir / name
        if path.exists():
            shutil.rmtree(path, ignore_errors=True)
    logger.debug("Removed build trees under %s", work_dir)


def ledger_session_factory(settings: Settings) -> sessionmaker[Session]:
    """Session factory for the configured run ledger, creating tables."""
    engine = get_engine(settings.db_url)
    create_all_tables(engine)
    return get_session_factory(engine)


def execute_stages(
    session: Session,
    run: RunRecord,
    ctx: RunContext,
) -> PipelineError | None:
    """Run every applicable stage in order, stopping at the first failure.

    Returns:
        The failure, or None if every stage succeeded.
    """
    for stage in STAGES:
        name = stage.name.value
        if not stage.applies(ctx):
            session.add(
                StageRecord(run=run, stage=name, status=RunStatus.SKIPPED.value)
            )
            continue

        record = _start_stage(session, run, name)
        log_path = ctx.runner.log_path(name)
        try:
            ctx.runner.deadline.check(name)
            logger.info("[%s] %s stage started", ctx.selector.value, name)
            stage.run(ctx)
        except PipelineError as e:
            if e.stage is None:
                e.stage = name
            _finish_stage(
                record,
                RunStatus.FAILED,
                log_path=e.log_path or (log_path if log_path.exists() else None),
                error_code=e.code,
            )
            logger.error("[%s] %s stage failed: %s", ctx.selector.value, name, e)
            return e
        except Exception:
            _finish_stage(record, RunStatus.FAILED, error_code=INTERNAL_ERROR)
            logger.exception("[%s] %s stage crashed", ctx.selector.value, name)
            raise

        _finish_stage(
            record,
            RunStatus.SUCCEEDED,
            log_path=log_path if log_path.exists() else None,
        )
        _record_outputs(run, ctx)
        session.commit()
    return None


def run_pipeline(
    selector: str | Selector,
    settings: Settings | None = None,
    session_factory: sessionmaker[Session] | None = None,
    version: str | None = None,
    publish: bool = False,
    skip_provision: bool = False,
    source_dir: Path | None = None,
    release_body: str | None = None,
    catalog: DependencyCatalog | None = None,
    client: httpx.Client | None = None,
) -> RunOutcome:
    """Run the full pipeline for one selector.

    Stage failures do not raise: they are recorded on the run and
    returned in the RunOutcome.

    Args:
        selector: 'native' or 'cross'.
        settings: Application settings.
        session_factory: Session factory for the run ledger.
        version: Release version to use instead of resolving it upstream.
        publish: Publish the package as a GitHub release.
        skip_provision: Skip installing host packages.
        source_dir: Existing checkout to build instead of cloning.
        release_body: Release notes to publish with; generated when omitted.
        catalog: Dependency catalog; the bundled one when omitted.
        client: HTTP client; one is created for the run when omitted.

    Returns:
        RunOutcome of the run.

    Raises:
        UnsupportedArchitectureError: If the selector is not recognized.
    """
    parsed = parse_selector(selector)
    if settings is None:
        settings = get_settings()
    if session_factory is None:
        session_factory = ledger_session_factory(settings)
    if catalog is None:
        catalog = load_catalog()

    run_uuid = str(uuid.uuid4())
    work_dir = settings.work_dir / run_uuid
    work_dir.mkdir(parents=True, exist_ok=True)

    runner = CommandRunner(
        work_dir / "logs",
        deadline=Deadline(settings.pipeline_timeout),
        command_timeout=settings.command_timeout,
    )
    owns_client = client is None
    if client is None:
        client = httpx.Client(timeout=settings.http_timeout)

    ctx = RunContext(
        selector=parsed,
        settings=settings,
        work_dir=work_dir,
        runner=runner,
        client=client,
        catalog=catalog,
        version_override=version,
        publish=publish,
        skip_provision=skip_provision,
        source_dir=source_dir,
        release_body=release_body,
    )

    error: PipelineError | None = None
    try:
        with get_session(session_factory) as session:
            run = RunRecord(
                run_uuid=run_uuid,
                selector=parsed.value,
                work_dir=str(work_dir),
            )
            session.add(run)
            run.mark_running()
            session.commit()
            logger.info("Started %s run %s in %s", parsed.value, run_uuid, work_dir)

            try:
                error = execute_stages(session, run, ctx)
            except Exception as e:
                crashed = [
                    s.stage for s in run.stages if s.error_code == INTERNAL_ERROR
                ]
                run.mark_failed(
                    stage=crashed[-1] if crashed else None,
                    error_code=INTERNAL_ERROR,
                    message=str(e),
                )
                session.commit()
                raise

            if error is None:
                run.mark_succeeded()
                logger.info("Run %s succeeded", run_uuid)
            else:
                run.mark_failed(
                    stage=error.stage,
                    error_code=error.code,
                    message=error.message,
                    diagnostics=error.diagnostics,
                    log_path=str(error.log_path) if error.log_path else None,
                )
                logger.error(
                    "Run %s failed at %s: %s", run_uuid, error.stage, error.code
                )
    finally:
        if owns_client:
            client.close()

    if error is None and ctx.package is not None:
        _export_package(ctx.package, settings.dist_dir)
    if error is None and not settings.keep_work_dir:
        _cleanup_work_dir(work_dir)

    return RunOutcome(
        run_id=run_uuid,
        selector=parsed,
        status=RunStatus.SUCCEEDED if error is None else RunStatus.FAILED,
        work_dir=work_dir,
        failed_stage=error.stage if error else None,
        error=error,
        version=ctx.version,
        package=ctx.package,
        release=ctx.release,
    )


def run_pipelines(
    selectors: list[str | Selector],
    settings: Settings | None = None,
    session_factory: sessionmaker[Session] | None = None,
    **kwargs: Any,
) -> list[RunOutcome]:
    """Run several selectors as independent concurrent pipelines.

    All selectors are validated before any run starts. Concurrency is
    bounded by settings.max_concurrent_builds.

    Returns:
        One RunOutcome per selector, in input order.

    Raises:
        UnsupportedArchitectureError: If any selector is not recognized.
    """
    parsed = [parse_selector(s) for s in selectors]
    if not parsed:
        return []
    if settings is None:
        settings = get_settings()
    if session_factory is None:
        session_factory = ledger_session_factory(settings)
    if kwargs.get("catalog") is None:
        kwargs["catalog"] = load_catalog()

    if len(parsed) == 1:
        return [run_pipeline(parsed[0], settings, session_factory, **kwargs)]

    workers = min(len(parsed), settings.max_concurrent_builds)
    logger.info("Running %d pipelines with %d workers", len(parsed), workers)
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="run") as pool:
        futures = [
            pool.submit(run_pipeline, s, settings, session_factory, **kwargs)
            for s in parsed
        ]
        return [f.result() for f in futures]


def get_run(session: Session, run_id: str) -> RunRecord:
    """Get a run record by its public ID.

    Args:
        session: Database session.
        run_id: Run UUID.

    Returns:
        RunRecord instance.

    Raises:
        RunNotFoundError: If run not found.
    """
    stmt = select(RunRecord).where(RunRecord.run_uuid == run_id)
    run = session.execute(stmt).scalar_one_or_none()
    if run is None:
        raise RunNotFoundError(run_id)
    return run


def list_runs(
    session: Session,
    status: RunStatus | None = None,
    selector: Selector | None = None,
    limit: int = 100,
) -> list[RunRecord]:
    """List run records with optional filters, newest first.

    Args:
        session: Database session.
        status: Filter by status.
        selector: Filter by selector.
        limit: Maximum results to return.

    Returns:
        List of RunRecord instances.
    """
    stmt = select(RunRecord)

    if status is not None:
        stmt = stmt.where(RunRecord.status == status.value)
    if selector is not None:
        stmt = stmt.where(RunRecord.selector == selector.value)

    stmt = stmt.order_by(RunRecord.id.desc()).limit(limit)

    return list(session.execute(stmt).scalars().all())


__all__ = [
    "RunNotFoundError",
    "RunOutcome",
    "execute_stages",
    "get_run",
    "ledger_session_factory",
    "list_runs",
    "run_pipeline",
    "run_pipelines",
]
