"""Run ledger ORM models.

This module defines the RunRecord and StageRecord models storing one
pipeline run per architecture and the outcome of each of its stages.
"""

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from nvim_crossbuild.db import Base
from nvim_crossbuild.types import RunStatus


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class RunRecord(Base):
    """ORM model for pipeline runs.

    Attributes:
        id: Primary key.
        run_uuid: Public identifier, also the run's working directory name.
        selector: Requested selector (native, cross).
        architecture: Target architecture once resolved.
        status: Run status (pending, running, succeeded, failed).
        requested_at: Timestamp when the run was requested.
        started_at: Timestamp when the first stage started.
        finished_at: Timestamp when the run finished.
        work_dir: Run working directory.
        failed_stage: Stage that failed, if any.
        error_code: Stable error code of the failure.
        error_message: Error message of the failure.
        diagnostics: Tail of the failing tool's output.
        log_path: Log file of the failing command.
        version: Resolved release version.
        package_path: Canonical package path.
        versioned_package_path: Version-qualified package path.
        package_sha256: SHA-256 of the package.
        package_size_bytes: Package size.
        release_tag: Tag of the published release.
        release_url: URL of the published release.
    """

    __tablename__ = "run_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_uuid: Mapped[str] = mapped_column(
        String(36), nullable=False, unique=True, index=True
    )

    selector: Mapped[str] = mapped_column(String(20), nullable=False)
    architecture: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Status and timing
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RunStatus.PENDING.value, index=True
    )
    requested_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    work_dir: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Error tracking
    failed_stage: Mapped[str | None] = mapped_column(String(20), nullable=True)
    error_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    diagnostics: Mapped[str | None] = mapped_column(Text, nullable=True)
    log_path: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Outputs
    version: Mapped[str | None] = mapped_column(String(64), nullable=True)
    package_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    versioned_package_path: Mapped[str | None] = mapped_column(
        String(500), nullable=True
    )
    package_sha256: Mapped[str | None] = mapped_column(String(64), nullable=True)
    package_size_bytes: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    release_tag: Mapped[str | None] = mapped_column(String(200), nullable=True)
    release_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    stages: Mapped[list["StageRecord"]] = relationship(
        "StageRecord",
        back_populates="run",
        cascade="all, delete-orphan",
        order_by="StageRecord.id",
    )

    __table_args__ = (Index("ix_run_records_selector_status", "selector", "status"),)

    def __repr__(self) -> str:
        """Return string representation of RunRecord."""
        return (
            f"<RunRecord(id={self.id}, run_uuid='{self.run_uuid}', "
            f"selector='{self.selector}', status='{self.status}')>"
        )

    def mark_running(self) -> None:
        """Mark this run as running."""
        self.status = RunStatus.RUNNING.value
        self.started_at = datetime.now()

    def mark_succeeded(self) -> None:
        """Mark this run as succeeded."""
        self.status = RunStatus.SUCCEEDED.value
        self.finished_at = datetime.now()

    def mark_failed(
        self,
        stage: str | None = None,
        error_code: str | None = None,
        message: str | None = None,
        diagnostics: str | None = None,
        log_path: str | None = None,
    ) -> None:
        """Mark this run as failed.

        Args:
            stage: Stage that failed.
            error_code: Stable error code.
            message: Error message details.
            diagnostics: Tail of the failing tool's output.
            log_path: Log file of the failing command.
        """
        self.status = RunStatus.FAILED.value
        self.finished_at = datetime.now()
        self.failed_stage = stage
        self.error_code = error_code
        self.error_message = message
        self.diagnostics = diagnostics
        self.log_path = log_path

    def is_succeeded(self) -> bool:
        """Check if this run succeeded."""
        return self.status == RunStatus.SUCCEEDED.value

    def to_dict(self) -> dict[str, object]:
        """Convert to dictionary for JSON output."""
        return {
            "run_id": self.run_uuid,
            "selector": self.selector,
            "architecture": self.architecture,
            "status": self.status,
            "requested_at": _iso(self.requested_at),
            "started_at": _iso(self.started_at),
            "finished_at": _iso(self.finished_at),
            "work_dir": self.work_dir,
            "failed_stage": self.failed_stage,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "diagnostics": self.diagnostics,
            "log_path": self.log_path,
            "version": self.version,
            "package_path": self.package_path,
            "versioned_package_path": self.versioned_package_path,
            "package_sha256": self.package_sha256,
            "package_size_bytes": self.package_size_bytes,
            "release_tag": self.release_tag,
            "release_url": self.release_url,
            "stages": [s.to_dict() for s in self.stages],
        }


class StageRecord(Base):
    """ORM model for one stage of a run.

    Attributes:
        id: Primary key.
        run_id: Foreign key to RunRecord.
        stage: Stage name.
        status: Stage status (running, succeeded, failed, skipped).
        started_at: Timestamp when the stage started.
        finished_at: Timestamp when the stage finished.
        log_path: Log file of the stage, if it ran commands.
        error_code: Error code if the stage failed.
    """

    __tablename__ = "stage_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("run_records.id"), nullable=False, index=True
    )
    stage: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RunStatus.PENDING.value
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    log_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    error_code: Mapped[str | None] = mapped_column(String(100), nullable=True)

    run: Mapped["RunRecord"] = relationship("RunRecord", back_populates="stages")

    def __repr__(self) -> str:
        """Return string representation of StageRecord."""
        return (
            f"<StageRecord(id={self.id}, run_id={self.run_id}, "
            f"stage='{self.stage}', status='{self.status}')>"
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "stage": self.stage,
            "status": self.status,
            "started_at": _iso(self.started_at),
            "finished_at": _iso(self.finished_at),
            "log_path": self.log_path,
            "error_code": self.error_code,
        }


__all__ = ["RunRecord", "StageRecord"]
