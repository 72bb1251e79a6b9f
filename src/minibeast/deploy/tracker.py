"""In-memory step status tracking for provisioning runs.

The tracker is the only state shared between a running pipeline task and
concurrent status pollers. Each record carries its own lock; callers only
ever receive deep copies, never references into tracker storage.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from minibeast.lib.errors import (
    DeploymentNotFoundError,
    RetryNotAllowedError,
    StepOrderError,
    ValidationError,
)
from minibeast.lib.logging_config import get_logger
from minibeast.models.deployment_state import (
    DeploymentRecord,
    DeploymentResources,
    DeploymentStatus,
    LogEntry,
    StepState,
    StepStatus,
)

logger = get_logger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class _TrackedRecord:
    record: DeploymentRecord
    lock: threading.Lock = field(default_factory=threading.Lock)


class StepTracker:
    """Per-deployment step status store.

    Example:
        >>> tracker = StepTracker()
        >>> tracker.initialize("01j...", ["ecr-repo", "ecr-push"], module="validator")
        >>> tracker.transition("01j...", "ecr-repo", StepStatus.RUNNING)
    """

    def __init__(self) -> None:
        """Initialize an empty tracker."""
        self._records: dict[str, _TrackedRecord] = {}
        self._guard = threading.Lock()

    def _entry(self, deployment_id: str) -> _TrackedRecord:
        with self._guard:
            entry = self._records.get(deployment_id)
        if entry is None:
            raise DeploymentNotFoundError(deployment_id)
        return entry

    @staticmethod
    def _step(record: DeploymentRecord, step: str) -> StepState:
        state = record.steps.get(step)
        if state is None:
            raise ValidationError(
                field="step",
                message=f"Unknown step for deployment {record.id}",
                expected=", ".join(record.steps) or "a configured step",
                actual=step,
            )
        return state

    def initialize(
        self,
        deployment_id: str,
        step_names: Iterable[str],
        module: str | None = None,
    ) -> DeploymentRecord:
        """Create a new record with every step pending.

        Args:
            deployment_id: New deployment identifier
            step_names: Step names in their fixed execution order
            module: Module tag the deployment belongs to

        Returns:
            Copy of the created record

        Raises:
            ValidationError: If the id is already tracked
        """
        record = DeploymentRecord(
            id=deployment_id,
            module=module,
            steps={name: StepState() for name in step_names},
        )
        with self._guard:
            if deployment_id in self._records:
                raise ValidationError(
                    field="deployment_id",
                    message="Deployment id already exists",
                    expected="a new unique id",
                    actual=deployment_id,
                )
            self._records[deployment_id] = _TrackedRecord(record=record)
        return record.model_copy(deep=True)

    def transition(
        self,
        deployment_id: str,
        step: str,
        new_status: StepStatus,
        details: str | None = None,
    ) -> None:
        """Move a step to a new status.

        Entering running requires every earlier step to be completed and
        stamps ``start_time`` once. Completing stamps ``end_time`` only when
        the step was started. An error marks the whole record failed.

        Raises:
            DeploymentNotFoundError: If the id is unknown
            ValidationError: If the step is not part of the record
            StepOrderError: If an earlier step is not completed
        """
        entry = self._entry(deployment_id)
        with entry.lock:
            record = entry.record
            state = self._step(record, step)

            if new_status == StepStatus.RUNNING:
                for name, earlier in record.steps.items():
                    if name == step:
                        break
                    if earlier.status != StepStatus.COMPLETED:
                        raise StepOrderError(step=step, blocking_step=name)
                if state.start_time is None:
                    state.start_time = _now_ms()
                state.details = None
                record.current_step = step
            elif new_status == StepStatus.COMPLETED:
                if state.start_time is not None:
                    state.end_time = _now_ms()
            elif new_status == StepStatus.ERROR:
                state.details = details
                record.current_step = step
                record.status = DeploymentStatus.FAILED
                record.error = details
                record.completed_at = None

            state.status = new_status

    def append_log(self, deployment_id: str, step: str, message: str) -> None:
        """Append a timestamped log line to a step."""
        entry = self._entry(deployment_id)
        with entry.lock:
            state = self._step(entry.record, step)
            state.logs.append(LogEntry(timestamp=_now_iso(), message=message))
        logger.info(f"[{deployment_id}/{step}] {message}")

    def snapshot(self, deployment_id: str) -> DeploymentRecord:
        """Return a deep copy of a record."""
        entry = self._entry(deployment_id)
        with entry.lock:
            return entry.record.model_copy(deep=True)

    def get(self, deployment_id: str) -> DeploymentRecord | None:
        """Return a deep copy of a record, or None if the id is unknown."""
        try:
            return self.snapshot(deployment_id)
        except DeploymentNotFoundError:
            return None

    def update_resources(self, deployment_id: str, **fields: Any) -> None:
        """Merge discovered AWS identifiers into the record's resources."""
        unknown = set(fields) - set(DeploymentResources.model_fields)
        if unknown:
            raise ValidationError(
                field="resources",
                message="Unknown resource fields",
                expected=", ".join(sorted(DeploymentResources.model_fields)),
                actual=", ".join(sorted(unknown)),
            )
        entry = self._entry(deployment_id)
        with entry.lock:
            data = entry.record.resources.model_dump()
            data.update(fields)
            entry.record.resources = DeploymentResources.model_validate(data)

    def mark_completed(self, deployment_id: str, region: str | None = None) -> None:
        """Mark a record completed and stamp its completion time."""
        entry = self._entry(deployment_id)
        with entry.lock:
            record = entry.record
            record.status = DeploymentStatus.COMPLETED
            record.completed_at = _now_iso()
            record.region = region
            record.error = None

    def mark_failed(self, deployment_id: str, message: str) -> None:
        """Mark a record failed without touching its steps."""
        entry = self._entry(deployment_id)
        with entry.lock:
            record = entry.record
            record.status = DeploymentStatus.FAILED
            record.error = message
            record.completed_at = None

    @staticmethod
    def _first_incomplete(record: DeploymentRecord) -> str | None:
        for name, state in record.steps.items():
            if state.status != StepStatus.COMPLETED:
                return name
        return None

    def resume_point(self, deployment_id: str) -> str | None:
        """Return the first step that is not completed, or None if all are."""
        entry = self._entry(deployment_id)
        with entry.lock:
            return self._first_incomplete(entry.record)

    def reset_for_retry(self, deployment_id: str) -> str | None:
        """Atomically move a failed record back to started for a retry.

        The resume step and every step after it return to pending with their
        timestamps and details cleared. Logs are kept. Steps before the
        resume point are not touched.

        Returns:
            Name of the step the retry resumes at, or None if all completed

        Raises:
            DeploymentNotFoundError: If the id is unknown
            RetryNotAllowedError: If the record is not failed
        """
        entry = self._entry(deployment_id)
        with entry.lock:
            record = entry.record
            if record.status != DeploymentStatus.FAILED:
                raise RetryNotAllowedError(deployment_id, record.status.value)

            resume = self._first_incomplete(record)
            resetting = False
            for name, state in record.steps.items():
                if name == resume:
                    resetting = True
                if resetting:
                    state.status = StepStatus.PENDING
                    state.start_time = None
                    state.end_time = None
                    state.details = None

            record.status = DeploymentStatus.STARTED
            record.error = None
            record.completed_at = None
            if resume is not None:
                record.current_step = resume
            return resume

    def find_by_module(
        self, module: str, status: DeploymentStatus | None = None
    ) -> list[DeploymentRecord]:
        """Return copies of every record for a module, optionally by status."""
        with self._guard:
            entries = list(self._records.values())
        matches = []
        for entry in entries:
            with entry.lock:
                record = entry.record
                if record.module != module:
                    continue
                if status is not None and record.status != status:
                    continue
                matches.append(record.model_copy(deep=True))
        return matches

    def remove(self, deployment_id: str) -> bool:
        """Drop a record. Returns True if it existed."""
        with self._guard:
            return self._records.pop(deployment_id, None) is not None

    def ids(self) -> list[str]:
        """Return all tracked deployment ids."""
        with self._guard:
            return list(self._records)
