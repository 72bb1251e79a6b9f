"""Unit tests for the in-memory step tracker."""

from __future__ import annotations

import pytest

from minibeast.config.defaults import STEP_ORDER
from minibeast.deploy.tracker import StepTracker
from minibeast.lib.errors import (
    DeploymentNotFoundError,
    RetryNotAllowedError,
    StepOrderError,
    ValidationError,
)
from minibeast.models.deployment_state import DeploymentStatus, StepStatus

DEPLOYMENT_ID = "01jtracker000000000000000"


@pytest.fixture
def tracker() -> StepTracker:
    tracker = StepTracker()
    tracker.initialize(DEPLOYMENT_ID, STEP_ORDER, module="validator")
    return tracker


def _complete(tracker: StepTracker, *steps: str) -> None:
    for step in steps:
        tracker.transition(DEPLOYMENT_ID, step, StepStatus.RUNNING)
        tracker.append_log(DEPLOYMENT_ID, step, f"{step} done")
        tracker.transition(DEPLOYMENT_ID, step, StepStatus.COMPLETED)


def _fail_at(tracker: StepTracker, step: str, details: str = "boom") -> None:
    tracker.transition(DEPLOYMENT_ID, step, StepStatus.RUNNING)
    tracker.transition(DEPLOYMENT_ID, step, StepStatus.ERROR, details=details)


class TestInitialize:
    """Tests for record creation."""

    def test_all_steps_start_pending(self, tracker: StepTracker) -> None:
        record = tracker.snapshot(DEPLOYMENT_ID)

        assert list(record.steps) == list(STEP_ORDER)
        assert all(s.status == StepStatus.PENDING for s in record.steps.values())
        assert record.status == DeploymentStatus.STARTED
        assert record.module == "validator"
        assert record.completed_at is None

    def test_duplicate_id_rejected(self, tracker: StepTracker) -> None:
        with pytest.raises(ValidationError):
            tracker.initialize(DEPLOYMENT_ID, STEP_ORDER)

    def test_unknown_id_raises_not_found(self) -> None:
        with pytest.raises(DeploymentNotFoundError):
            StepTracker().snapshot("missing")

    def test_get_returns_none_for_unknown_id(self) -> None:
        assert StepTracker().get("missing") is None


class TestTransitions:
    """Tests for step transitions and ordering."""

    def test_running_stamps_start_time_and_current_step(
        self, tracker: StepTracker
    ) -> None:
        tracker.transition(DEPLOYMENT_ID, "ecr-repo", StepStatus.RUNNING)

        record = tracker.snapshot(DEPLOYMENT_ID)
        assert record.current_step == "ecr-repo"
        assert record.steps["ecr-repo"].status == StepStatus.RUNNING
        assert record.steps["ecr-repo"].start_time is not None

    def test_completed_stamps_end_time(self, tracker: StepTracker) -> None:
        _complete(tracker, "ecr-repo")

        step = tracker.snapshot(DEPLOYMENT_ID).steps["ecr-repo"]
        assert step.status == StepStatus.COMPLETED
        assert step.end_time is not None
        assert step.end_time >= step.start_time

    def test_completed_without_start_leaves_end_time_unset(
        self, tracker: StepTracker
    ) -> None:
        tracker.transition(DEPLOYMENT_ID, "ecr-repo", StepStatus.COMPLETED)

        assert tracker.snapshot(DEPLOYMENT_ID).steps["ecr-repo"].end_time is None

    @pytest.mark.parametrize("step", STEP_ORDER[1:])
    def test_step_cannot_run_before_earlier_steps_complete(
        self, tracker: StepTracker, step: str
    ) -> None:
        with pytest.raises(StepOrderError) as exc_info:
            tracker.transition(DEPLOYMENT_ID, step, StepStatus.RUNNING)

        assert exc_info.value.blocking_step == "ecr-repo"
        assert tracker.snapshot(DEPLOYMENT_ID).steps[step].status == StepStatus.PENDING

    def test_step_runs_once_predecessors_complete(self, tracker: StepTracker) -> None:
        _complete(tracker, "ecr-repo", "ecr-push")

        tracker.transition(DEPLOYMENT_ID, "task-definition", StepStatus.RUNNING)

        record = tracker.snapshot(DEPLOYMENT_ID)
        assert record.steps["task-definition"].status == StepStatus.RUNNING

    def test_error_fails_the_record(self, tracker: StepTracker) -> None:
        _complete(tracker, "ecr-repo")
        _fail_at(tracker, "ecr-push", "CodeBuild failed with status: FAILED")

        record = tracker.snapshot(DEPLOYMENT_ID)
        assert record.status == DeploymentStatus.FAILED
        assert record.current_step == "ecr-push"
        assert record.error == "CodeBuild failed with status: FAILED"
        assert record.steps["ecr-push"].details == "CodeBuild failed with status: FAILED"

    def test_unknown_step_rejected(self, tracker: StepTracker) -> None:
        with pytest.raises(ValidationError):
            tracker.transition(DEPLOYMENT_ID, "final-setup", StepStatus.RUNNING)


class TestTerminalStatus:
    """completedAt is set exactly when the record is completed."""

    def test_mark_completed_sets_completed_at_and_region(
        self, tracker: StepTracker
    ) -> None:
        tracker.mark_completed(DEPLOYMENT_ID, region="eu-west-1")

        record = tracker.snapshot(DEPLOYMENT_ID)
        assert record.status == DeploymentStatus.COMPLETED
        assert record.completed_at is not None
        assert record.region == "eu-west-1"

    def test_failure_after_completion_clears_completed_at(
        self, tracker: StepTracker
    ) -> None:
        tracker.mark_completed(DEPLOYMENT_ID)
        tracker.mark_failed(DEPLOYMENT_ID, "late failure")

        record = tracker.snapshot(DEPLOYMENT_ID)
        assert record.status == DeploymentStatus.FAILED
        assert record.completed_at is None

    def test_step_error_after_completion_clears_completed_at(
        self, tracker: StepTracker
    ) -> None:
        tracker.mark_completed(DEPLOYMENT_ID)
        tracker.transition(
            DEPLOYMENT_ID, "ecr-repo", StepStatus.ERROR, details="boom"
        )

        record = tracker.snapshot(DEPLOYMENT_ID)
        assert record.status == DeploymentStatus.FAILED
        assert record.completed_at is None


class TestRetry:
    """Tests for resume_point and reset_for_retry."""

    def test_resume_point_is_first_incomplete_step(self, tracker: StepTracker) -> None:
        _complete(tracker, "ecr-repo")
        _fail_at(tracker, "ecr-push")

        assert tracker.resume_point(DEPLOYMENT_ID) == "ecr-push"

    def test_resume_point_none_when_all_complete(self, tracker: StepTracker) -> None:
        _complete(tracker, *STEP_ORDER)

        assert tracker.resume_point(DEPLOYMENT_ID) is None

    def test_reset_keeps_completed_steps_untouched(self, tracker: StepTracker) -> None:
        _complete(tracker, "ecr-repo", "ecr-push")
        _fail_at(tracker, "task-definition")
        before = tracker.snapshot(DEPLOYMENT_ID)

        resume = tracker.reset_for_retry(DEPLOYMENT_ID)

        after = tracker.snapshot(DEPLOYMENT_ID)
        assert resume == "task-definition"
        for step in ("ecr-repo", "ecr-push"):
            assert after.steps[step] == before.steps[step]

    def test_reset_returns_resume_step_and_later_steps_to_pending(
        self, tracker: StepTracker
    ) -> None:
        _complete(tracker, "ecr-repo")
        _fail_at(tracker, "ecr-push", "build failed")
        tracker.append_log(DEPLOYMENT_ID, "ecr-push", "Failed: build failed")

        tracker.reset_for_retry(DEPLOYMENT_ID)

        record = tracker.snapshot(DEPLOYMENT_ID)
        push = record.steps["ecr-push"]
        assert push.status == StepStatus.PENDING
        assert push.start_time is None
        assert push.end_time is None
        assert push.details is None
        assert [entry.message for entry in push.logs] == ["Failed: build failed"]
        assert all(
            record.steps[step].status == StepStatus.PENDING for step in STEP_ORDER[2:]
        )
        assert record.status == DeploymentStatus.STARTED
        assert record.error is None
        assert record.current_step == "ecr-push"

    def test_resume_step_can_run_again_after_reset(self, tracker: StepTracker) -> None:
        _complete(tracker, "ecr-repo")
        _fail_at(tracker, "ecr-push")
        tracker.reset_for_retry(DEPLOYMENT_ID)

        tracker.transition(DEPLOYMENT_ID, "ecr-push", StepStatus.RUNNING)

        assert (
            tracker.snapshot(DEPLOYMENT_ID).steps["ecr-push"].status
            == StepStatus.RUNNING
        )

    def test_second_reset_is_rejected(self, tracker: StepTracker) -> None:
        _fail_at(tracker, "ecr-repo")
        tracker.reset_for_retry(DEPLOYMENT_ID)

        with pytest.raises(RetryNotAllowedError):
            tracker.reset_for_retry(DEPLOYMENT_ID)

    def test_reset_of_started_record_is_rejected(self, tracker: StepTracker) -> None:
        with pytest.raises(RetryNotAllowedError):
            tracker.reset_for_retry(DEPLOYMENT_ID)


class TestResourcesAndQueries:
    """Tests for resource merging, lookups and copies."""

    def test_update_resources_merges_fields(self, tracker: StepTracker) -> None:
        tracker.update_resources(DEPLOYMENT_ID, ecr_repository="repo-uri")
        tracker.update_resources(DEPLOYMENT_ID, ecs_cluster="cluster")

        resources = tracker.snapshot(DEPLOYMENT_ID).resources
        assert resources.ecr_repository == "repo-uri"
        assert resources.ecs_cluster == "cluster"

    def test_update_resources_rejects_unknown_fields(
        self, tracker: StepTracker
    ) -> None:
        with pytest.raises(ValidationError):
            tracker.update_resources(DEPLOYMENT_ID, not_a_field="x")

    def test_snapshot_is_a_copy(self, tracker: StepTracker) -> None:
        record = tracker.snapshot(DEPLOYMENT_ID)
        record.steps["ecr-repo"].status = StepStatus.COMPLETED
        record.status = DeploymentStatus.COMPLETED

        fresh = tracker.snapshot(DEPLOYMENT_ID)
        assert fresh.steps["ecr-repo"].status == StepStatus.PENDING
        assert fresh.status == DeploymentStatus.STARTED

    def test_find_by_module_filters_by_status(self, tracker: StepTracker) -> None:
        tracker.initialize("other", STEP_ORDER, module="validator")
        tracker.initialize("elsewhere", STEP_ORDER, module="profiler")
        tracker.mark_completed("other")

        all_validator = tracker.find_by_module("validator")
        completed = tracker.find_by_module(
            "validator", status=DeploymentStatus.COMPLETED
        )

        assert {r.id for r in all_validator} == {DEPLOYMENT_ID, "other"}
        assert [r.id for r in completed] == ["other"]

    def test_remove(self, tracker: StepTracker) -> None:
        assert tracker.remove(DEPLOYMENT_ID) is True
        assert tracker.remove(DEPLOYMENT_ID) is False
        assert tracker.ids() == []
