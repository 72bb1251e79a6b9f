"""Unit tests for validation runs and activity logs."""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import datetime, timezone

import pytest

from minibeast.config.defaults import TEST_CASE_BASE_SQL
from minibeast.deploy.aws import AWSClients
from minibeast.deploy.executions import (
    build_execution_input,
    build_test_case_sql,
    fetch_execution_logs,
    infer_level,
    list_recent_executions,
    start_validation_run,
)
from minibeast.lib.errors import DeploymentError
from minibeast.models.activity import LogLevel, LogSource
from minibeast.models.snapshot import (
    DeploymentSnapshot,
    LogGroups,
    ModuleSnapshot,
    ResourceSummary,
)

WORKFLOW_ARN = "arn:aws:states:us-east-1:123456789012:stateMachine:wf"
EXECUTION_ARN = "arn:aws:states:us-east-1:123456789012:execution:wf:run-1"
STARTED = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
STOPPED = datetime(2026, 1, 1, 12, 5, tzinfo=timezone.utc)


def _ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


@pytest.fixture
def snapshot() -> ModuleSnapshot:
    return ModuleSnapshot(
        module="validator",
        deployment=DeploymentSnapshot(id="01jabc", status="completed"),
        resources=ResourceSummary(
            step_function_arn=WORKFLOW_ARN,
            ecs_cluster="cluster",
            ecr_repository="123456789012.dkr.ecr.us-east-1.amazonaws.com/minibeat-validator-repo-01jabcde",
            log_groups=LogGroups(
                possible_ecs_logs=["/ecs/missing", "/ecs/minibeat-validator-repo-01jabcde"]
            ),
        ),
    )


class TestExecutionInput:
    """Tests for the workflow input payload."""

    def test_sql_without_ids_selects_all_active(self) -> None:
        assert build_test_case_sql(None) == TEST_CASE_BASE_SQL
        assert build_test_case_sql([]) == TEST_CASE_BASE_SQL

    def test_sql_with_ids_quotes_each_id(self) -> None:
        sql = build_test_case_sql([3, "o'brien"])

        assert sql == f"{TEST_CASE_BASE_SQL} AND id IN ('3','o''brien')"

    def test_input_overrides_container_environment(self) -> None:
        payload = build_execution_input("repo", "SELECT 1", now=STARTED)

        override = payload["containerOverrides"]["ContainerOverrides"][0]
        assert payload["action"] == "run_active_validations"
        assert payload["timestamp"] == STARTED.isoformat()
        assert override["Name"] == "repo"
        assert override["Environment"] == [{"Name": "TEST_CASE_SQL", "Value": "SELECT 1"}]

    @pytest.mark.parametrize(
        ("message", "level"),
        [
            ("2026 ERROR failed to connect", LogLevel.ERROR),
            ("WARNING slow query", LogLevel.WARN),
            ("INFO started", LogLevel.INFO),
            ("plain line", LogLevel.DEBUG),
        ],
    )
    def test_infer_level(self, message: str, level: LogLevel) -> None:
        assert infer_level(message) == level


class TestStartAndList:
    """Tests for starting and listing executions."""

    @pytest.mark.asyncio
    async def test_start_validation_run(
        self, fake_clients: AWSClients, snapshot: ModuleSnapshot
    ) -> None:
        fake_clients.sfn.start_execution.return_value = {
            "executionArn": EXECUTION_ARN,
            "startDate": STARTED,
        }

        started = await start_validation_run(fake_clients, snapshot, ["7"])

        assert started.execution_arn == EXECUTION_ARN
        assert started.step_function_arn == WORKFLOW_ARN
        assert started.start_date == STARTED.isoformat()
        kwargs = fake_clients.sfn.start_execution.call_args.kwargs
        assert kwargs["name"].startswith("validation-run-")
        payload = json.loads(kwargs["input"])
        override = payload["containerOverrides"]["ContainerOverrides"][0]
        assert override["Name"] == "minibeat-validator-repo-01jabcde"
        assert override["Environment"][0]["Value"].endswith("AND id IN ('7')")

    @pytest.mark.asyncio
    async def test_start_requires_workflow(self, fake_clients: AWSClients) -> None:
        snapshot = ModuleSnapshot(
            module="validator",
            deployment=DeploymentSnapshot(),
            resources=ResourceSummary(),
        )

        with pytest.raises(DeploymentError):
            await start_validation_run(fake_clients, snapshot)

    @pytest.mark.asyncio
    async def test_list_recent_executions(
        self, fake_clients: AWSClients, snapshot: ModuleSnapshot
    ) -> None:
        fake_clients.sfn.list_executions.return_value = {
            "executions": [
                {
                    "executionArn": EXECUTION_ARN,
                    "status": "SUCCEEDED",
                    "startDate": STARTED,
                    "stopDate": STOPPED,
                },
                {"executionArn": "arn:running", "status": "RUNNING", "startDate": STARTED},
            ]
        }

        executions = await list_recent_executions(fake_clients, snapshot)

        assert [e.status for e in executions] == ["SUCCEEDED", "RUNNING"]
        assert executions[0].end_time == STOPPED.isoformat()
        assert executions[1].end_time is None
        assert fake_clients.sfn.list_executions.call_args.kwargs["maxResults"] == 10


class TestExecutionLogs:
    """Tests for fetch_execution_logs."""

    @pytest.fixture(autouse=True)
    def _execution(self, fake_clients: AWSClients) -> None:
        fake_clients.sfn.describe_execution.return_value = {
            "startDate": STARTED,
            "stopDate": STOPPED,
        }

    @pytest.mark.asyncio
    async def test_reads_stream_overlapping_the_execution(
        self,
        fake_clients: AWSClients,
        snapshot: ModuleSnapshot,
        aws_error: Callable[..., Exception],
    ) -> None:
        def describe_streams(logGroupName: str, **_: object) -> dict:
            if logGroupName == "/ecs/missing":
                raise aws_error("ResourceNotFoundException")
            return {
                "logStreams": [
                    {
                        "logStreamName": "ecs/later/task-2",
                        "firstEventTime": _ms(STOPPED) + 3_600_000,
                        "lastEventTime": _ms(STOPPED) + 3_700_000,
                    },
                    {
                        "logStreamName": "ecs/repo/task-1",
                        "firstEventTime": _ms(STARTED) + 1000,
                        "lastEventTime": _ms(STOPPED) - 1000,
                    },
                ]
            }

        fake_clients.logs.describe_log_streams.side_effect = describe_streams
        fake_clients.logs.get_log_events.return_value = {
            "events": [
                {"timestamp": _ms(STARTED) + 2000, "message": "INFO starting\n"},
                {"timestamp": _ms(STARTED) + 3000, "message": "ERROR failed"},
            ]
        }

        result = await fetch_execution_logs(fake_clients, snapshot, EXECUTION_ARN)

        assert result.task_arn == "ecs/repo/task-1"
        assert [entry.message for entry in result.logs] == ["INFO starting", "ERROR failed"]
        assert [entry.level for entry in result.logs] == [LogLevel.INFO, LogLevel.ERROR]
        assert all(entry.source == LogSource.ECS for entry in result.logs)
        params = fake_clients.logs.get_log_events.call_args.kwargs
        assert params["startFromHead"] is True
        assert params["startTime"] == _ms(STARTED) - 60_000
        assert params["endTime"] == _ms(STOPPED) + 60_000

    @pytest.mark.asyncio
    async def test_incremental_reads_after_start_time(
        self, fake_clients: AWSClients, snapshot: ModuleSnapshot
    ) -> None:
        fake_clients.logs.describe_log_streams.return_value = {
            "logStreams": [{"logStreamName": "ecs/repo/task-1"}]
        }
        fake_clients.logs.get_log_events.return_value = {"events": []}

        await fetch_execution_logs(
            fake_clients, snapshot, EXECUTION_ARN, start_time=5000, incremental=True
        )

        params = fake_clients.logs.get_log_events.call_args.kwargs
        assert params["startTime"] == 5001
        assert params["startFromHead"] is False
        assert "endTime" not in params

    @pytest.mark.asyncio
    async def test_falls_back_to_execution_history(
        self, fake_clients: AWSClients, snapshot: ModuleSnapshot
    ) -> None:
        fake_clients.logs.describe_log_streams.return_value = {"logStreams": []}
        fake_clients.sfn.get_execution_history.return_value = {
            "events": [
                {"type": "ExecutionStarted", "timestamp": STARTED},
                {"type": "TaskFailed", "timestamp": STOPPED},
            ]
        }

        result = await fetch_execution_logs(fake_clients, snapshot, EXECUTION_ARN)

        assert result.task_arn is None
        assert [entry.level for entry in result.logs] == [LogLevel.INFO, LogLevel.ERROR]
        assert all(entry.source == LogSource.STEP_FUNCTION for entry in result.logs)
        assert result.logs[1].message.startswith("TaskFailed:")

    @pytest.mark.asyncio
    async def test_incremental_without_logs_returns_empty(
        self, fake_clients: AWSClients, snapshot: ModuleSnapshot
    ) -> None:
        fake_clients.logs.describe_log_streams.return_value = {"logStreams": []}

        result = await fetch_execution_logs(
            fake_clients, snapshot, EXECUTION_ARN, start_time=1, incremental=True
        )

        assert result.logs == []
        fake_clients.sfn.get_execution_history.assert_not_called()
