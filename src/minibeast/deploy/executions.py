"""Starting validation runs and reading their activity.

A completed deployment exposes a state machine that runs the container once.
The container reads the SQL selecting which validation test cases to run
from the ``TEST_CASE_SQL`` environment variable, which is overridden per
execution.
"""

from __future__ import annotations

import json
import time
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from typing import Any

from minibeast.config.defaults import (
    EXECUTIONS_PAGE_SIZE,
    LOG_EVENTS_LIMIT,
    LOG_STREAMS_LIMIT,
    LOG_WINDOW_PADDING_MS,
    TEST_CASE_BASE_SQL,
    TEST_CASE_SQL_ENV,
)
from minibeast.deploy.aws import PROVIDER_ERRORS, AWSClients, call, error_message
from minibeast.lib.errors import DeploymentError
from minibeast.lib.logging_config import get_logger
from minibeast.models.activity import (
    ActivityLogEntry,
    ExecutionLogs,
    ExecutionStarted,
    ExecutionSummary,
    LogLevel,
    LogSource,
)
from minibeast.models.snapshot import ModuleSnapshot

logger = get_logger(__name__)

HISTORY_FALLBACK_LIMIT = 50
RUN_ACTION = "run_active_validations"


def _iso(value: datetime | int | float | None) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).isoformat()


def _epoch_ms(value: datetime | int | float | None) -> int | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp() * 1000)
    return int(value)


def build_test_case_sql(validation_ids: Iterable[Any] | None = None) -> str:
    """Return the test case query, restricted to ``validation_ids`` if given.

    Ids are quoted as SQL string literals with embedded quotes doubled.
    """
    ids = [str(value) for value in (validation_ids or [])]
    if not ids:
        return TEST_CASE_BASE_SQL
    quoted = ",".join("'" + value.replace("'", "''") + "'" for value in ids)
    return f"{TEST_CASE_BASE_SQL} AND id IN ({quoted})"


def build_execution_input(
    container_name: str, sql: str, now: datetime | None = None
) -> dict[str, Any]:
    """Return the state machine input carrying the container override."""
    now = now or datetime.now(timezone.utc)
    return {
        "action": RUN_ACTION,
        "timestamp": now.isoformat(),
        "containerOverrides": {
            "ContainerOverrides": [
                {
                    "Name": container_name,
                    "Environment": [{"Name": TEST_CASE_SQL_ENV, "Value": sql}],
                }
            ]
        },
    }


def infer_level(message: str) -> LogLevel:
    """Infer a log level from the text of a container log line."""
    if "ERROR" in message:
        return LogLevel.ERROR
    if "WARN" in message:
        return LogLevel.WARN
    if "INFO" in message:
        return LogLevel.INFO
    return LogLevel.DEBUG


def _require_workflow(snapshot: ModuleSnapshot) -> str:
    arn = snapshot.resources.step_function_arn
    if not arn:
        raise DeploymentError(
            operation="execute",
            message=f"Module '{snapshot.module}' has no deployed workflow",
        )
    return arn


async def start_validation_run(
    clients: AWSClients,
    snapshot: ModuleSnapshot,
    validation_ids: Sequence[Any] | None = None,
) -> ExecutionStarted:
    """Start a workflow execution for the selected validations."""
    state_machine_arn = _require_workflow(snapshot)
    sql = build_test_case_sql(validation_ids)
    payload = build_execution_input(snapshot.resources.container_name, sql)
    logger.info(f"Starting {state_machine_arn} with {TEST_CASE_SQL_ENV}: {sql}")

    response = await call(
        clients.sfn.start_execution,
        stateMachineArn=state_machine_arn,
        name=f"validation-run-{int(time.time() * 1000)}",
        input=json.dumps(payload),
    )
    return ExecutionStarted(
        execution_arn=response["executionArn"],
        start_date=_iso(response.get("startDate")),
        step_function_arn=state_machine_arn,
    )


async def list_recent_executions(
    clients: AWSClients,
    snapshot: ModuleSnapshot,
    limit: int = EXECUTIONS_PAGE_SIZE,
) -> list[ExecutionSummary]:
    """Return the most recent executions of a module's workflow."""
    state_machine_arn = _require_workflow(snapshot)
    response = await call(
        clients.sfn.list_executions,
        stateMachineArn=state_machine_arn,
        maxResults=limit,
    )
    return [
        ExecutionSummary(
            execution_arn=item["executionArn"],
            status=item["status"],
            start_time=_iso(item.get("startDate")),
            end_time=_iso(item.get("stopDate")),
        )
        for item in response.get("executions", [])
    ]


def _pick_stream(
    streams: list[dict[str, Any]], window_start: int, window_end: int
) -> dict[str, Any] | None:
    """Return the stream overlapping the window, else the most recent one."""
    now = int(time.time() * 1000)
    for stream in streams:
        first = stream.get("firstEventTime") or stream.get("creationTime") or 0
        last = stream.get("lastEventTime") or now
        if first <= window_end and last >= window_start:
            return stream
    return streams[0] if streams else None


async def _container_logs(
    clients: AWSClients,
    log_group: str,
    window_start: int,
    window_end: int,
    start_time: int | None,
    incremental: bool,
) -> ExecutionLogs | None:
    streams = await call(
        clients.logs.describe_log_streams,
        logGroupName=log_group,
        orderBy="LastEventTime",
        descending=True,
        limit=LOG_STREAMS_LIMIT,
    )
    stream = _pick_stream(streams.get("logStreams", []), window_start, window_end)
    if stream is None:
        return None

    params: dict[str, Any] = {
        "logGroupName": log_group,
        "logStreamName": stream["logStreamName"],
        "limit": LOG_EVENTS_LIMIT,
    }
    if incremental and start_time is not None:
        params["startTime"] = start_time + 1
        params["startFromHead"] = False
    else:
        params["startTime"] = max(window_start - LOG_WINDOW_PADDING_MS, 0)
        params["endTime"] = window_end + LOG_WINDOW_PADDING_MS
        params["startFromHead"] = True

    events = await call(clients.logs.get_log_events, **params)
    entries = []
    for event in events.get("events", []):
        message = event.get("message", "").strip()
        entries.append(
            ActivityLogEntry(
                timestamp=_iso(event.get("timestamp")) or "",
                message=message,
                level=infer_level(message),
                source=LogSource.ECS,
            )
        )
    return ExecutionLogs(logs=entries, task_arn=stream["logStreamName"])


async def _history_logs(clients: AWSClients, execution_arn: str) -> ExecutionLogs:
    history = await call(
        clients.sfn.get_execution_history,
        executionArn=execution_arn,
        maxResults=HISTORY_FALLBACK_LIMIT,
        reverseOrder=False,
    )
    entries = []
    for event in history.get("events", []):
        event_type = event.get("type", "Unknown")
        entries.append(
            ActivityLogEntry(
                timestamp=_iso(event.get("timestamp")) or "",
                message=f"{event_type}: {json.dumps(event, default=str, indent=2)}",
                level=LogLevel.ERROR if "Failed" in event_type else LogLevel.INFO,
                source=LogSource.STEP_FUNCTION,
            )
        )
    return ExecutionLogs(logs=entries)


async def fetch_execution_logs(
    clients: AWSClients,
    snapshot: ModuleSnapshot,
    execution_arn: str,
    start_time: int | None = None,
    incremental: bool = False,
) -> ExecutionLogs:
    """Return container log lines for one workflow execution.

    Each candidate log group is tried in turn. The stream whose events
    overlap the execution window is read, else the most recently active
    one. Incremental reads return only events after ``start_time``. When
    no group yields logs the execution history is returned instead.
    """
    execution = await call(clients.sfn.describe_execution, executionArn=execution_arn)
    window_start = _epoch_ms(execution.get("startDate")) or 0
    window_end = _epoch_ms(execution.get("stopDate")) or int(time.time() * 1000)

    for log_group in snapshot.resources.log_groups.possible_ecs_logs:
        if not log_group:
            continue
        try:
            result = await _container_logs(
                clients, log_group, window_start, window_end, start_time, incremental
            )
        except PROVIDER_ERRORS as exc:
            logger.info(f"Log group {log_group} not accessible: {error_message(exc)}")
            continue
        if result is not None:
            return result

    if incremental:
        return ExecutionLogs()
    logger.info(f"No container logs for {execution_arn}, using execution history")
    return await _history_logs(clients, execution_arn)
