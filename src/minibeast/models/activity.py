"""Models for workflow executions, activity logs and account inventory."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class LogLevel(str, Enum):
    """Severity inferred from a container log line."""

    ERROR = "ERROR"
    WARN = "WARN"
    INFO = "INFO"
    DEBUG = "DEBUG"


class LogSource(str, Enum):
    """Where an activity log line came from."""

    ECS = "ECS"
    STEP_FUNCTION = "StepFunction"


class ActivityLogEntry(BaseModel):
    """One line of activity log shown to the operator."""

    model_config = ConfigDict(extra="forbid")

    timestamp: str
    message: str
    level: LogLevel
    source: LogSource


class ExecutionLogs(BaseModel):
    """Log lines for a workflow execution and the stream they came from."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    logs: list[ActivityLogEntry] = Field(default_factory=list)
    task_arn: str | None = Field(default=None, alias="taskArn")


class ExecutionSummary(BaseModel):
    """A recent workflow execution."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    execution_arn: str = Field(..., alias="executionArn")
    status: str
    start_time: str | None = Field(default=None, alias="startTime")
    end_time: str | None = Field(default=None, alias="endTime")
    logs: list[ActivityLogEntry] = Field(default_factory=list)


class ExecutionStarted(BaseModel):
    """Result of starting a validation run."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    execution_arn: str = Field(..., alias="executionArn")
    start_date: str | None = Field(default=None, alias="startDate")
    step_function_arn: str = Field(..., alias="stepFunctionArn")


class AccountInventory(BaseModel):
    """Names of deployable resources already present in an account."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    clusters: list[str] = Field(default_factory=list)
    task_definitions: list[str] = Field(default_factory=list, alias="taskDefinitions")
    ecr_repositories: list[str] = Field(default_factory=list, alias="ecrRepositories")
    iam_roles: list[str] = Field(default_factory=list, alias="iamRoles")
    step_functions: list[str] = Field(default_factory=list, alias="stepFunctions")
