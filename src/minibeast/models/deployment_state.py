"""Deployment progress models tracked in memory and exposed to pollers."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class DeploymentStatus(str, Enum):
    """Overall status of a provisioning attempt."""

    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


class StepStatus(str, Enum):
    """Status of a single provisioning step."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


class LogEntry(BaseModel):
    """One timestamped line in a step's log."""

    model_config = ConfigDict(extra="forbid")

    timestamp: str = Field(..., description="ISO-8601 UTC timestamp")
    message: str


class StepState(BaseModel):
    """Progress of one provisioning step.

    Attributes:
        status: Current step status
        start_time: Epoch milliseconds of first entry into running
        end_time: Epoch milliseconds of completion
        logs: Append-only log lines
        details: Last error detail, set only when status is error
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    status: StepStatus = StepStatus.PENDING
    start_time: int | None = Field(default=None, alias="startTime")
    end_time: int | None = Field(default=None, alias="endTime")
    logs: list[LogEntry] = Field(default_factory=list)
    details: str | None = None


class DeploymentResources(BaseModel):
    """AWS identifiers discovered or created while provisioning."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    ecr_repository: str | None = Field(default=None, alias="ecrRepository")
    build_role_arn: str | None = Field(default=None, alias="buildRoleArn")
    image_uri: str | None = Field(default=None, alias="imageUri")
    log_group: str | None = Field(default=None, alias="logGroup")
    task_definition: str | None = Field(default=None, alias="taskDefinition")
    task_definition_family: str | None = Field(
        default=None, alias="taskDefinitionFamily"
    )
    execution_role_arn: str | None = Field(default=None, alias="executionRoleArn")
    task_role_arn: str | None = Field(default=None, alias="taskRoleArn")
    ecs_cluster: str | None = Field(default=None, alias="ecsCluster")
    subnets: list[str] = Field(default_factory=list)
    security_group_id: str | None = Field(default=None, alias="securityGroupId")
    stepfunctions_role_arn: str | None = Field(
        default=None, alias="stepFunctionRoleArn"
    )
    step_function_arn: str | None = Field(default=None, alias="stepFunctionArn")


class DeploymentRecord(BaseModel):
    """Tracked state of one provisioning attempt.

    ``completed_at`` is set if and only if ``status`` is completed.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    id: str
    module: str | None = None
    status: DeploymentStatus = DeploymentStatus.STARTED
    current_step: str | None = Field(default=None, alias="currentStep")
    steps: dict[str, StepState] = Field(default_factory=dict)
    error: str | None = None
    resources: DeploymentResources = Field(default_factory=DeploymentResources)
    completed_at: str | None = Field(default=None, alias="completedAt")
    region: str | None = None

    @property
    def api_endpoint(self) -> str | None:
        """Invocation endpoint of the deployment (the workflow ARN)."""
        return self.resources.step_function_arn
