"""Request and response models for the deployer HTTP API.

Responses keep the ``{success, ...}`` envelope with camelCase keys that the
front-end consumes.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from minibeast.config.defaults import DEFAULT_MODULE
from minibeast.models.activity import (
    AccountInventory,
    ActivityLogEntry,
    ExecutionSummary,
)
from minibeast.models.deployment_state import DeploymentRecord


class ServerState(str, Enum):
    """Lifecycle state of the deployer server."""

    INITIALIZING = "initializing"
    READY = "ready"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class _ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class HealthResponse(_ApiModel):
    """Health check response."""

    status: str = Field(..., description="'healthy' or 'unhealthy'")
    service: str = Field(default="minibeast")
    ready: bool
    active_deployments: int = Field(default=0, alias="activeDeployments")
    uptime_seconds: float = Field(default=0.0, alias="uptimeSeconds")


class ProblemDetail(BaseModel):
    """RFC 7807 problem details body."""

    type: str = Field(default="about:blank")
    title: str
    status: int
    detail: str | None = None
    instance: str | None = None


class MessageResponse(_ApiModel):
    """Generic success/failure envelope."""

    success: bool
    message: str
    error_code: str | None = Field(default=None, alias="errorCode")


class DeployResponse(_ApiModel):
    success: bool = True
    message: str = "Deployment process initiated."
    deployment_id: str = Field(..., alias="deploymentId")


class DeploymentStatusResponse(_ApiModel):
    success: bool = True
    deployment: DeploymentRecord


class RetryResponse(_ApiModel):
    success: bool = True
    message: str = "Deployment retry initiated"
    resume_step: str | None = Field(default=None, alias="resumeStep")


class ExistingDeployment(_ApiModel):
    """A completed in-memory deployment of a module."""

    deployment_id: str = Field(..., alias="deploymentId")
    module: str
    api_endpoint: str | None = Field(default=None, alias="apiEndpoint")
    completed_at: str | None = Field(default=None, alias="completedAt")
    image_name: str = Field(..., alias="imageName")


class CheckDeploymentsResponse(_ApiModel):
    success: bool = True
    has_existing_deployments: bool = Field(..., alias="hasExistingDeployments")
    deployments: list[ExistingDeployment] = Field(default_factory=list)


class ModuleDeploymentData(_ApiModel):
    """Summary of a persisted module deployment."""

    id: str | None = None
    status: str | None = None
    completed_at: str | None = Field(default=None, alias="completedAt")
    api_endpoint: str | None = Field(default=None, alias="apiEndpoint")
    step_function_arn: str | None = Field(default=None, alias="stepFunctionArn")
    region: str | None = None
    deployment_date: str | None = Field(default=None, alias="deploymentDate")


class ModuleStatusResponse(_ApiModel):
    success: bool = True
    is_deployed: bool = Field(..., alias="isDeployed")
    deployment_data: ModuleDeploymentData | None = Field(
        default=None, alias="deploymentData"
    )
    message: str


class ResourcesResponse(_ApiModel):
    success: bool = True
    resources: dict[str, Any]
    message: str = "Deployment resources loaded successfully"


class ClearResponse(_ApiModel):
    success: bool = True
    message: str
    files_removed: int = Field(..., alias="filesRemoved")


class ExecuteRequest(_ApiModel):
    """Body of ``POST /stepfunction/execute``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    validation_ids: list[str | int] | None = Field(default=None, alias="validationIds")
    module: str = Field(default=DEFAULT_MODULE)


class ExecuteResponse(_ApiModel):
    success: bool = True
    message: str = "Validation execution started successfully"
    execution_arn: str = Field(..., alias="executionArn")
    start_date: str | None = Field(default=None, alias="startDate")
    step_function_arn: str = Field(..., alias="stepFunctionArn")


class ExecutionsResponse(_ApiModel):
    success: bool = True
    executions: list[ExecutionSummary] = Field(default_factory=list)


class ExecutionLogsResponse(_ApiModel):
    success: bool = True
    logs: list[ActivityLogEntry] = Field(default_factory=list)
    task_arn: str | None = Field(default=None, alias="taskArn")


class CredentialsTestResponse(_ApiModel):
    success: bool = True
    message: str
    account_id: str = Field(..., alias="accountId")


class InventoryResponse(_ApiModel):
    success: bool = True
    message: str = "AWS resources fetched successfully"
    resources: AccountInventory
