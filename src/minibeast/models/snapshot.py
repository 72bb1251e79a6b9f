"""On-disk snapshot models for completed module deployments."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from minibeast.models.deployment import AWSCredentials, EnvVariable


class LogGroups(BaseModel):
    """Candidate CloudWatch log group names for the deployed container."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    possible_ecs_logs: list[str] = Field(
        default_factory=list, alias="possibleEcsLogs"
    )


class ResourceSummary(BaseModel):
    """Contents of ``aws-resources.json``.

    Fields are optional so that partially written files can be loaded and
    judged invalid rather than failing to parse.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    step_function_arn: str | None = Field(default=None, alias="stepFunctionArn")
    ecs_cluster: str | None = Field(default=None, alias="ecsCluster")
    ecs_service: str | None = Field(default=None, alias="ecsService")
    task_definition: str | None = Field(default=None, alias="taskDefinition")
    task_definition_family: str | None = Field(
        default=None, alias="taskDefinitionFamily"
    )
    execution_role_arn: str | None = Field(default=None, alias="executionRoleArn")
    task_role_arn: str | None = Field(default=None, alias="taskRoleArn")
    ecr_repository: str | None = Field(default=None, alias="ecrRepository")
    region: str | None = None
    log_groups: LogGroups = Field(default_factory=LogGroups, alias="logGroups")
    deployment_date: str | None = Field(default=None, alias="deploymentDate")

    @property
    def container_name(self) -> str:
        """Container name used in the task definition (the repository name)."""
        if not self.ecr_repository:
            return "validator"
        return self.ecr_repository.split("/")[-1].split(":")[0]


class DeploymentSnapshot(BaseModel):
    """Contents of ``deployment.json``."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str | None = None
    status: str | None = None
    module: str | None = None
    aws_config: AWSCredentials | None = Field(default=None, alias="awsConfig")
    env_variables: list[EnvVariable] = Field(
        default_factory=list, alias="envVariables"
    )
    image_name: str | None = Field(default=None, alias="imageName")
    completed_at: str | None = Field(default=None, alias="completedAt")
    saved_at: str | None = Field(default=None, alias="savedAt")
    api_endpoint: str | None = Field(default=None, alias="apiEndpoint")
    aws_resources: ResourceSummary | None = Field(default=None, alias="awsResources")


class ModuleSnapshot(BaseModel):
    """A validated pair of snapshot documents for one module."""

    model_config = ConfigDict(extra="forbid")

    module: str
    deployment: DeploymentSnapshot
    resources: ResourceSummary

    def is_valid(self) -> bool:
        """Return True if the snapshot describes a usable completed deployment."""
        return bool(
            self.deployment.status == "completed"
            and self.resources.step_function_arn
            and self.resources.ecs_cluster
            and self.deployment.aws_config is not None
        )
