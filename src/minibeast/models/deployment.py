"""Pydantic models for deployment requests and stored configuration.

These are the strongly typed shapes validated at the HTTP boundary. The
provisioning pipeline only ever sees a ``DeploymentConfigRecord``.
"""

import re
from pathlib import Path

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)

MODULE_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
AWS_REGION_PATTERN = re.compile(r"^[a-z]{2}(-gov)?-[a-z]+-\d$")
ACCESS_KEY_PREFIXES = ("AKIA", "ASIA")
MIN_SECRET_KEY_LENGTH = 20


def validate_module_name(v: str) -> str:
    """Normalize and validate a module tag."""
    value = v.strip().lower()
    if not MODULE_PATTERN.match(value):
        raise ValueError(
            f"Invalid module name: {v!r}. "
            "Must be non-empty and contain only letters, numbers and '-'"
        )
    return value


class AWSCredentials(BaseModel):
    """AWS credential tuple supplied by the operator.

    Attributes:
        access_key: IAM access key id
        secret_key: IAM secret access key
        region: Target AWS region
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    access_key: str = Field(..., alias="accessKey", min_length=1)
    secret_key: str = Field(..., alias="secretKey", min_length=1)
    region: str = Field(..., min_length=1)

    @field_validator("region")
    @classmethod
    def validate_region(cls, v: str) -> str:
        """Validate AWS region format."""
        if not AWS_REGION_PATTERN.match(v):
            raise ValueError(f"Invalid AWS region: {v}. Expected e.g. 'us-east-1'")
        return v

    def format_problems(self) -> list[str]:
        """Return credential format problems detectable without calling AWS."""
        problems: list[str] = []
        if not self.access_key.startswith(ACCESS_KEY_PREFIXES):
            problems.append(
                "Invalid Access Key format. AWS Access Keys should start with "
                "AKIA or ASIA."
            )
        if len(self.secret_key) < MIN_SECRET_KEY_LENGTH:
            problems.append(
                "Invalid Secret Key format. AWS Secret Keys should be at least "
                f"{MIN_SECRET_KEY_LENGTH} characters long."
            )
        return problems


class EnvVariable(BaseModel):
    """A single container environment variable."""

    model_config = ConfigDict(extra="ignore")

    key: str = Field(..., min_length=1)
    value: str = Field(default="")


class DeploymentOptions(BaseModel):
    """Deployment options sent alongside the upload."""

    model_config = ConfigDict(extra="ignore")

    module: str = Field(..., description="Logical module being deployed")

    @field_validator("module")
    @classmethod
    def validate_module(cls, v: str) -> str:
        """Normalize the module tag to lowercase and validate it."""
        return validate_module_name(v)


class ArtifactRef(BaseModel):
    """Reference to an uploaded image archive staged on local disk."""

    model_config = ConfigDict(extra="forbid")

    path: Path = Field(..., description="Local path of the staged upload")
    original_name: str = Field(..., description="Filename supplied by the client")
    size: int = Field(default=0, ge=0, description="Size in bytes")

    @property
    def size_mb(self) -> float:
        """Size in megabytes, for log messages."""
        return self.size / 1024 / 1024


class ResourceNames(BaseModel):
    """Generated AWS resource names for one deployment.

    Attributes:
        ecr_repository: ECR repository name
        cluster: ECS cluster name
        task_family: ECS task definition family
        execution_role: ECS task execution role name
        task_role: ECS task role name
        stepfunctions_role: Step Functions execution role name
        state_machine: Step Functions state machine name
        build_project: CodeBuild project name
        build_role: CodeBuild service role name
        bucket: S3 staging bucket name
        security_group: EC2 security group name
        log_group: CloudWatch log group for the container
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    ecr_repository: str
    cluster: str
    task_family: str
    execution_role: str
    task_role: str
    stepfunctions_role: str
    state_machine: str
    build_project: str
    build_role: str
    bucket: str
    security_group: str
    log_group: str


class DeploymentConfigRecord(BaseModel):
    """Everything needed to run or resume the pipeline for one deployment.

    Owned by the HTTP surface on creation and read-only to the pipeline.
    """

    model_config = ConfigDict(extra="forbid")

    deployment_id: str
    module: str
    aws: AWSCredentials
    env_variables: list[EnvVariable] = Field(default_factory=list)
    artifact: ArtifactRef | None = None
    image_name: str
    resource_names: ResourceNames

    @property
    def environment(self) -> dict[str, str]:
        """Environment variables as a mapping (last definition wins)."""
        return {env.key: env.value for env in self.env_variables}
