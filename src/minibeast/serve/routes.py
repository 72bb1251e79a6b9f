"""API routes for deployments, workflow runs and account checks.

All routes are mounted under ``/api``. Errors a client can fix are returned
as ``{success: false, message}`` with a 4xx status.
"""

from __future__ import annotations

import asyncio
import shutil
import uuid
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar
from urllib.parse import unquote

from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    HTTPException,
    Query,
    Request,
    UploadFile,
    status,
)
from fastapi.responses import JSONResponse
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from minibeast.config.defaults import DEFAULT_MODULE, MAX_UPLOAD_BYTES
from minibeast.config.validator import summarize_errors
from minibeast.deploy.aws import AWSClients, PROVIDER_ERRORS, error_code
from minibeast.deploy.cleanup import remove_upload
from minibeast.deploy.credentials import (
    fetch_inventory,
    friendly_message,
    verify_credentials,
)
from minibeast.deploy.naming import image_name
from minibeast.deploy.service import DeploymentService
from minibeast.lib.errors import (
    AWSCredentialsError,
    DeploymentConfigNotFoundError,
    DeploymentError,
    DeploymentNotFoundError,
    RetryNotAllowedError,
    ValidationError,
)
from minibeast.lib.logging_config import get_logger
from minibeast.models.config import ServerSettings
from minibeast.models.deployment import (
    ArtifactRef,
    AWSCredentials,
    DeploymentOptions,
    EnvVariable,
    validate_module_name,
)
from minibeast.serve.models import (
    CheckDeploymentsResponse,
    ClearResponse,
    CredentialsTestResponse,
    DeploymentStatusResponse,
    DeployResponse,
    ExecuteRequest,
    ExecuteResponse,
    ExecutionLogsResponse,
    ExecutionsResponse,
    ExistingDeployment,
    InventoryResponse,
    MessageResponse,
    ModuleDeploymentData,
    ModuleStatusResponse,
    ResourcesResponse,
    RetryResponse,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["deployments"])

T = TypeVar("T")

_ENV_VARIABLES = TypeAdapter(list[EnvVariable])


def get_service(request: Request) -> DeploymentService:
    """Return the deployment service attached to the application."""
    return request.app.state.service


def get_settings(request: Request) -> ServerSettings:
    """Return the server settings attached to the application."""
    return request.app.state.settings


def _bad_request(message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=message)


def _module_or_400(module: str) -> str:
    try:
        return validate_module_name(module)
    except ValueError as exc:
        raise _bad_request(str(exc)) from exc


def _parse_field(name: str, parse: Callable[[str], T], raw: str) -> T:
    try:
        return parse(raw)
    except PydanticValidationError as exc:
        raise _bad_request(f"Invalid {name}: {summarize_errors(exc)}") from exc


def _stage_upload(upload: UploadFile, upload_dir: Path) -> ArtifactRef:
    """Copy an uploaded archive to the staging directory."""
    original_name = Path(upload.filename or "docker-image.tar").name
    upload_dir.mkdir(parents=True, exist_ok=True)
    target = upload_dir / f"{uuid.uuid4().hex}-{original_name}"
    with target.open("wb") as fh:
        shutil.copyfileobj(upload.file, fh)
    size = target.stat().st_size
    if size > MAX_UPLOAD_BYTES:
        target.unlink()
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Docker image exceeds the {MAX_UPLOAD_BYTES // 1024**3} GB limit",
        )
    return ArtifactRef(path=target, original_name=original_name, size=size)


@router.post("/deploy", response_model=DeployResponse)
async def deploy(
    aws_config: str = Form(..., alias="awsConfig"),
    env_variables: str = Form(default="[]", alias="envVariables"),
    deployment_config: str = Form(default="{}", alias="deploymentConfig"),
    docker_image: UploadFile | None = File(default=None, alias="dockerImage"),
    service: DeploymentService = Depends(get_service),
    settings: ServerSettings = Depends(get_settings),
) -> DeployResponse:
    """Accept an image archive and start provisioning it."""
    credentials = _parse_field(
        "awsConfig", AWSCredentials.model_validate_json, aws_config
    )
    env = _parse_field("envVariables", _ENV_VARIABLES.validate_json, env_variables)
    options = _parse_field(
        "deploymentConfig", DeploymentOptions.model_validate_json, deployment_config
    )

    artifact = None
    if docker_image is not None:
        artifact = await asyncio.to_thread(
            _stage_upload, docker_image, settings.upload_dir
        )
        logger.info(
            f"Staged upload {artifact.original_name} ({artifact.size_mb:.1f} MB)"
        )

    try:
        deployment_id = service.start_deployment(
            credentials, options.module, env, artifact
        )
    except ValidationError as exc:
        if artifact is not None:
            remove_upload(artifact.path)
        raise _bad_request(exc.message) from exc
    return DeployResponse(deployment_id=deployment_id)


@router.get("/deployment/status/{module}", response_model=ModuleStatusResponse)
def module_status(
    module: str, service: DeploymentService = Depends(get_service)
) -> ModuleStatusResponse:
    """Report whether a module has a valid persisted deployment."""
    module = _module_or_400(module)
    snapshot = service.module_snapshot(module)
    if snapshot is None:
        return ModuleStatusResponse(
            is_deployed=False, message=f"Module '{module}' is not deployed"
        )
    deployment = snapshot.deployment
    resources = snapshot.resources
    return ModuleStatusResponse(
        is_deployed=True,
        deployment_data=ModuleDeploymentData(
            id=deployment.id,
            status=deployment.status,
            completed_at=deployment.completed_at,
            api_endpoint=deployment.api_endpoint,
            step_function_arn=resources.step_function_arn,
            region=resources.region,
            deployment_date=resources.deployment_date,
        ),
        message=f"Module '{module}' is already deployed",
    )


@router.get("/deployment/load-resources", response_model=ResourcesResponse)
def load_resources(
    module: str = Query(default=DEFAULT_MODULE),
    service: DeploymentService = Depends(get_service),
) -> ResourcesResponse:
    """Return the persisted resource summary of a module."""
    module = _module_or_400(module)
    resources = service.module_resources(module)
    if resources is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No deployment found. Please deploy the {module} module first.",
        )
    return ResourcesResponse(resources=resources)


@router.delete("/deployment/clear/{module}", response_model=ClearResponse)
def clear_module(
    module: str, service: DeploymentService = Depends(get_service)
) -> ClearResponse:
    """Delete a module's snapshot and its in-memory deployments."""
    module = _module_or_400(module)
    removed = service.clear_module(module)
    return ClearResponse(
        message=(
            f"Module '{module}' cleared for redeployment. {removed} files removed."
        ),
        files_removed=removed,
    )


@router.get("/deployment/{deployment_id}/status", response_model=DeploymentStatusResponse)
def deployment_status(
    deployment_id: str, service: DeploymentService = Depends(get_service)
) -> DeploymentStatusResponse:
    """Return the tracked progress of a deployment."""
    try:
        record = service.get_status(deployment_id)
    except DeploymentNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Deployment not found"
        ) from exc
    return DeploymentStatusResponse(deployment=record)


@router.post("/deployment/{deployment_id}/retry", response_model=RetryResponse)
async def retry_deployment(
    deployment_id: str, service: DeploymentService = Depends(get_service)
) -> RetryResponse:
    """Resume a failed deployment from its first non-completed step."""
    try:
        resume = service.retry(deployment_id)
    except DeploymentNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Deployment not found"
        ) from exc
    except (RetryNotAllowedError, DeploymentConfigNotFoundError) as exc:
        raise _bad_request(exc.message) from exc
    return RetryResponse(resume_step=resume)


@router.get("/deployments/check/{module}", response_model=CheckDeploymentsResponse)
def check_deployments(
    module: str, service: DeploymentService = Depends(get_service)
) -> CheckDeploymentsResponse:
    """List completed in-memory deployments of a module."""
    module = _module_or_400(module)
    deployments = [
        ExistingDeployment(
            deployment_id=record.id,
            module=module,
            api_endpoint=record.api_endpoint,
            completed_at=record.completed_at,
            image_name=service.image_name_for(record.id) or image_name(module),
        )
        for record in service.completed_for_module(module)
    ]
    return CheckDeploymentsResponse(
        has_existing_deployments=bool(deployments), deployments=deployments
    )


def _failure_response(message: str, code: str | None = None) -> JSONResponse:
    body = MessageResponse(success=False, message=message, error_code=code)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=body.model_dump(by_alias=True, exclude_none=True),
    )


def _provider_failure(action: str, exc: BaseException) -> JSONResponse:
    logger.warning(f"Failed to {action}: {exc}")
    return _failure_response(
        f"Failed to {action}: {friendly_message(exc)}", error_code(exc)
    )


@router.post("/stepfunction/execute", response_model=ExecuteResponse)
async def execute_workflow(
    payload: ExecuteRequest | None = None,
    service: DeploymentService = Depends(get_service),
) -> ExecuteResponse | JSONResponse:
    """Start a validation run on a deployed module."""
    payload = payload or ExecuteRequest()
    module = _module_or_400(payload.module)
    try:
        started = await service.execute(module, payload.validation_ids)
    except DeploymentError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=exc.message
        ) from exc
    except PROVIDER_ERRORS as exc:
        return _provider_failure("start validation execution", exc)
    return ExecuteResponse(
        execution_arn=started.execution_arn,
        start_date=started.start_date,
        step_function_arn=started.step_function_arn,
    )


@router.get("/activity/executions", response_model=ExecutionsResponse)
async def list_executions(
    module: str = Query(default=DEFAULT_MODULE),
    service: DeploymentService = Depends(get_service),
) -> ExecutionsResponse | JSONResponse:
    """Return recent workflow executions of a module."""
    module = _module_or_400(module)
    try:
        executions = await service.recent_executions(module)
    except PROVIDER_ERRORS as exc:
        return _provider_failure("list executions", exc)
    return ExecutionsResponse(executions=executions)


@router.get("/activity/logs/{execution_arn:path}", response_model=ExecutionLogsResponse)
async def execution_logs(
    execution_arn: str,
    module: str = Query(default=DEFAULT_MODULE),
    start_time: int | None = Query(default=None, alias="startTime"),
    incremental: bool = Query(default=False),
    service: DeploymentService = Depends(get_service),
) -> ExecutionLogsResponse | JSONResponse:
    """Return container log lines for a workflow execution."""
    module = _module_or_400(module)
    try:
        result = await service.execution_logs(
            module,
            unquote(execution_arn),
            start_time=start_time,
            incremental=incremental,
        )
    except PROVIDER_ERRORS as exc:
        return _provider_failure("fetch execution logs", exc)
    return ExecutionLogsResponse(logs=result.logs, task_arn=result.task_arn)


@router.post("/test-aws", response_model=CredentialsTestResponse)
async def test_aws(credentials: AWSCredentials) -> CredentialsTestResponse | JSONResponse:
    """Check that credentials are well-formed and accepted by AWS."""
    try:
        account = await verify_credentials(credentials)
    except AWSCredentialsError as exc:
        return _failure_response(exc.message, exc.code)
    return CredentialsTestResponse(
        message=f"AWS connection successful! Account: {account}", account_id=account
    )


@router.post("/aws-resources", response_model=InventoryResponse)
async def aws_resources(credentials: AWSCredentials) -> InventoryResponse | JSONResponse:
    """List deployable resources already present in the account."""
    try:
        clients = AWSClients.from_credentials(credentials)
        inventory = await fetch_inventory(clients)
    except PROVIDER_ERRORS as exc:
        return _failure_response(friendly_message(exc), error_code(exc))
    return InventoryResponse(resources=inventory)
