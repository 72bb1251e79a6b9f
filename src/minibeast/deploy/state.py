"""Persisted per-module deployment snapshots.

Each module directory under ``<data_dir>/deployments/modules/`` holds a
``deployment.json`` and an ``aws-resources.json``. A snapshot that does not
describe a usable completed deployment is deleted when it is read.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from minibeast.lib.errors import DeploymentError
from minibeast.lib.logging_config import get_logger
from minibeast.models.deployment import DeploymentConfigRecord
from minibeast.models.deployment_state import DeploymentRecord
from minibeast.models.snapshot import (
    DeploymentSnapshot,
    LogGroups,
    ModuleSnapshot,
    ResourceSummary,
)

logger = get_logger(__name__)

DEPLOYMENT_FILE = "deployment.json"
RESOURCES_FILE = "aws-resources.json"


def get_module_dir(modules_dir: Path, module: str) -> Path:
    """Return the snapshot directory for a module."""
    return modules_dir / module


def _repository_name(repository_uri: str | None) -> str:
    if not repository_uri:
        return "unknown"
    return repository_uri.split("/")[-1].split(":")[0]


def build_snapshot(
    record: DeploymentRecord, config: DeploymentConfigRecord
) -> ModuleSnapshot:
    """Assemble the snapshot documents for a completed deployment."""
    resources = record.resources
    completed_at = record.completed_at or datetime.now(timezone.utc).isoformat()
    region = record.region or config.aws.region

    summary = ResourceSummary(
        step_function_arn=resources.step_function_arn,
        ecs_cluster=resources.ecs_cluster,
        ecs_service=None,
        task_definition=resources.task_definition,
        task_definition_family=resources.task_definition_family,
        execution_role_arn=resources.execution_role_arn,
        task_role_arn=resources.task_role_arn,
        ecr_repository=resources.ecr_repository,
        region=region,
        log_groups=LogGroups(
            possible_ecs_logs=[
                f"/ecs/{_repository_name(resources.ecr_repository)}"
            ]
        ),
        deployment_date=completed_at,
    )
    deployment = DeploymentSnapshot(
        id=record.id,
        status=record.status.value,
        module=config.module,
        aws_config=config.aws,
        env_variables=list(config.env_variables),
        image_name=config.image_name,
        completed_at=completed_at,
        saved_at=datetime.now(timezone.utc).isoformat(),
        api_endpoint=resources.step_function_arn,
        aws_resources=summary,
    )
    return ModuleSnapshot(module=config.module, deployment=deployment, resources=summary)


def _write_json(path: Path, payload: dict) -> None:
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def save_snapshot(modules_dir: Path, snapshot: ModuleSnapshot) -> Path:
    """Write both snapshot files for a module.

    Returns:
        The module directory the files were written to

    Raises:
        DeploymentError: If the files cannot be written
    """
    module_dir = get_module_dir(modules_dir, snapshot.module)
    try:
        module_dir.mkdir(parents=True, exist_ok=True)
        _write_json(
            module_dir / DEPLOYMENT_FILE,
            snapshot.deployment.model_dump(mode="json", by_alias=True),
        )
        _write_json(
            module_dir / RESOURCES_FILE,
            snapshot.resources.model_dump(mode="json", by_alias=True),
        )
    except OSError as exc:
        raise DeploymentError(
            operation="state",
            message=f"Failed to write deployment snapshot to {module_dir}: {exc}",
        ) from exc
    return module_dir


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        raise DeploymentError(
            operation="state",
            message=f"Failed to read deployment snapshot at {path}: {exc}",
        ) from exc


def _remove(paths: list[Path]) -> int:
    removed = 0
    for path in paths:
        try:
            path.unlink()
            removed += 1
        except FileNotFoundError:
            continue
        except OSError as exc:
            raise DeploymentError(
                operation="state",
                message=f"Failed to remove deployment snapshot file {path}: {exc}",
            ) from exc
    return removed


def load_snapshot(modules_dir: Path, module: str) -> ModuleSnapshot | None:
    """Load and validate the snapshot for a module.

    Returns None when the module is not deployed. Snapshots that fail to
    parse or are missing the status, workflow ARN, cluster or credentials
    are deleted before returning None.

    Raises:
        DeploymentError: If the files exist but cannot be read or removed
    """
    module_dir = get_module_dir(modules_dir, module)
    deployment_file = module_dir / DEPLOYMENT_FILE
    resources_file = module_dir / RESOURCES_FILE

    if not deployment_file.exists() or not resources_file.exists():
        return None

    deployment_text = _read_text(deployment_file)
    resources_text = _read_text(resources_file)

    snapshot: ModuleSnapshot | None
    try:
        snapshot = ModuleSnapshot(
            module=module,
            deployment=DeploymentSnapshot.model_validate_json(deployment_text),
            resources=ResourceSummary.model_validate_json(resources_text),
        )
    except ValidationError as exc:
        logger.warning(f"Unreadable deployment snapshot for module '{module}': {exc}")
        snapshot = None

    if snapshot is not None and snapshot.is_valid():
        return snapshot

    removed = _remove([deployment_file, resources_file])
    logger.warning(
        f"Removed {removed} corrupted deployment files for module '{module}'"
    )
    return None


def load_resources(modules_dir: Path, module: str) -> dict | None:
    """Return the raw contents of ``aws-resources.json``, or None if absent.

    Raises:
        DeploymentError: If the file cannot be read or is not valid JSON
    """
    resources_file = get_module_dir(modules_dir, module) / RESOURCES_FILE
    if not resources_file.exists():
        return None
    content = _read_text(resources_file)
    try:
        data = json.loads(content)
    except json.JSONDecodeError as exc:
        raise DeploymentError(
            operation="state",
            message=f"Invalid deployment resources format in {resources_file}: {exc}",
        ) from exc
    if not isinstance(data, dict):
        raise DeploymentError(
            operation="state",
            message=f"Invalid deployment resources format in {resources_file}",
        )
    return data


def clear_snapshot(modules_dir: Path, module: str) -> int:
    """Delete both snapshot files for a module.

    Returns:
        Number of files removed
    """
    module_dir = get_module_dir(modules_dir, module)
    removed = _remove([module_dir / DEPLOYMENT_FILE, module_dir / RESOURCES_FILE])
    if removed:
        logger.info(f"Removed {removed} deployment files for module '{module}'")
    return removed
