"""Deployment id and AWS resource name generation.

Names follow ``<prefix>-<module>-<role>-<shortid>`` where ``shortid`` is the
first eight characters of the deployment id. IAM role names are capped at 64
characters by AWS, so the ECS roles are composed from a short module token
and a random hex suffix instead.
"""

from __future__ import annotations

import secrets

from ulid import ULID

from minibeast.config.defaults import (
    IMAGE_TAG,
    MAX_ROLE_NAME_LENGTH,
    PRODUCT_PREFIX,
)
from minibeast.lib.errors import ValidationError
from minibeast.models.deployment import MODULE_PATTERN, ResourceNames

SHORT_ID_LENGTH = 8
MODULE_TOKEN_LENGTH = 20


def generate_deployment_id() -> str:
    """Generate a new deployment id (millisecond timestamp + randomness).

    Returns:
        Lowercase ULID string, safe for use inside AWS resource names
    """
    return str(ULID()).lower()


def short_id(deployment_id: str) -> str:
    """Return the short, name-safe slice of a deployment id."""
    if not deployment_id:
        raise ValidationError(
            field="deployment_id",
            message="Deployment id must not be empty",
            expected="non-empty string",
            actual=repr(deployment_id),
        )
    return deployment_id[:SHORT_ID_LENGTH].lower()


def _validate_module(module: str) -> str:
    normalized = (module or "").strip().lower()
    if not MODULE_PATTERN.match(normalized):
        raise ValidationError(
            field="module",
            message="Module name must be alphanumeric with hyphens",
            expected="e.g. 'validator' or 'data-checks'",
            actual=repr(module),
        )
    return normalized


def image_name(module: str) -> str:
    """Return the logical image name for a module (``minibeat-<module>:latest``)."""
    return f"{PRODUCT_PREFIX}-{_validate_module(module)}:{IMAGE_TAG}"


def _role_name(token: str, kind: str) -> str:
    name = f"{token}-{kind}-{secrets.token_hex(4)}"
    if len(name) > MAX_ROLE_NAME_LENGTH:
        raise ValidationError(
            field="role_name",
            message="IAM role name exceeds the AWS length limit",
            expected=f"<= {MAX_ROLE_NAME_LENGTH} characters",
            actual=f"{len(name)} characters ({name})",
        )
    return name


def generate_resource_names(deployment_id: str, module: str) -> ResourceNames:
    """Generate the full resource name bundle for a deployment.

    Args:
        deployment_id: Deployment identifier
        module: Module tag (alphanumeric with hyphens)

    Returns:
        ResourceNames bundle

    Raises:
        ValidationError: If the module tag is invalid or a role name would
            exceed the IAM length limit

    Example:
        >>> names = generate_resource_names("01jabcde7xyz", "validator")
        >>> names.cluster
        'minibeat-validator-cluster-01jabcde'
    """
    mod = _validate_module(module)
    sid = short_id(deployment_id)
    base = f"{PRODUCT_PREFIX}-{mod}"
    token = mod[:MODULE_TOKEN_LENGTH].rstrip("-")
    repository = f"{base}-repo-{sid}"

    names = ResourceNames(
        ecr_repository=repository,
        cluster=f"{base}-cluster-{sid}",
        task_family=f"{base}-task-{sid}",
        execution_role=_role_name(token, "exec"),
        task_role=_role_name(token, "task"),
        stepfunctions_role=f"{base}-sfn-role-{sid}",
        state_machine=f"{base}-workflow-{sid}",
        build_project=f"{base}-build-{sid}",
        build_role=f"{base}-build-role-{sid}",
        bucket=f"{base}-builds-{sid}",
        security_group=f"{repository}-sg",
        log_group=f"/ecs/{repository}",
    )

    for role in (names.stepfunctions_role, names.build_role):
        if len(role) > MAX_ROLE_NAME_LENGTH:
            raise ValidationError(
                field="module",
                message="Module name too long for IAM role names",
                expected=f"role names <= {MAX_ROLE_NAME_LENGTH} characters",
                actual=f"{role} ({len(role)} characters)",
            )
    return names
