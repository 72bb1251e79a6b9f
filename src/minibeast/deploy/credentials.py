"""Credential checks and account inventory for the setup screens."""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from minibeast.deploy.aws import (
    PROVIDER_ERRORS,
    AWSClients,
    call,
    error_code,
    error_message,
)
from minibeast.lib.errors import AWSCredentialsError
from minibeast.lib.logging_config import get_logger
from minibeast.models.activity import AccountInventory
from minibeast.models.deployment import AWSCredentials

logger = get_logger(__name__)

INVENTORY_PAGE_SIZE = 100

_FRIENDLY_MESSAGES = {
    "UnrecognizedClientException": (
        "Invalid AWS credentials. Please check your Access Key and Secret Key."
    ),
    "InvalidClientTokenId": (
        "Invalid AWS credentials. Please check your Access Key and Secret Key."
    ),
    "InvalidUserID.NotFound": "AWS credentials are invalid or expired.",
    "AccessDenied": (
        "Access denied. Please ensure your AWS user has ECR and ECS permissions."
    ),
}


def friendly_message(exc: BaseException) -> str:
    """Map a provider error to a message an operator can act on."""
    return _FRIENDLY_MESSAGES.get(error_code(exc) or "", error_message(exc))


async def verify_credentials(
    credentials: AWSCredentials,
    clients: AWSClients | None = None,
) -> str:
    """Check credential format, identity and ECR reachability.

    Args:
        credentials: Credential tuple to check
        clients: Pre-built clients (built from ``credentials`` when omitted)

    Returns:
        The AWS account id

    Raises:
        AWSCredentialsError: If the format is wrong or AWS rejects the call
    """
    problems = credentials.format_problems()
    if problems:
        raise AWSCredentialsError(problems[0])

    clients = clients or AWSClients.from_credentials(credentials)
    logger.info(f"Testing AWS credentials for region: {credentials.region}")
    try:
        identity = await call(clients.sts.get_caller_identity)
        await call(clients.ecr.describe_repositories, maxResults=1)
    except PROVIDER_ERRORS as exc:
        logger.warning(f"AWS connection test failed: {exc}")
        raise AWSCredentialsError(friendly_message(exc), code=error_code(exc)) from exc

    account = identity["Account"]
    logger.info(f"AWS credentials valid. Account: {account}, User: {identity.get('Arn')}")
    return account


async def _cluster_names(clients: AWSClients) -> list[str]:
    listed = await call(clients.ecs.list_clusters)
    arns = listed.get("clusterArns", [])
    if not arns:
        return []
    described = await call(clients.ecs.describe_clusters, clusters=arns)
    return [
        cluster["clusterName"]
        for cluster in described.get("clusters", [])
        if cluster.get("status") == "ACTIVE"
    ]


async def _task_families(clients: AWSClients) -> list[str]:
    response = await call(
        clients.ecs.list_task_definition_families,
        status="ACTIVE",
        maxResults=INVENTORY_PAGE_SIZE,
    )
    return list(response.get("families", []))


async def _repository_names(clients: AWSClients) -> list[str]:
    response = await call(
        clients.ecr.describe_repositories, maxResults=INVENTORY_PAGE_SIZE
    )
    return [repo["repositoryName"] for repo in response.get("repositories", [])]


async def _role_names(clients: AWSClients) -> list[str]:
    response = await call(clients.iam.list_roles, MaxItems=1000)
    return sorted(role["RoleName"] for role in response.get("Roles", []))


async def _state_machine_names(clients: AWSClients) -> list[str]:
    response = await call(
        clients.sfn.list_state_machines, maxResults=INVENTORY_PAGE_SIZE
    )
    return [machine["name"] for machine in response.get("stateMachines", [])]


async def fetch_inventory(clients: AWSClients) -> AccountInventory:
    """List clusters, task families, repositories, roles and state machines.

    A service that cannot be listed contributes an empty list; the failure
    is logged.
    """
    collectors: dict[str, Callable[[AWSClients], Awaitable[list[str]]]] = {
        "clusters": _cluster_names,
        "task_definitions": _task_families,
        "ecr_repositories": _repository_names,
        "iam_roles": _role_names,
        "step_functions": _state_machine_names,
    }
    found: dict[str, list[str]] = {}
    for field_name, collect in collectors.items():
        try:
            found[field_name] = await collect(clients)
        except PROVIDER_ERRORS as exc:
            logger.warning(f"Error fetching {field_name}: {error_message(exc)}")
            found[field_name] = []

    inventory = AccountInventory(**found)
    logger.info(
        "Fetched AWS resources: "
        + ", ".join(f"{name}={len(values)}" for name, values in found.items())
    )
    return inventory
