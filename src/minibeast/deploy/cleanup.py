"""Best-effort cleanup after a successful deployment."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

from minibeast.config.defaults import ECR_IMAGES_TO_KEEP
from minibeast.deploy.aws import PROVIDER_ERRORS, AWSClients, call, error_message
from minibeast.lib.logging_config import get_logger
from minibeast.models.deployment import DeploymentConfigRecord

logger = get_logger(__name__)


def remove_upload(path: Path | None) -> bool:
    """Delete a staged upload. Returns True if a file was removed."""
    if path is None or not path.exists():
        return False
    path.unlink()
    return True


async def prune_images(
    clients: AWSClients, repository_name: str, keep: int = ECR_IMAGES_TO_KEEP
) -> int:
    """Delete every image after the first ``keep`` listed in a repository.

    Returns:
        Number of images deleted
    """
    response = await call(
        clients.ecr.list_images, repositoryName=repository_name, maxResults=100
    )
    image_ids = response.get("imageIds", [])
    stale = image_ids[keep:]
    if not stale:
        return 0
    await call(
        clients.ecr.batch_delete_image,
        repositoryName=repository_name,
        imageIds=stale,
    )
    return len(stale)


async def cleanup_after_deployment(
    clients: AWSClients,
    config: DeploymentConfigRecord,
    log: Callable[[str], None],
) -> None:
    """Remove the local upload and prune old repository images.

    Failures are logged through ``log`` and never raised.
    """
    log("Starting cleanup of uploads and old images...")

    artifact_path = config.artifact.path if config.artifact else None
    try:
        if remove_upload(artifact_path):
            log(f"Deleted local upload: {config.artifact.original_name}")
    except OSError as exc:
        log(f"Upload cleanup warning: {exc}")
        logger.warning(f"Could not delete upload {artifact_path}: {exc}")

    try:
        deleted = await prune_images(clients, config.resource_names.ecr_repository)
        if deleted:
            log(f"Cleaned up {deleted} old ECR images")
    except PROVIDER_ERRORS as exc:
        log(f"ECR cleanup warning: {error_message(exc)}")
        logger.warning(f"ECR cleanup failed for {config.deployment_id}: {exc}")

    log("Cleanup completed")
