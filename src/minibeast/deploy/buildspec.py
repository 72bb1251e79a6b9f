"""CodeBuild buildspec and project generation for pushing an image archive.

The uploaded archive is a ``docker save`` tarball. CodeBuild downloads it
from the staging bucket, loads it, retags the first loaded image for the
repository and pushes it.
"""

from __future__ import annotations

import json
from typing import Any

from minibeast.config.defaults import (
    ARTIFACT_KEY,
    CODEBUILD_COMPUTE_TYPE,
    CODEBUILD_IMAGE,
    IMAGE_TAG,
)

BUILDSPEC_VERSION = "0.2"


def registry_host(repository_uri: str) -> str:
    """Return the registry host part of a repository URI."""
    return repository_uri.split("/", 1)[0]


def generate_buildspec(
    repository_uri: str,
    region: str,
    bucket: str,
    key: str = ARTIFACT_KEY,
    tag: str = IMAGE_TAG,
) -> dict[str, Any]:
    """Generate the buildspec that loads, tags and pushes the image.

    Args:
        repository_uri: ECR repository URI
        region: Region used for the ECR login
        bucket: Staging bucket holding the archive
        key: Object key of the archive
        tag: Tag pushed to the repository

    Returns:
        Buildspec as a dictionary
    """
    target = f"{repository_uri}:{tag}"
    return {
        "version": BUILDSPEC_VERSION,
        "phases": {
            "pre_build": {
                "commands": [
                    "echo Logging in to Amazon ECR...",
                    (
                        f"aws ecr get-login-password --region {region} | "
                        "docker login --username AWS --password-stdin "
                        f"{registry_host(repository_uri)}"
                    ),
                    "echo Downloading Docker tar from S3...",
                    f"aws s3 cp s3://{bucket}/{key} ./{ARTIFACT_KEY}",
                ]
            },
            "build": {
                "commands": [
                    "echo Loading Docker image from tar...",
                    f"docker load -i {ARTIFACT_KEY}",
                    (
                        "IMAGE_NAME=$(docker images --format "
                        '"table {{.Repository}}:{{.Tag}}" | tail -n +2 | head -n 1)'
                    ),
                    'echo "Loaded image: $IMAGE_NAME"',
                    f"docker tag $IMAGE_NAME {target}",
                ]
            },
            "post_build": {
                "commands": [
                    "echo Pushing image to ECR...",
                    f"docker push {target}",
                    "echo Docker image push completed!",
                ]
            },
        },
    }


def build_project_params(
    project_name: str,
    repository_name: str,
    buildspec: dict[str, Any],
    service_role_arn: str,
) -> dict[str, Any]:
    """Return ``create_project``/``update_project`` keyword arguments."""
    return {
        "name": project_name,
        "description": f"Build project for {repository_name} Docker image",
        "source": {"type": "NO_SOURCE", "buildspec": json.dumps(buildspec)},
        "artifacts": {"type": "NO_ARTIFACTS"},
        "environment": {
            "type": "LINUX_CONTAINER",
            "image": CODEBUILD_IMAGE,
            "computeType": CODEBUILD_COMPUTE_TYPE,
            "privilegedMode": True,
        },
        "serviceRole": service_role_arn,
    }
