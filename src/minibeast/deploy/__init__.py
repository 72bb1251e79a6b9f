"""MiniBeast deployment engine.

This package provisions the AWS resources that run an uploaded container
image on demand: ECR repository, CodeBuild push, ECS task definition and
cluster, and a Step Functions workflow. Progress is tracked per step and
failed runs resume from the failed step.
"""

from minibeast.deploy.config_store import DeploymentConfigStore
from minibeast.deploy.identity import PropagationWaiter
from minibeast.deploy.naming import generate_deployment_id, generate_resource_names
from minibeast.deploy.pipeline import ProvisioningPipeline
from minibeast.deploy.service import DeploymentService
from minibeast.deploy.tracker import StepTracker

__all__ = [
    "DeploymentConfigStore",
    "DeploymentService",
    "PropagationWaiter",
    "ProvisioningPipeline",
    "StepTracker",
    "generate_deployment_id",
    "generate_resource_names",
]
