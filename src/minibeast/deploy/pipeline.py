"""Five-stage AWS provisioning pipeline.

Stages run in a fixed order and report through the step tracker:

1. ``ecr-repo``: create or reuse the ECR repository
2. ``ecr-push``: stage the image archive in S3 and push it with CodeBuild
3. ``task-definition``: log group, ECS roles and the Fargate task definition
4. ``ecs-service``: cluster, default VPC subnets and security group
5. ``step-functions``: workflow role and the state machine that runs the task

Resource creation treats "already exists" as success and reuses the
existing resource. Any other error stops the run and is recorded on the
step and the deployment record. ``run`` never raises.
"""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Any

from minibeast.config.defaults import (
    ARTIFACT_KEY,
    BUILD_IN_PROGRESS,
    BUILD_TERMINAL_SUCCESS,
    CONTAINER_PORT,
    IMAGE_TAG,
    INGRESS_CIDR,
    MAX_SUBNETS,
    STEP_ECR_PUSH,
    STEP_ECR_REPO,
    STEP_ECS_SERVICE,
    STEP_ORDER,
    STEP_STEP_FUNCTIONS,
    STEP_TASK_DEFINITION,
    TASK_CPU,
    TASK_MEMORY,
)
from minibeast.deploy.aws import (
    AWSClients,
    ClientFactory,
    call,
    error_message,
    is_conflict,
)
from minibeast.deploy.buildspec import build_project_params, generate_buildspec
from minibeast.deploy.cleanup import cleanup_after_deployment
from minibeast.deploy.config_store import DeploymentConfigStore
from minibeast.deploy.identity import (
    CODEBUILD_MANAGED_POLICIES,
    ECS_EXECUTION_MANAGED_POLICY,
    STEPFUNCTIONS_POLICY_NAME,
    TASK_ROLE_POLICY_NAME,
    PropagationWaiter,
    ensure_role,
    stepfunctions_policy,
    task_role_policy,
)
from minibeast.deploy.state import build_snapshot, save_snapshot
from minibeast.deploy.tracker import StepTracker
from minibeast.lib.errors import (
    DeploymentConfigNotFoundError,
    DeploymentError,
    DeploymentNotFoundError,
)
from minibeast.lib.logging_config import get_logger
from minibeast.models.deployment import DeploymentConfigRecord, ResourceNames
from minibeast.models.deployment_state import (
    DeploymentRecord,
    DeploymentResources,
    StepStatus,
)

logger = get_logger(__name__)

ARTIFACT_CONTENT_TYPE = "application/x-tar"
BUCKET_CONFLICTS = ("BucketAlreadyOwnedByYou", "BucketAlreadyExists")
STATE_MACHINE_TASK_RESOURCE = "arn:aws:states:::ecs:runTask.sync"


@dataclass
class StageContext:
    """Inputs shared by every stage of one run."""

    deployment_id: str
    config: DeploymentConfigRecord
    clients: AWSClients
    log: Callable[[str], None]

    @property
    def names(self) -> ResourceNames:
        return self.config.resource_names

    @property
    def region(self) -> str:
        return self.config.aws.region


@dataclass
class StageResult:
    """Outcome of one stage: ``error`` is None on success."""

    step: str
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


Stage = Callable[[StageContext], Awaitable[None]]


class ProvisioningPipeline:
    """Runs, and resumes, the provisioning stages for a deployment.

    Args:
        tracker: Step status tracker holding the deployment record
        config_store: Store holding the deployment's configuration
        modules_dir: Root directory for per-module snapshots
        client_factory: Builds AWS clients from credentials
        waiter: Propagation and build-poll waits
        cleanup: Whether to run post-success cleanup
    """

    def __init__(
        self,
        tracker: StepTracker,
        config_store: DeploymentConfigStore,
        modules_dir: Path,
        client_factory: ClientFactory = AWSClients.from_credentials,
        waiter: PropagationWaiter | None = None,
        cleanup: bool = True,
    ) -> None:
        self.tracker = tracker
        self.config_store = config_store
        self.modules_dir = modules_dir
        self.client_factory = client_factory
        self.waiter = waiter or PropagationWaiter()
        self.cleanup = cleanup
        self.stages: dict[str, Stage] = {
            STEP_ECR_REPO: self.ensure_repository,
            STEP_ECR_PUSH: self.push_image,
            STEP_TASK_DEFINITION: self.register_task_definition,
            STEP_ECS_SERVICE: self.prepare_cluster,
            STEP_STEP_FUNCTIONS: self.create_workflow,
        }

    def _resources(self, deployment_id: str) -> DeploymentResources:
        return self.tracker.snapshot(deployment_id).resources

    async def run(self, deployment_id: str) -> DeploymentRecord | None:
        """Run the pipeline from the first step that is not completed.

        Earlier completed steps are skipped and the resources they recorded
        are reused. Never raises; the outcome is reflected in the tracker.

        Returns:
            Final copy of the deployment record, or None if it vanished
        """
        try:
            config = self.config_store.require(deployment_id)
        except DeploymentConfigNotFoundError as exc:
            logger.error(f"Deployment {deployment_id}: {exc.message}")
            try:
                self.tracker.mark_failed(deployment_id, exc.message)
            except DeploymentNotFoundError:
                logger.warning(f"Deployment {deployment_id} is no longer tracked")
            return self.tracker.get(deployment_id)

        try:
            clients = self.client_factory(config.aws)
            start = self.tracker.resume_point(deployment_id)
            pending = STEP_ORDER[STEP_ORDER.index(start) :] if start else ()

            for step in pending:
                ctx = StageContext(
                    deployment_id=deployment_id,
                    config=config,
                    clients=clients,
                    log=partial(self.tracker.append_log, deployment_id, step),
                )
                result = await self._run_stage(step, ctx)
                if not result.ok:
                    logger.error(
                        f"Deployment {deployment_id} failed at {step}: {result.error}"
                    )
                    return self.tracker.get(deployment_id)

            await self._finalize(deployment_id, config, clients)
        except Exception as exc:
            logger.exception(f"Deployment {deployment_id} aborted: {exc}")
            try:
                self.tracker.mark_failed(deployment_id, str(exc))
            except DeploymentNotFoundError:
                logger.warning(f"Deployment {deployment_id} is no longer tracked")
        return self.tracker.get(deployment_id)

    async def _run_stage(self, step: str, ctx: StageContext) -> StageResult:
        self.tracker.transition(ctx.deployment_id, step, StepStatus.RUNNING)
        try:
            await self.stages[step](ctx)
        except Exception as exc:
            message = error_message(exc)
            ctx.log(f"Failed: {message}")
            self.tracker.transition(
                ctx.deployment_id, step, StepStatus.ERROR, details=message
            )
            return StageResult(step=step, error=message)
        self.tracker.transition(ctx.deployment_id, step, StepStatus.COMPLETED)
        return StageResult(step=step)

    async def _finalize(
        self,
        deployment_id: str,
        config: DeploymentConfigRecord,
        clients: AWSClients,
    ) -> None:
        last_step = STEP_ORDER[-1]
        log = partial(self.tracker.append_log, deployment_id, last_step)

        self.tracker.mark_completed(deployment_id, region=config.aws.region)
        log("Deployment completed successfully!")

        try:
            snapshot = build_snapshot(self.tracker.snapshot(deployment_id), config)
            module_dir = save_snapshot(self.modules_dir, snapshot)
            log(f"Deployment saved: {module_dir}")
        except DeploymentError as exc:
            log(f"Warning: Could not save deployment files: {exc.message}")

        if self.cleanup:
            await cleanup_after_deployment(clients, config, log)

    # Stage 1
    async def ensure_repository(self, ctx: StageContext) -> None:
        """Create the ECR repository or reuse the existing one."""
        ecr = ctx.clients.ecr
        name = ctx.names.ecr_repository
        ctx.log("Creating ECR repository...")
        try:
            response = await call(
                ecr.create_repository,
                repositoryName=name,
                imageScanningConfiguration={"scanOnPush": True},
            )
            uri = response["repository"]["repositoryUri"]
            ctx.log(f"ECR repository created: {name}")
        except Exception as exc:
            if not is_conflict(exc, "RepositoryAlreadyExistsException"):
                raise
            response = await call(ecr.describe_repositories, repositoryNames=[name])
            uri = response["repositories"][0]["repositoryUri"]
            ctx.log(f"Repository already exists, using: {uri}")
        ctx.log(f"Repository URI: {uri}")
        self.tracker.update_resources(ctx.deployment_id, ecr_repository=uri)

    # Stage 2
    async def push_image(self, ctx: StageContext) -> None:
        """Upload the image archive and push it to ECR through CodeBuild."""
        artifact = ctx.config.artifact
        if artifact is None or not artifact.path.exists():
            ctx.log("No Docker tar file found in upload")
            raise DeploymentError(STEP_ECR_PUSH, "No Docker image file uploaded")

        repository_uri = self._resources(ctx.deployment_id).ecr_repository
        if not repository_uri:
            raise DeploymentError(STEP_ECR_PUSH, "ECR repository URI is not known")

        ctx.log(f"Processing: {artifact.original_name} ({artifact.size_mb:.1f} MB)")
        await self._stage_artifact(ctx, artifact.path)

        role = await ensure_role(
            ctx.clients.iam,
            ctx.names.build_role,
            "codebuild.amazonaws.com",
            kind="codebuild",
            waiter=self.waiter,
            managed_policies=CODEBUILD_MANAGED_POLICIES,
            log=ctx.log,
        )
        self.tracker.update_resources(ctx.deployment_id, build_role_arn=role.arn)

        buildspec = generate_buildspec(
            repository_uri, ctx.region, ctx.names.bucket, ARTIFACT_KEY
        )
        params = build_project_params(
            ctx.names.build_project, ctx.names.ecr_repository, buildspec, role.arn
        )
        codebuild = ctx.clients.codebuild
        try:
            await call(codebuild.create_project, **params)
            ctx.log(f"CodeBuild project created: {ctx.names.build_project}")
        except Exception as exc:
            if not is_conflict(exc, "ResourceAlreadyExistsException"):
                raise
            await call(codebuild.update_project, **params)
            ctx.log(f"Updated existing CodeBuild project: {ctx.names.build_project}")

        ctx.log("Starting CodeBuild to process Docker image...")
        response = await call(codebuild.start_build, projectName=ctx.names.build_project)
        build_id = response["build"]["id"]
        ctx.log(f"Build started: {build_id}")

        status = BUILD_IN_PROGRESS
        while status == BUILD_IN_PROGRESS:
            await self.waiter.wait_for_poll()
            response = await call(codebuild.batch_get_builds, ids=[build_id])
            status = response["builds"][0]["buildStatus"]
            ctx.log(f"Build status: {status}")

        if status != BUILD_TERMINAL_SUCCESS:
            raise DeploymentError(
                STEP_ECR_PUSH, f"CodeBuild failed with status: {status}"
            )

        image_uri = f"{repository_uri}:{IMAGE_TAG}"
        self.tracker.update_resources(ctx.deployment_id, image_uri=image_uri)
        ctx.log(f"Docker image pushed to ECR: {image_uri}")

    async def _stage_artifact(self, ctx: StageContext, path: Path) -> None:
        s3 = ctx.clients.s3
        bucket = ctx.names.bucket
        ctx.log("Creating S3 bucket for Docker builds...")
        bucket_params: dict[str, Any] = {"Bucket": bucket}
        if ctx.region != "us-east-1":
            bucket_params["CreateBucketConfiguration"] = {
                "LocationConstraint": ctx.region
            }
        try:
            await call(s3.create_bucket, **bucket_params)
            ctx.log(f"S3 bucket created: {bucket}")
        except Exception as exc:
            if not is_conflict(exc, *BUCKET_CONFLICTS):
                raise
            ctx.log(f"Using existing S3 bucket: {bucket}")

        ctx.log("Uploading Docker tar to S3...")
        await call(
            s3.upload_file,
            str(path),
            bucket,
            ARTIFACT_KEY,
            ExtraArgs={"ContentType": ARTIFACT_CONTENT_TYPE},
        )
        ctx.log(f"Docker tar uploaded to S3: s3://{bucket}/{ARTIFACT_KEY}")

    # Stage 3
    async def register_task_definition(self, ctx: StageContext) -> None:
        """Create the log group and ECS roles, then register the task definition."""
        names = ctx.names
        repository_uri = self._resources(ctx.deployment_id).ecr_repository
        if not repository_uri:
            raise DeploymentError(
                STEP_TASK_DEFINITION, "ECR repository URI is not known"
            )

        try:
            await call(ctx.clients.logs.create_log_group, logGroupName=names.log_group)
            ctx.log(f"Created log group: {names.log_group}")
        except Exception as exc:
            if not is_conflict(exc, "ResourceAlreadyExistsException"):
                raise
            ctx.log(f"Using existing log group: {names.log_group}")
        self.tracker.update_resources(ctx.deployment_id, log_group=names.log_group)

        ctx.log(f"Creating execution role: {names.execution_role}...")
        execution_role = await ensure_role(
            ctx.clients.iam,
            names.execution_role,
            "ecs-tasks.amazonaws.com",
            kind="execution",
            waiter=self.waiter,
            managed_policies=(ECS_EXECUTION_MANAGED_POLICY,),
            log=ctx.log,
        )

        ctx.log(f"Creating task role: {names.task_role}...")
        task_role = await ensure_role(
            ctx.clients.iam,
            names.task_role,
            "ecs-tasks.amazonaws.com",
            kind="task",
            waiter=self.waiter,
            inline_policies={TASK_ROLE_POLICY_NAME: task_role_policy(ctx.region)},
            log=ctx.log,
        )

        ctx.log("Registering ECS task definition...")
        response = await call(
            ctx.clients.ecs.register_task_definition,
            **self.task_definition_params(
                ctx, repository_uri, execution_role.arn, task_role.arn
            ),
        )
        task_definition_arn = response["taskDefinition"]["taskDefinitionArn"]
        ctx.log(f"Task definition created: {task_definition_arn}")

        self.tracker.update_resources(
            ctx.deployment_id,
            task_definition=task_definition_arn,
            task_definition_family=names.task_family,
            execution_role_arn=execution_role.arn,
            task_role_arn=task_role.arn,
        )

    @staticmethod
    def task_definition_params(
        ctx: StageContext,
        repository_uri: str,
        execution_role_arn: str,
        task_role_arn: str,
    ) -> dict[str, Any]:
        """Return ``register_task_definition`` keyword arguments."""
        names = ctx.names
        return {
            "family": names.task_family,
            "networkMode": "awsvpc",
            "requiresCompatibilities": ["FARGATE"],
            "cpu": TASK_CPU,
            "memory": TASK_MEMORY,
            "executionRoleArn": execution_role_arn,
            "taskRoleArn": task_role_arn,
            "containerDefinitions": [
                {
                    "name": names.ecr_repository,
                    "image": f"{repository_uri}:{IMAGE_TAG}",
                    "portMappings": [
                        {"containerPort": CONTAINER_PORT, "protocol": "tcp"}
                    ],
                    "environment": [
                        {"name": env.key, "value": env.value}
                        for env in ctx.config.env_variables
                    ],
                    "logConfiguration": {
                        "logDriver": "awslogs",
                        "options": {
                            "awslogs-group": names.log_group,
                            "awslogs-region": ctx.region,
                            "awslogs-stream-prefix": "ecs",
                        },
                    },
                    "essential": True,
                }
            ],
        }

    # Stage 4
    async def prepare_cluster(self, ctx: StageContext) -> None:
        """Create the ECS cluster and the networking the task runs in.

        No ECS service is started; tasks run on demand from the workflow.
        """
        names = ctx.names
        ecs = ctx.clients.ecs
        ec2 = ctx.clients.ec2

        ctx.log("Creating ECS cluster...")
        try:
            await call(ecs.create_cluster, clusterName=names.cluster)
            ctx.log(f"ECS cluster created: {names.cluster}")
        except Exception as exc:
            if not is_conflict(exc, "ClusterAlreadyExistsException"):
                raise
            ctx.log(f"Using existing cluster: {names.cluster}")
        self.tracker.update_resources(ctx.deployment_id, ecs_cluster=names.cluster)

        ctx.log("Setting up networking...")
        vpcs = await call(
            ec2.describe_vpcs, Filters=[{"Name": "isDefault", "Values": ["true"]}]
        )
        if not vpcs.get("Vpcs"):
            raise DeploymentError(
                STEP_ECS_SERVICE, f"No default VPC found in {ctx.region}"
            )
        vpc_id = vpcs["Vpcs"][0]["VpcId"]

        response = await call(
            ec2.describe_subnets, Filters=[{"Name": "vpc-id", "Values": [vpc_id]}]
        )
        subnets = [subnet["SubnetId"] for subnet in response.get("Subnets", [])]
        if not subnets:
            raise DeploymentError(
                STEP_ECS_SERVICE, f"No subnets found in default VPC {vpc_id}"
            )

        group_id = await self._ensure_security_group(ctx, vpc_id)
        self.tracker.update_resources(
            ctx.deployment_id, subnets=subnets, security_group_id=group_id
        )
        ctx.log("ECS setup completed - task definition ready")
        ctx.log("Tasks will be started on-demand via Step Functions")

    async def _ensure_security_group(self, ctx: StageContext, vpc_id: str) -> str:
        ec2 = ctx.clients.ec2
        name = ctx.names.security_group
        try:
            response = await call(
                ec2.create_security_group,
                GroupName=name,
                Description=f"Security group for {ctx.names.ecr_repository}",
                VpcId=vpc_id,
            )
            group_id = response["GroupId"]
            ctx.log(f"Security group created: {group_id}")
        except Exception as exc:
            if not is_conflict(exc, "InvalidGroup.Duplicate"):
                raise
            existing = await call(
                ec2.describe_security_groups,
                Filters=[
                    {"Name": "group-name", "Values": [name]},
                    {"Name": "vpc-id", "Values": [vpc_id]},
                ],
            )
            group_id = existing["SecurityGroups"][0]["GroupId"]
            ctx.log(f"Using existing security group: {group_id}")

        try:
            await call(
                ec2.authorize_security_group_ingress,
                GroupId=group_id,
                IpPermissions=[
                    {
                        "IpProtocol": "tcp",
                        "FromPort": CONTAINER_PORT,
                        "ToPort": CONTAINER_PORT,
                        "IpRanges": [{"CidrIp": INGRESS_CIDR}],
                    }
                ],
            )
            ctx.log(f"Allowed inbound TCP {CONTAINER_PORT} on {group_id}")
        except Exception as exc:
            if not is_conflict(exc, "InvalidPermission.Duplicate"):
                raise
            ctx.log(f"Inbound rule for TCP {CONTAINER_PORT} already present")
        return group_id

    # Stage 5
    async def create_workflow(self, ctx: StageContext) -> None:
        """Create the workflow role and the state machine that runs the task."""
        names = ctx.names
        resources = self._resources(ctx.deployment_id)
        if not resources.subnets or not resources.security_group_id:
            raise DeploymentError(
                STEP_STEP_FUNCTIONS, "Cluster networking has not been prepared"
            )

        ctx.log("Creating Step Functions workflow...")
        role = await ensure_role(
            ctx.clients.iam,
            names.stepfunctions_role,
            "states.amazonaws.com",
            kind="stepfunctions",
            waiter=self.waiter,
            inline_policies={STEPFUNCTIONS_POLICY_NAME: stepfunctions_policy()},
            log=ctx.log,
        )
        self.tracker.update_resources(
            ctx.deployment_id, stepfunctions_role_arn=role.arn
        )

        definition = state_machine_definition(
            repository_name=names.ecr_repository,
            cluster=resources.ecs_cluster or names.cluster,
            task_family=resources.task_definition_family or names.task_family,
            subnets=resources.subnets,
            security_group_id=resources.security_group_id,
        )
        ctx.log("Step Function configured to accept container overrides")

        sfn = ctx.clients.sfn
        try:
            response = await call(
                sfn.create_state_machine,
                name=names.state_machine,
                definition=json.dumps(definition),
                roleArn=role.arn,
            )
            arn = response["stateMachineArn"]
            ctx.log(f"Step Function created: {names.state_machine}")
        except Exception as exc:
            if not is_conflict(exc, "StateMachineAlreadyExists"):
                raise
            arn = await self._find_state_machine(sfn, names.state_machine)
            ctx.log(f"Using existing Step Function: {arn}")

        self.tracker.update_resources(ctx.deployment_id, step_function_arn=arn)

    @staticmethod
    async def _find_state_machine(sfn: Any, name: str) -> str:
        def _lookup() -> str | None:
            paginator = sfn.get_paginator("list_state_machines")
            for page in paginator.paginate():
                for machine in page.get("stateMachines", []):
                    if machine.get("name") == name:
                        return machine["stateMachineArn"]
            return None

        arn = await call(_lookup)
        if arn is None:
            raise DeploymentError(
                STEP_STEP_FUNCTIONS, f"State machine {name} exists but was not found"
            )
        return arn


def state_machine_definition(
    repository_name: str,
    cluster: str,
    task_family: str,
    subnets: list[str],
    security_group_id: str,
) -> dict[str, Any]:
    """Return the one-state workflow that runs the task and waits for it."""
    return {
        "Comment": f"Start Fargate task for {repository_name}",
        "StartAt": "StartTask",
        "States": {
            "StartTask": {
                "Type": "Task",
                "Resource": STATE_MACHINE_TASK_RESOURCE,
                "Parameters": {
                    "LaunchType": "FARGATE",
                    "Cluster": cluster,
                    "TaskDefinition": task_family,
                    "Overrides.$": "$.containerOverrides",
                    "NetworkConfiguration": {
                        "AwsvpcConfiguration": {
                            "Subnets": subnets[:MAX_SUBNETS],
                            "SecurityGroups": [security_group_id],
                            "AssignPublicIp": "ENABLED",
                        }
                    },
                },
                "End": True,
            }
        },
    }
