"""Deployment service tying the stores, pipeline and snapshots together.

The HTTP surface and the CLI talk to this facade only. Pipeline runs are
launched as detached asyncio tasks and observed by polling the tracker.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from minibeast.config.defaults import STEP_ORDER
from minibeast.deploy import state
from minibeast.deploy.aws import AWSClients, ClientFactory
from minibeast.deploy.config_store import DeploymentConfigStore
from minibeast.deploy.executions import (
    fetch_execution_logs,
    list_recent_executions,
    start_validation_run,
)
from minibeast.deploy.identity import PropagationWaiter
from minibeast.deploy.naming import (
    generate_deployment_id,
    generate_resource_names,
    image_name,
)
from minibeast.deploy.pipeline import ProvisioningPipeline
from minibeast.deploy.tracker import StepTracker
from minibeast.lib.errors import DeploymentError, RetryNotAllowedError
from minibeast.lib.logging_config import get_logger
from minibeast.models.activity import ExecutionLogs, ExecutionStarted, ExecutionSummary
from minibeast.models.deployment import (
    ArtifactRef,
    AWSCredentials,
    DeploymentConfigRecord,
    EnvVariable,
)
from minibeast.models.deployment_state import DeploymentRecord, DeploymentStatus
from minibeast.models.snapshot import ModuleSnapshot

logger = get_logger(__name__)


class DeploymentService:
    """Creates, runs, retries and clears deployments.

    Attributes:
        tracker: Step status tracker
        config_store: Deployment configuration store
        pipeline: Provisioning pipeline
        modules_dir: Root directory for per-module snapshots
    """

    def __init__(
        self,
        modules_dir: Path,
        tracker: StepTracker | None = None,
        config_store: DeploymentConfigStore | None = None,
        client_factory: ClientFactory = AWSClients.from_credentials,
        waiter: PropagationWaiter | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            modules_dir: Root directory for per-module snapshots
            tracker: Step tracker (a new one when omitted)
            config_store: Config store (a new one when omitted)
            client_factory: Builds AWS clients from credentials
            waiter: Propagation waits used by the pipeline
        """
        self.modules_dir = modules_dir
        self.tracker = tracker or StepTracker()
        self.config_store = config_store or DeploymentConfigStore()
        self.client_factory = client_factory
        self.pipeline = ProvisioningPipeline(
            self.tracker,
            self.config_store,
            modules_dir,
            client_factory=client_factory,
            waiter=waiter,
        )
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def active_runs(self) -> int:
        """Number of pipeline runs still in flight."""
        return len(self._tasks)

    def create_deployment(
        self,
        credentials: AWSCredentials,
        module: str,
        env_variables: Sequence[EnvVariable] = (),
        artifact: ArtifactRef | None = None,
    ) -> DeploymentConfigRecord:
        """Register a new deployment without starting it.

        Seeds the tracker with every step pending and stores the
        configuration the pipeline (and any retry) will run with.
        """
        deployment_id = generate_deployment_id()
        config = DeploymentConfigRecord(
            deployment_id=deployment_id,
            module=module,
            aws=credentials,
            env_variables=list(env_variables),
            artifact=artifact,
            image_name=image_name(module),
            resource_names=generate_resource_names(deployment_id, module),
        )
        self.config_store.put(config)
        self.tracker.initialize(deployment_id, STEP_ORDER, module=module)

        log = self.tracker.append_log
        names = config.resource_names
        log(deployment_id, STEP_ORDER[0], f"Starting deployment of module '{module}'")
        log(deployment_id, STEP_ORDER[0], f"- Repository: {names.ecr_repository}")
        log(deployment_id, STEP_ORDER[0], f"- Cluster: {names.cluster}")
        log(deployment_id, STEP_ORDER[0], f"- Task Definition: {names.task_family}")
        log(deployment_id, STEP_ORDER[0], f"- Region: {credentials.region}")
        return config

    def launch(self, deployment_id: str) -> asyncio.Task[Any]:
        """Run the pipeline for a deployment as a detached task."""
        task = asyncio.create_task(
            self.pipeline.run(deployment_id), name=f"deploy-{deployment_id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def start_deployment(
        self,
        credentials: AWSCredentials,
        module: str,
        env_variables: Sequence[EnvVariable] = (),
        artifact: ArtifactRef | None = None,
    ) -> str:
        """Create a deployment and launch its pipeline.

        Returns:
            The new deployment id
        """
        config = self.create_deployment(credentials, module, env_variables, artifact)
        self.launch(config.deployment_id)
        logger.info(
            f"Deployment {config.deployment_id} started for module '{module}'"
        )
        return config.deployment_id

    def get_status(self, deployment_id: str) -> DeploymentRecord:
        """Return a copy of a deployment record.

        Raises:
            DeploymentNotFoundError: If the id is unknown
        """
        return self.tracker.snapshot(deployment_id)

    def retry(self, deployment_id: str) -> str | None:
        """Resume a failed deployment from its first non-completed step.

        Checks run before any state changes, so a retry that cannot proceed
        leaves the record untouched.

        Returns:
            The step the retry resumes at

        Raises:
            DeploymentNotFoundError: If the id is unknown
            RetryNotAllowedError: If the deployment is not failed
            DeploymentConfigNotFoundError: If the original config is gone
        """
        record = self.tracker.snapshot(deployment_id)
        if record.status != DeploymentStatus.FAILED:
            raise RetryNotAllowedError(deployment_id, record.status.value)
        self.config_store.require(deployment_id)

        resume = self.tracker.reset_for_retry(deployment_id)
        if resume is not None:
            self.tracker.append_log(
                deployment_id, resume, f"Retrying deployment from step '{resume}'"
            )
        self.launch(deployment_id)
        logger.info(f"Deployment {deployment_id} retry started at {resume}")
        return resume

    def completed_for_module(self, module: str) -> list[DeploymentRecord]:
        """Return in-memory completed deployments of a module."""
        return self.tracker.find_by_module(module, status=DeploymentStatus.COMPLETED)

    def image_name_for(self, deployment_id: str) -> str | None:
        config = self.config_store.get(deployment_id)
        return config.image_name if config else None

    def module_snapshot(self, module: str) -> ModuleSnapshot | None:
        """Return the validated persisted snapshot of a module."""
        return state.load_snapshot(self.modules_dir, module)

    def module_resources(self, module: str) -> dict | None:
        """Return the persisted resource summary of a deployed module.

        The snapshot is validated first, so a partial or corrupted snapshot
        is removed and reported as not deployed.
        """
        if state.load_snapshot(self.modules_dir, module) is None:
            return None
        return state.load_resources(self.modules_dir, module)

    def clear_module(self, module: str) -> int:
        """Delete a module's snapshot and forget its in-memory deployments.

        Returns:
            Number of snapshot files removed
        """
        removed = state.clear_snapshot(self.modules_dir, module)
        for record in self.tracker.find_by_module(module):
            self.tracker.remove(record.id)
            self.config_store.delete(record.id)
            logger.info(f"Removed deployment '{record.id}' from memory")
        return removed

    def _clients_for(self, snapshot: ModuleSnapshot) -> AWSClients:
        credentials = snapshot.deployment.aws_config
        if credentials is None:
            raise DeploymentError(
                operation="execute",
                message=f"Module '{snapshot.module}' has no stored credentials",
            )
        if snapshot.resources.region:
            credentials = credentials.model_copy(
                update={"region": snapshot.resources.region}
            )
        return self.client_factory(credentials)

    def _require_snapshot(self, module: str) -> ModuleSnapshot:
        snapshot = self.module_snapshot(module)
        if snapshot is None:
            raise DeploymentError(
                operation="execute",
                message=(
                    f"No deployment found. Please deploy the {module} module first."
                ),
            )
        return snapshot

    async def execute(
        self, module: str, validation_ids: Sequence[Any] | None = None
    ) -> ExecutionStarted:
        """Start a validation run on a deployed module.

        Raises:
            DeploymentError: If the module is not deployed
        """
        snapshot = await asyncio.to_thread(self._require_snapshot, module)
        return await start_validation_run(
            self._clients_for(snapshot), snapshot, validation_ids
        )

    async def recent_executions(self, module: str) -> list[ExecutionSummary]:
        """Return recent workflow executions, empty when not deployed."""
        snapshot = await asyncio.to_thread(self.module_snapshot, module)
        if snapshot is None:
            return []
        return await list_recent_executions(self._clients_for(snapshot), snapshot)

    async def execution_logs(
        self,
        module: str,
        execution_arn: str,
        start_time: int | None = None,
        incremental: bool = False,
    ) -> ExecutionLogs:
        """Return activity log lines for an execution, empty when not deployed."""
        snapshot = await asyncio.to_thread(self.module_snapshot, module)
        if snapshot is None:
            return ExecutionLogs()
        return await fetch_execution_logs(
            self._clients_for(snapshot),
            snapshot,
            execution_arn,
            start_time=start_time,
            incremental=incremental,
        )

    async def shutdown(self) -> None:
        """Cancel in-flight pipeline runs and wait for them to finish."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Cancelled {len(tasks)} in-flight deployments")
