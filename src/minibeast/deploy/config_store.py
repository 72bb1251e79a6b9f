"""In-memory store of the configuration each deployment was started with."""

from __future__ import annotations

import threading

from minibeast.lib.errors import DeploymentConfigNotFoundError
from minibeast.models.deployment import DeploymentConfigRecord


class DeploymentConfigStore:
    """Keeps ``DeploymentConfigRecord`` objects by deployment id.

    Records are immutable once stored; the pipeline only reads them. Entries
    live for the process lifetime unless explicitly deleted.
    """

    def __init__(self) -> None:
        """Initialize an empty store."""
        self._configs: dict[str, DeploymentConfigRecord] = {}
        self._lock = threading.Lock()

    def put(self, config: DeploymentConfigRecord) -> None:
        """Store the configuration for ``config.deployment_id``."""
        with self._lock:
            self._configs[config.deployment_id] = config

    def get(self, deployment_id: str) -> DeploymentConfigRecord | None:
        """Return the stored configuration, or None if missing."""
        with self._lock:
            return self._configs.get(deployment_id)

    def require(self, deployment_id: str) -> DeploymentConfigRecord:
        """Return the stored configuration.

        Raises:
            DeploymentConfigNotFoundError: If nothing is stored for the id
        """
        config = self.get(deployment_id)
        if config is None:
            raise DeploymentConfigNotFoundError(deployment_id)
        return config

    def delete(self, deployment_id: str) -> bool:
        """Remove a configuration. Returns True if it existed."""
        with self._lock:
            return self._configs.pop(deployment_id, None) is not None

    def __contains__(self, deployment_id: object) -> bool:
        with self._lock:
            return deployment_id in self._configs

    def __len__(self) -> int:
        with self._lock:
            return len(self._configs)
