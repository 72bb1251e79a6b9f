"""Unit tests for the deployment configuration store."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from minibeast.deploy.config_store import DeploymentConfigStore
from minibeast.lib.errors import DeploymentConfigNotFoundError
from minibeast.models.deployment import DeploymentConfigRecord


def test_put_and_get(make_config: Callable[..., DeploymentConfigRecord]) -> None:
    store = DeploymentConfigStore()
    config = make_config()

    store.put(config)

    assert store.get(config.deployment_id) == config
    assert config.deployment_id in store
    assert len(store) == 1


def test_get_missing_returns_none() -> None:
    assert DeploymentConfigStore().get("missing") is None


def test_require_missing_raises() -> None:
    with pytest.raises(DeploymentConfigNotFoundError) as exc_info:
        DeploymentConfigStore().require("missing")

    assert "original deployment configuration not found" in exc_info.value.message


def test_empty_env_variables_is_still_present(
    make_config: Callable[..., DeploymentConfigRecord],
) -> None:
    store = DeploymentConfigStore()
    config = make_config(env=[])

    store.put(config)

    assert store.require(config.deployment_id).env_variables == []


def test_delete(make_config: Callable[..., DeploymentConfigRecord]) -> None:
    store = DeploymentConfigStore()
    config = make_config()
    store.put(config)

    assert store.delete(config.deployment_id) is True
    assert store.delete(config.deployment_id) is False
    assert config.deployment_id not in store
