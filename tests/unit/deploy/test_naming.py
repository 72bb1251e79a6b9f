"""Unit tests for deployment id and resource name generation."""

from __future__ import annotations

import pytest

from minibeast.deploy.naming import (
    generate_deployment_id,
    generate_resource_names,
    image_name,
    short_id,
)
from minibeast.lib.errors import ValidationError


class TestDeploymentIds:
    """Tests for generate_deployment_id and short_id."""

    def test_ids_are_unique(self) -> None:
        ids = {generate_deployment_id() for _ in range(200)}

        assert len(ids) == 200

    def test_ids_are_lowercase_ulids(self) -> None:
        deployment_id = generate_deployment_id()

        assert len(deployment_id) == 26
        assert deployment_id == deployment_id.lower()

    def test_short_id_takes_first_eight_characters(self) -> None:
        assert short_id("01JABCDEFGHJKMNPQRSTVWXYZ0") == "01jabcde"

    def test_short_id_rejects_empty_id(self) -> None:
        with pytest.raises(ValidationError):
            short_id("")


class TestResourceNames:
    """Tests for generate_resource_names."""

    def test_names_follow_prefix_module_role_shortid(self) -> None:
        names = generate_resource_names("01jabcdefg0000000000000000", "validator")

        assert names.ecr_repository == "minibeat-validator-repo-01jabcde"
        assert names.cluster == "minibeat-validator-cluster-01jabcde"
        assert names.task_family == "minibeat-validator-task-01jabcde"
        assert names.state_machine == "minibeat-validator-workflow-01jabcde"
        assert names.build_project == "minibeat-validator-build-01jabcde"
        assert names.build_role == "minibeat-validator-build-role-01jabcde"
        assert names.bucket == "minibeat-validator-builds-01jabcde"
        assert names.security_group == "minibeat-validator-repo-01jabcde-sg"
        assert names.log_group == "/ecs/minibeat-validator-repo-01jabcde"

    def test_module_is_normalized_to_lowercase(self) -> None:
        names = generate_resource_names("01jabcdefg", "Data-Checks")

        assert names.cluster == "minibeat-data-checks-cluster-01jabcde"

    def test_ecs_role_names_use_short_token_and_random_suffix(self) -> None:
        first = generate_resource_names("01jabcdefg", "validator")
        second = generate_resource_names("01jabcdefg", "validator")

        assert first.execution_role.startswith("validator-exec-")
        assert first.task_role.startswith("validator-task-")
        assert first.execution_role != second.execution_role

    def test_role_names_stay_within_iam_limit(self) -> None:
        module = "a" * 30
        names = generate_resource_names("01jabcdefg", module)

        for role in (
            names.execution_role,
            names.task_role,
            names.stepfunctions_role,
            names.build_role,
        ):
            assert len(role) <= 64

    def test_module_too_long_for_role_names_raises(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            generate_resource_names("01jabcdefg", "m" * 60)

        assert exc_info.value.field == "module"

    @pytest.mark.parametrize("module", ["", "bad_name", "has space", "-lead"])
    def test_invalid_module_raises(self, module: str) -> None:
        with pytest.raises(ValidationError):
            generate_resource_names("01jabcdefg", module)


def test_image_name_for_module() -> None:
    assert image_name("validator") == "minibeat-validator:latest"
