"""Tests for validation utility functions."""

import pytest
from pydantic import ValidationError as PydanticValidationError

from minibeast.config.validator import flatten_pydantic_errors, summarize_errors
from minibeast.models.deployment import AWSCredentials, DeploymentOptions


class TestFlattenPydanticErrors:
    """Tests for flatten_pydantic_errors() function."""

    def test_value_error_includes_received_input(self) -> None:
        with pytest.raises(PydanticValidationError) as exc_info:
            DeploymentOptions(module="bad_name")

        messages = flatten_pydantic_errors(exc_info.value)

        assert len(messages) == 1
        assert messages[0].startswith("Field 'module':")
        assert "received: 'bad_name'" in messages[0]

    def test_one_message_per_field(self) -> None:
        with pytest.raises(PydanticValidationError) as exc_info:
            AWSCredentials.model_validate({"region": "nowhere"})

        messages = flatten_pydantic_errors(exc_info.value)
        joined = " ".join(messages)

        assert len(messages) == 3
        assert "accessKey" in joined
        assert "secretKey" in joined
        assert "region" in joined

    def test_request_location_prefix_is_dropped(self) -> None:
        errors = [{"loc": ("body", "region"), "msg": "Field required", "type": "missing"}]

        assert flatten_pydantic_errors(errors) == ["Field 'region': Field required"]

    def test_credential_input_is_not_echoed(self) -> None:
        errors = [
            {
                "loc": ("body", "secretKey"),
                "msg": "Value error, too short",
                "type": "value_error",
                "input": "hunter2",
            }
        ]

        message = summarize_errors(errors)

        assert "hunter2" not in message
        assert message == "Field 'secretKey': Value error, too short"

    def test_empty_errors_have_fallback(self) -> None:
        assert summarize_errors([]) == "Validation failed with unknown error"
