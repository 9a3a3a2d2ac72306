"""Tests for validation utility functions."""

import pytest
from pydantic import ValidationError as PydanticValidationError

from rumi.config.validator import flatten_pydantic_errors
from rumi.models.deployment import EthereumNodeProfile
from rumi.models.settings import HostConfig, Settings


class TestFlattenPydanticErrors:
    """Tests for flatten_pydantic_errors() function."""

    def test_names_the_field(self) -> None:
        """Test flattened messages start with the field path."""
        with pytest.raises(PydanticValidationError) as exc_info:
            HostConfig(host="203.0.113.10", port=0)
        result = flatten_pydantic_errors(exc_info.value)
        assert result[0].startswith("Field 'port'")

    def test_nested_field_path(self) -> None:
        """Test nested errors use dot notation."""
        with pytest.raises(PydanticValidationError) as exc_info:
            Settings(hosts={"web": {"host": "203.0.113.10", "port": "ssh"}})
        result = flatten_pydantic_errors(exc_info.value)
        assert any(line.startswith("Field 'hosts.web.port'") for line in result)

    def test_value_errors_include_input(self) -> None:
        """Test validator failures echo the rejected value."""
        with pytest.raises(PydanticValidationError) as exc_info:
            EthereumNodeProfile(network_id=1, external_ip="not-an-ip")
        result = " ".join(flatten_pydantic_errors(exc_info.value))
        assert "external_ip" in result
        assert "'not-an-ip'" in result

    def test_multiple_errors(self) -> None:
        """Test one message per failing field."""
        with pytest.raises(PydanticValidationError) as exc_info:
            HostConfig(host="203.0.113.10", port=0, connect_timeout=-1)
        result = flatten_pydantic_errors(exc_info.value)
        assert len(result) == 2
        assert all(isinstance(item, str) for item in result)

    def test_profile_tag_dropped_from_path(self, tmp_path) -> None:
        """Test profile errors are reported without the union tag."""
        from rumi.models.deployment import Deployment

        with pytest.raises(PydanticValidationError) as exc_info:
            Deployment(
                name="api",
                domain="api.example.com",
                artifact=tmp_path,
                profile={"kind": "server", "port": 0},
            )
        result = flatten_pydantic_errors(exc_info.value)
        assert any(line.startswith("Field 'profile.port'") for line in result)

    def test_secret_values_never_echoed(self) -> None:
        """Test rejected credentials are not repeated in messages."""
        with pytest.raises(PydanticValidationError) as exc_info:
            HostConfig(host="203.0.113.10", password=["hunter2"])
        result = " ".join(flatten_pydantic_errors(exc_info.value))
        assert "password" in result
        assert "hunter2" not in result
