import os
import unittest
from unittest.mock import patch

import pytest

from sandworm.client import DuneClient
from sandworm.config import ClientConfig


class TestClientConfig(unittest.TestCase):
    @patch.dict(os.environ, {"DUNE_API_KEY": "env-key"}, clear=True)
    def test_defaults_from_environment(self):
        config = ClientConfig.from_env()
        assert config.api_key == "env-key"
        assert config.base_url == "https://api.dune.com"
        assert config.request_timeout == 10
        assert config.ping_frequency == 1
        assert config.execution_timeout == 300
        assert config.api_version == "/api/v1"

    @patch.dict(
        os.environ,
        {
            "DUNE_API_KEY": "env-key",
            "DUNE_API_BASE_URL": "https://api.example.com",
            "DUNE_API_REQUEST_TIMEOUT": "30",
            "DUNE_API_PING_FREQUENCY": "2.5",
            "DUNE_API_EXECUTION_TIMEOUT": "60",
        },
        clear=True,
    )
    def test_environment_overrides(self):
        config = ClientConfig.from_env()
        assert config.base_url == "https://api.example.com"
        assert config.request_timeout == 30
        assert config.ping_frequency == 2.5
        assert config.execution_timeout == 60

    @patch.dict(os.environ, {"DUNE_API_KEY": "env-key", "DUNE_API_PING_FREQUENCY": "5"}, clear=True)
    def test_explicit_arguments_win(self):
        config = ClientConfig.from_env(api_key="explicit", ping_frequency=0.25)
        assert config.api_key == "explicit"
        assert config.ping_frequency == 0.25

    @patch.dict(os.environ, {}, clear=True)
    def test_missing_api_key(self):
        with pytest.raises(KeyError):
            ClientConfig.from_env()
        with pytest.raises(KeyError):
            DuneClient()

    def test_invalid_values(self):
        with pytest.raises(ValueError):
            ClientConfig(api_key="")
        with pytest.raises(ValueError):
            ClientConfig(api_key="k", ping_frequency=-1)
        with pytest.raises(ValueError):
            ClientConfig(api_key="k", ping_frequency=0)
        with pytest.raises(ValueError):
            ClientConfig(api_key="k", execution_timeout=-0.5)

    def test_config_is_immutable(self):
        config = ClientConfig(api_key="k")
        with pytest.raises(AttributeError):
            config.api_key = "other"

    @patch.dict(os.environ, {"DUNE_API_KEY": "env-key"}, clear=True)
    def test_client_reads_config(self):
        client = DuneClient(performance="large", client_version="v2")
        assert client.token == "env-key"
        assert client.performance == "large"
        assert client.api_version == "/api/v2"

        shared = ClientConfig(api_key="shared", execution_timeout=5)
        assert DuneClient(config=shared).config is shared

    @patch.dict(os.environ, {"DUNE_API_KEY": "env-key"}, clear=True)
    def test_deprecated_from_env(self):
        with pytest.warns(DeprecationWarning):
            client = DuneClient.from_env()
        assert client.token == "env-key"


if __name__ == "__main__":
    unittest.main()
