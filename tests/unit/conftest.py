from unittest.mock import MagicMock, patch

import pytest

from ansible_citrix_adapter.client import CitrixClient
from ansible_citrix_adapter.config import ProviderConfig
from ansible_citrix_adapter.errors import ApiError
from ansible_citrix_adapter.models import TransportMetadata
from ansible_citrix_adapter.resources.daas.admin_permissions import PERMISSIONS_CACHE


@pytest.fixture
def mock_ansible_module():
    """
    A pytest fixture that provides a mocked AnsibleModule instance for each test.
    This prevents tests from interfering with each other and from exiting the
    test runner.
    """
    # We patch 'AnsibleModule' in the runner's namespace to avoid import issues.
    with patch("ansible_citrix_adapter.interfaces.runner.AnsibleModule") as mock_class:
        mock_module = mock_class.return_value
        mock_module.params = {}  # Start with empty params for each test
        mock_module.check_mode = False

        # Mock the exit methods to prevent sys.exit and to capture their arguments
        mock_module.exit_json = MagicMock()
        mock_module.fail_json = MagicMock()
        mock_module.warn = MagicMock()

        yield mock_module


@pytest.fixture
def cloud_config():
    return ProviderConfig(
        client_id="client-id", client_secret="client-secret", customer_id="acmecorp1234"
    )


@pytest.fixture
def on_premises_config():
    return ProviderConfig(
        client_id="CORP\\admin", client_secret="password", hostname="ddc.corp.local"
    )


def _mock_client(config):
    client = MagicMock(spec=CitrixClient)
    client.config = config
    client.is_initialized.return_value = True
    return client


@pytest.fixture
def mock_client(cloud_config):
    """A client for a cloud customer whose calls are configured per test."""
    return _mock_client(cloud_config)


@pytest.fixture
def on_premises_client(on_premises_config):
    return _mock_client(on_premises_config)


@pytest.fixture
def api_error():
    """Factory for the errors the client raises on a failed exchange."""

    def make(status_code, message="Request failed", transaction_id="tx-123"):
        return ApiError(
            "Error calling Citrix API",
            message,
            TransportMetadata(status_code, transaction_id),
        )

    return make


@pytest.fixture
def ok():
    """Factory for successful client answers."""

    def make(body=None, status_code=200, transaction_id="tx-ok"):
        return body, TransportMetadata(status_code, transaction_id)

    return make


@pytest.fixture(autouse=True)
def reset_permissions_cache():
    PERMISSIONS_CACHE.reset()
    yield
    PERMISSIONS_CACHE.reset()
