"""
Provider connection settings.

Settings are merged from three sources, each overriding the previous one:
environment variables, an optional YAML file, and explicit module parameters.
The merged model derives the deployment mode and every service endpoint.
"""

import logging
import os
from typing import Any, Dict, Mapping, Optional

import yaml
from pydantic import BaseModel, Field

from .helpers import ON_PREMISES_CUSTOMER_ID
from .models import Diagnostics

logger = logging.getLogger(__name__)

# Environment variable backing each setting.
ENV_VARS = {
    "client_id": "CITRIX_CLIENT_ID",
    "client_secret": "CITRIX_CLIENT_SECRET",
    "hostname": "CITRIX_HOSTNAME",
    "environment": "CITRIX_ENVIRONMENT",
    "customer_id": "CITRIX_CUSTOMER_ID",
    "disable_ssl_verification": "CITRIX_DISABLE_SSL_VERIFICATION",
    "wem_region": "CITRIX_WEM_REGION",
    "wem_hostname": "CITRIX_WEM_HOSTNAME",
    "storefront_host": "SF_COMPUTER_NAME",
    "storefront_username": "SF_AD_ADMIN_USERNAME",
    "storefront_password": "SF_AD_ADMIN_PASSWORD",
    "storefront_disable_ssl_verification": "SF_DISABLE_SSL",
}

ENVIRONMENTS = ("Production", "Staging", "Japan", "JapanStaging", "Gov", "GovStaging")

# API gateway host of each Citrix Cloud environment.
CLOUD_API_HOSTS = {
    "Production": "api.cloud.com",
    "Staging": "api.cloudburrito.com",
    "Japan": "api.citrixcloud.jp",
    "JapanStaging": "api.citrixcloudstaging.jp",
    "Gov": "api.cloud.us",
    "GovStaging": "api.cloudstaging.us",
}

# Host serving the Citrix Cloud admin and resource-location APIs. Gov
# environments still route through the legacy registry with the customer
# id in the path.
CC_HOSTS = {
    "Production": "api.cloud.com",
    "Staging": "api.cloudburrito.com",
    "Japan": "api.citrixcloud.jp",
    "JapanStaging": "api.citrixcloudstaging.jp",
    "Gov": "registry.citrixworkspacesapi.us/{customer_id}",
    "GovStaging": "registry.ctxwsstgapi.us/{customer_id}",
}

WEM_HOSTS = {
    ("Production", "US"): "api.wem.cloud.com",
    ("Production", "EU"): "eu-api.wem.cloud.com",
    ("Production", "APS"): "aps-api.wem.cloud.com",
    ("Japan", "JP"): "jp-api.wem.citrixcloud.jp",
    ("Staging", "US"): "api.wem.cloudburrito.com",
}
DEFAULT_WEM_REGIONS = {"Production": "US", "Japan": "JP", "Staging": "US"}

TRUE_STRINGS = ("1", "true", "yes", "on")


class ProviderConfig(BaseModel):
    """Connection settings shared by every resource kind."""

    # Cloud API client id, or domain\username for on-premises sign-in.
    client_id: str = ""
    client_secret: str = ""

    # Delivery Controller host. Required on-premises; optional override in cloud.
    hostname: str = ""

    # Citrix Cloud environment. Ignored on-premises.
    environment: str = "Production"

    # An empty customer id selects the on-premises deployment mode.
    customer_id: str = ""

    disable_ssl_verification: bool = False

    wem_region: str = ""
    wem_hostname: str = ""

    storefront_host: str = ""
    storefront_username: str = ""
    storefront_password: str = ""
    storefront_disable_ssl_verification: bool = False

    # Per-request socket timeout in seconds.
    request_timeout: int = Field(default=60, gt=0)

    # Total attempts made by the retrying client call, first attempt included.
    retry_attempts: int = Field(default=4, ge=1)

    # Upper bound of a single backoff wait in seconds.
    max_backoff: float = Field(default=30.0, gt=0)

    @classmethod
    def from_sources(
        cls,
        params: Optional[Mapping[str, Any]] = None,
        config_file: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "ProviderConfig":
        """
        Builds the settings from the environment, a YAML file and explicit values.

        Args:
            params: Explicit settings, typically Ansible module parameters. Keys
                that are not settings and ``None`` values are ignored.
            config_file: Optional path to a YAML mapping of settings.
            environ: Environment to read; defaults to ``os.environ``.

        Raises:
            ValueError: When the YAML file cannot be read or is not a mapping.
        """
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}

        for name, variable in ENV_VARS.items():
            if environ.get(variable):
                values[name] = environ[variable]

        if config_file:
            values.update(load_config_file(config_file))

        for name, value in (params or {}).items():
            if name in cls.model_fields and value is not None:
                values[name] = value

        for name in ("disable_ssl_verification", "storefront_disable_ssl_verification"):
            if isinstance(values.get(name), str):
                values[name] = values[name].strip().lower() in TRUE_STRINGS

        return cls(**values)

    @property
    def is_on_premises(self) -> bool:
        return not self.customer_id or self.customer_id == ON_PREMISES_CUSTOMER_ID

    @property
    def effective_customer_id(self) -> str:
        return ON_PREMISES_CUSTOMER_ID if self.is_on_premises else self.customer_id

    @property
    def verify_ssl(self) -> bool:
        return not (self.is_on_premises and self.disable_ssl_verification)

    @property
    def api_host(self) -> str:
        if self.is_on_premises or self.hostname:
            return self.hostname
        return CLOUD_API_HOSTS.get(self.environment, "")

    @property
    def auth_url(self) -> str:
        if self.is_on_premises:
            return f"https://{self.hostname}/citrix/orchestration/api/tokens"
        host = CLOUD_API_HOSTS.get(self.environment, CLOUD_API_HOSTS["Production"])
        return f"https://{host}/cctrustoauth2/{self.customer_id}/tokens/clients"

    @property
    def orchestration_url(self) -> str:
        return f"https://{self.api_host}/cvad/manage"

    @property
    def cc_url(self) -> str:
        host = CC_HOSTS.get(self.environment, CC_HOSTS["Production"])
        return "https://" + host.format(customer_id=self.customer_id)

    @property
    def wem_url(self) -> str:
        if self.wem_hostname:
            return f"https://{self.wem_hostname}"
        default_region = DEFAULT_WEM_REGIONS.get(self.environment, "")
        region = (self.wem_region or default_region).upper()
        host = WEM_HOSTS.get((self.environment, region))
        return f"https://{host}" if host else ""

    @property
    def storefront_url(self) -> str:
        host = self.storefront_host.rstrip("/")
        if host and not host.startswith(("http://", "https://")):
            host = f"https://{host}"
        return host

    @property
    def has_credentials(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @property
    def has_storefront_settings(self) -> bool:
        return bool(self.storefront_host)

    def _missing_setting(self, diagnostics: Diagnostics, name: str, label: str):
        diagnostics.add_error(
            f"Unknown {label}",
            "The provider cannot create the Citrix API client as there is a missing "
            f"or empty value for the {label}. Set the {name} value in the "
            f"configuration or use the {ENV_VARS[name]} environment variable.",
        )

    def validate_settings(self) -> Diagnostics:
        """
        Checks the merged settings without contacting any service.

        Returns:
            Diagnostics holding one error per problem. Nothing is raised.
        """
        diagnostics = Diagnostics()
        if not self.client_id:
            self._missing_setting(diagnostics, "client_id", "Citrix API Client Id")
        if not self.client_secret:
            self._missing_setting(
                diagnostics, "client_secret", "Citrix API Client Secret"
            )
        if self.environment not in ENVIRONMENTS:
            diagnostics.add_error(
                "Invalid Citrix Cloud Environment",
                f"environment must be one of {', '.join(ENVIRONMENTS)}, "
                f"got: {self.environment}",
            )
        if self.is_on_premises:
            if not self.hostname:
                self._missing_setting(diagnostics, "hostname", "Citrix Hostname")
        elif self.disable_ssl_verification:
            diagnostics.add_error(
                "Invalid Provider Configuration",
                "disable_ssl_verification is only supported for on-premises "
                "deployments.",
            )
        if (
            self.wem_region
            and not self.wem_hostname
            and not self.is_on_premises
            and not self.wem_url
        ):
            diagnostics.add_error(
                "Invalid WEM Region",
                f"WEM region {self.wem_region} is not available in the "
                f"{self.environment} environment.",
            )
        return diagnostics


def load_config_file(path: str) -> Dict[str, Any]:
    """Reads a YAML mapping of settings from ``path``."""
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except (IOError, yaml.YAMLError) as e:
        raise ValueError(f"Error reading or parsing config file '{path}': {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"Config file '{path}' must contain a mapping of settings.")
    logger.debug("Loaded %d provider settings from %s", len(data), path)
    return data
