import json
import logging
import socket
import threading
import uuid
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode

import jwt
from ansible.module_utils.urls import open_url

from .config import ProviderConfig
from .errors import ApiError, ConfigurationError, OperationCancelledError
from .helpers import read_client_error
from .models import CallContext, TransportMetadata

logger = logging.getLogger(__name__)

USER_AGENT = "ansible-citrix-adapter/0.1.0"

ORCHESTRATION = "orchestration"
CITRIX_CLOUD = "citrixcloud"
WEM = "wem"
STOREFRONT = "storefront"

TRANSACTION_ID_HEADER = "Citrix-TransactionId"

# Statuses worth another attempt; 0 stands for a connection failure.
RETRYABLE_STATUSES = frozenset({0, 429, 500, 502, 503, 504})


class CitrixClient:
    """
    Synchronous client for the Citrix DaaS, Citrix Cloud, WEM and StoreFront APIs.

    Every call returns ``(body, TransportMetadata)`` and raises ``ApiError`` for
    a non-2xx answer or a network failure, so callers always see the status code
    and the transaction id of the exchange that failed.
    """

    def __init__(self, config: ProviderConfig):
        self.config = config
        self._token = None
        self._token_lock = threading.Lock()

    def is_initialized(self, service: str = ORCHESTRATION) -> bool:
        """Whether the settings needed to reach ``service`` are present."""
        if service == STOREFRONT:
            return self.config.has_storefront_settings
        return self.config.has_credentials

    def base_url(self, service: str) -> str:
        if service == ORCHESTRATION:
            return self.config.orchestration_url
        if service == CITRIX_CLOUD:
            return self.config.cc_url
        if service == WEM:
            return self.config.wem_url
        if service == STOREFRONT:
            return self.config.storefront_url
        raise ValueError(f"Unknown service: {service}")

    # --- authentication -------------------------------------------------

    def sign_in(self, ctx: CallContext = None) -> str:
        """
        Returns the bearer token, requesting one on first use.

        On-premises deployments sign in against the Delivery Controller with
        basic authentication; cloud deployments exchange client credentials.
        """
        with self._token_lock:
            if self._token:
                return self._token
            if not self.config.has_credentials:
                raise ConfigurationError(
                    "Provider initialization error",
                    "client_id and client_secret are required to sign in.",
                )
            self._token = self._request_token(ctx)
            return self._token

    def _request_token(self, ctx: CallContext = None) -> str:
        transaction_id = str(uuid.uuid4())
        headers = {
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
            TRANSACTION_ID_HEADER: transaction_id,
        }
        logger.debug(
            "Signing in to %s as %s", self.config.auth_url, self.config.client_id
        )

        if self.config.is_on_premises:
            request = dict(
                data="{}",
                url_username=self.config.client_id,
                url_password=self.config.client_secret,
                force_basic_auth=True,
            )
            headers["Content-Type"] = "application/json"
        else:
            request = dict(
                data=urlencode(
                    {
                        "grant_type": "client_credentials",
                        "client_id": self.config.client_id,
                        "client_secret": self.config.client_secret,
                    }
                ),
            )
            headers["Content-Type"] = "application/x-www-form-urlencoded"

        try:
            body, _ = self._open(
                "POST", self.config.auth_url, headers, ctx, transaction_id, **request
            )
        except ApiError as e:
            if e.status_code == 401:
                raise ConfigurationError(
                    "Invalid credential in provider config",
                    "Make sure client_id and client_secret are correct "
                    "in the provider configuration.",
                ) from e
            raise e.with_summary("Error signing in to Citrix API") from e

        body = body or {}
        token = body.get("access_token") or body.get("Token")
        if not token:
            raise ConfigurationError(
                "Provider initialization error",
                "The sign-in response did not contain an access token.",
            )
        return token

    def token_claims(self, ctx: CallContext = None) -> dict:
        """Decodes the claims of the signed-in token without verifying its signature."""
        token = self.sign_in(ctx)
        try:
            return jwt.decode(token, options={"verify_signature": False})
        except jwt.PyJWTError:
            return {}

    # --- requests ---------------------------------------------------------

    def execute(
        self,
        method: str,
        service: str,
        path: str,
        data=None,
        query_params=None,
        ctx: CallContext = None,
        transaction_id: str = None,
        summary: str = "Error calling Citrix API",
    ):
        """
        Sends one request to ``service`` and decodes the JSON answer.

        Args:
            method: HTTP method.
            service: One of the service constants of this module.
            path: Path relative to the service base URL, or an absolute URL.
            data: Request body; non-string values are JSON encoded.
            query_params: Query parameters; list values are repeated.
            ctx: Cancellation and deadline of the surrounding lifecycle call.
            transaction_id: Correlation id to send; a fresh one by default.
            summary: Title of the ``ApiError`` raised on failure.

        Returns:
            A ``(body, TransportMetadata)`` tuple. ``body`` is ``None`` for an
            empty answer.
        """
        url = self._build_url(service, path, query_params)
        transaction_id = transaction_id or str(uuid.uuid4())
        headers = self._headers(service, transaction_id, ctx)

        if data is not None and not isinstance(data, str):
            data = json.dumps(data)

        request = {}
        if service == STOREFRONT:
            request = dict(
                url_username=self.config.storefront_username,
                url_password=self.config.storefront_password,
                force_basic_auth=bool(self.config.storefront_username),
            )

        logger.info("%s %s (%s=%s)", method, url, TRANSACTION_ID_HEADER, transaction_id)
        try:
            return self._open(
                method, url, headers, ctx, transaction_id, data=data, **request
            )
        except ApiError as e:
            raise e.with_summary(summary) from e

    def execute_with_retry(
        self,
        method: str,
        service: str,
        path: str,
        ctx: CallContext = None,
        attempts: int = None,
        **kwargs,
    ):
        """
        Same as ``execute`` but retries transient failures with exponential backoff.

        Connection failures and 429/500/502/503/504 answers are retried until
        ``attempts`` calls were made. The backoff wait doubles from one second
        and is capped by ``max_backoff``; it is interrupted by cancellation.
        """
        attempts = attempts or self.config.retry_attempts
        ctx = ctx or CallContext()
        delay = 1.0
        for attempt in range(1, attempts + 1):
            try:
                return self.execute(method, service, path, ctx=ctx, **kwargs)
            except ApiError as e:
                if e.status_code not in RETRYABLE_STATUSES or attempt == attempts:
                    raise
                logger.warning(
                    "%s %s failed with status %s (%s=%s), retrying in %.1fs (%d/%d)",
                    method,
                    path,
                    e.status_code,
                    TRANSACTION_ID_HEADER,
                    e.transaction_id,
                    delay,
                    attempt,
                    attempts,
                )
                if not ctx.sleep(delay):
                    raise self._cancelled(ctx) from e
                delay = min(delay * 2, self.config.max_backoff)

    # --- internals --------------------------------------------------------

    def _build_url(self, service, path, query_params=None):
        if path.startswith("http://") or path.startswith("https://"):
            url = path
        else:
            base = self.base_url(service)
            if not base:
                raise ConfigurationError(
                    "Provider initialization error",
                    f"No endpoint is configured for the {service} service.",
                )
            url = f"{base.rstrip('/')}/{path.lstrip('/')}"

        if query_params:
            encoded_params = []
            for key, value in query_params.items():
                if value is None:
                    continue
                if isinstance(value, (list, tuple)):
                    for v in value:
                        encoded_params.append((key, v))
                else:
                    encoded_params.append((key, value))
            if encoded_params:
                url += "?" + urlencode(encoded_params)
        return url

    def _headers(self, service, transaction_id, ctx):
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
            TRANSACTION_ID_HEADER: transaction_id,
        }
        if service != STOREFRONT:
            headers["Authorization"] = f"CwsAuth Bearer={self.sign_in(ctx)}"
            headers["Citrix-CustomerId"] = self.config.effective_customer_id
        return headers

    def _validate_certs(self, url):
        if self.config.storefront_url and url.startswith(self.config.storefront_url):
            return not self.config.storefront_disable_ssl_verification
        return self.config.verify_ssl

    def _cancelled(self, ctx: CallContext) -> OperationCancelledError:
        if ctx.cancelled:
            return OperationCancelledError(
                "Operation cancelled",
                "The operation was cancelled before it completed.",
            )
        return OperationCancelledError(
            "Operation timed out", "The operation deadline passed before it completed."
        )

    def _open(self, method, url, headers, ctx, transaction_id, data=None, **kwargs):
        ctx = ctx or CallContext()
        if ctx.cancelled or ctx.expired:
            raise self._cancelled(ctx)

        timeout = self.config.request_timeout
        remaining = ctx.remaining()
        if remaining is not None:
            timeout = max(1, min(timeout, int(remaining)))

        try:
            response = open_url(
                url,
                data=data,
                headers=headers,
                method=method,
                timeout=timeout,
                validate_certs=self._validate_certs(url),
                http_agent=USER_AGENT,
                **kwargs,
            )
        except HTTPError as e:
            body = e.read() if e.fp else b""
            response_id = e.headers.get(TRANSACTION_ID_HEADER) if e.headers else None
            metadata = TransportMetadata(e.code, response_id or transaction_id)
            message = read_client_error(body) or e.reason
            raise ApiError("Error calling Citrix API", str(message), metadata) from e
        except (URLError, socket.timeout, ConnectionError) as e:
            metadata = TransportMetadata(0, transaction_id)
            raise ApiError(
                "Error calling Citrix API", f"Request to {url} failed: {e}", metadata
            ) from e

        status = response.getcode()
        response_id = None
        if response.headers:
            response_id = response.headers.get(TRANSACTION_ID_HEADER)
        metadata = TransportMetadata(status, response_id or transaction_id)

        content = response.read()
        if not content:
            return None, metadata
        try:
            return json.loads(content), metadata
        except json.JSONDecodeError:
            return content.decode(errors="ignore"), metadata
