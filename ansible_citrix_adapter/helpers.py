"""Shared helper functions and constants."""

import json

# Mapping from python annotations of config models to Ansible module types.
PYTHON_TO_ANSIBLE_TYPE_MAP = {
    "str": "str",
    "int": "int",
    "float": "float",
    "bool": "bool",
    "list": "list",
    "set": "list",
    "dict": "dict",
}

AUTH_OPTIONS = {
    "client_id": {
        "description": "Citrix Cloud API client id, or on-premises domain\\username.",
        "required": False,
        "type": "str",
    },
    "client_secret": {
        "description": "Secret of the API client, or on-premises password.",
        "required": False,
        "type": "str",
        "no_log": True,  # Sensitive information, do not log
    },
    "customer_id": {
        "description": "Citrix Cloud customer id. "
        "Leave empty for on-premises deployments.",
        "required": False,
        "type": "str",
    },
    "hostname": {
        "description": "Delivery Controller hostname (on-premises) "
        "or API host override.",
        "required": False,
        "type": "str",
    },
    "environment": {
        "description": "Citrix Cloud environment.",
        "required": False,
        "type": "str",
        "choices": [
            "Production",
            "Staging",
            "Japan",
            "JapanStaging",
            "Gov",
            "GovStaging",
        ],
    },
    "disable_ssl_verification": {
        "description": "Skip certificate validation. Only allowed on-premises.",
        "required": False,
        "type": "bool",
    },
    "wem_region": {
        "description": "Region of the WEM service (US, EU, APS or JP).",
        "required": False,
        "type": "str",
    },
    "wem_hostname": {
        "description": "Explicit WEM service host.",
        "required": False,
        "type": "str",
    },
    "storefront_host": {
        "description": "StoreFront server base URL.",
        "required": False,
        "type": "str",
    },
    "storefront_username": {
        "description": "StoreFront administrator user name.",
        "required": False,
        "type": "str",
    },
    "storefront_password": {
        "description": "StoreFront administrator password.",
        "required": False,
        "type": "str",
        "no_log": True,
    },
    "config_file": {
        "description": "Path to a YAML file holding any of the connection settings.",
        "required": False,
        "type": "path",
    },
}

AUTH_FIXTURE = {
    "client_id": "ba1c6c23-6a3e-4bd4-8f7c-3c4d5e6f7a8b",
    "client_secret": "c2VjcmV0LXZhbHVl",
    "customer_id": "acmecorp1234",
    "environment": "Production",
}

LIFECYCLE_OPTIONS = {
    "state": {
        "description": "Should the resource be present or absent.",
        "choices": ["present", "absent"],
        "default": "present",
        "type": "str",
    },
    "import_id": {
        "description": "Adopt an existing object by its identifier "
        "instead of looking it up by configuration.",
        "required": False,
        "type": "str",
    },
    "timeout": {
        "description": "The maximum number of seconds the whole operation may take.",
        "default": 600,
        "type": "int",
    },
}

GUID_REGEX = r"^[0-9a-fA-F]{8}-([0-9a-fA-F]{4}-){3}[0-9a-fA-F]{12}[}]?$"
FQDN_REGEX = r"^(([a-zA-Z0-9-_]){1,63}\.)+[a-zA-Z]{2,63}$"
ADMIN_FOLDER_PATH_CHARS = r"[^\\/;:#.*?=<>|\[\](){}\"'`~]+"
ADMIN_FOLDER_PATH_REGEX = rf"^{ADMIN_FOLDER_PATH_CHARS}(\\{ADMIN_FOLDER_PATH_CHARS})*$"
ADMIN_FOLDER_PATH_EXCEPTION = (
    "must not start or end with a backslash, and must not contain any of the "
    "following characters: / ; : # . * ? = < > | [ ] ( ) { } \" ' ` ~"
)

ON_PREMISES_CUSTOMER_ID = "CitrixOnPremises"

# Diagnostic summaries shared by several resource kinds.
PROVIDER_INITIALIZATION_ERROR = "Provider initialization error"
MISSING_CREDENTIALS_DETAIL = (
    "The provider client is not configured. Set client_id and client_secret, "
    "either as module options or through CITRIX_CLIENT_ID and CITRIX_CLIENT_SECRET."
)
INVALID_IMPORT_IDENTIFIER = "Invalid Import Identifier"
UNSUPPORTED_OPERATION = "Unsupported Operation"

# Substrings in non-404 error bodies which still mean the object is gone.
NOT_FOUND_MARKERS = ("Object does not exist", "Cannot find this administrator")

# Envelope keys different Citrix services use for the error message.
ERROR_MESSAGE_KEYS = (
    "ErrorMessage",
    "errorMessage",
    "Message",
    "message",
    "detail",
    "title",
)


def split_import_id(import_id: str, field_names: list[str]) -> dict[str, str]:
    """
    Splits a comma-delimited import identifier into named fields.

    The identifier is split into at most ``len(field_names)`` parts, so the last
    field keeps any remaining commas. Every part must be non-empty.

    Raises:
        ValueError: When the identifier does not have exactly one non-empty
            part per field.
    """
    if len(field_names) == 1:
        if not import_id:
            raise ValueError("identifier must not be empty")
        return {field_names[0]: import_id}

    parts = import_id.split(",", len(field_names) - 1)
    if len(parts) != len(field_names) or any(part == "" for part in parts):
        raise ValueError(
            f"expected {len(field_names)} comma-separated values "
            f"({','.join(field_names)}), got {len(parts)}"
        )
    return dict(zip(field_names, parts))


def read_client_error(body) -> str:
    """
    Extracts a readable message from an API error body.

    Citrix services disagree on the error envelope, so the common field names
    are tried in order before falling back to the raw text.
    """
    if body is None:
        return ""
    if isinstance(body, bytes):
        body = body.decode(errors="ignore")
    if isinstance(body, str):
        try:
            parsed = json.loads(body)
        except json.JSONDecodeError:
            return body.strip()
    else:
        parsed = body

    if isinstance(parsed, dict):
        for key in ERROR_MESSAGE_KEYS:
            value = parsed.get(key)
            if isinstance(value, str) and value:
                return value
        return json.dumps(parsed)
    return str(parsed)


def is_not_found_message(message: str) -> bool:
    return any(marker in message for marker in NOT_FOUND_MARKERS)
