import base64
from typing import Optional

from pydantic import Field

from ansible_citrix_adapter.client import ORCHESTRATION
from ansible_citrix_adapter.errors import (
    ConflictError,
    ImportFormatError,
    InvalidConfigError,
    UnsupportedOperationError,
)
from ansible_citrix_adapter.helpers import UNSUPPORTED_OPERATION
from ansible_citrix_adapter.interfaces.resource import BaseResource
from ansible_citrix_adapter.interfaces.state import BaseState

ICONS_PATH = "Icons"
ICON_FORMAT = "image/png;32x32x24"


class ApplicationIconModel(BaseState):
    id: Optional[str] = None
    raw_data: Optional[str] = Field(
        default=None,
        description="Base64 encoded ICO data. "
        "Exactly one of raw_data and file_path is required.",
    )
    file_path: Optional[str] = Field(
        default=None,
        description="Path to an .ico file. "
        "Exactly one of raw_data and file_path is required.",
    )


def read_icon_file(path: str) -> str:
    try:
        with open(path, "rb") as f:
            return base64.b64encode(f.read()).decode()
    except PermissionError as e:
        raise InvalidConfigError(
            "Error reading icon file",
            f"Permission denied to read icon file: {path}\nError message: {e}",
        ) from e
    except OSError as e:
        raise InvalidConfigError("Error reading file", str(e)) from e


class ApplicationIcon(BaseResource):
    """
    An application icon.

    Icons are immutable: changing the data means replacing the icon. The API
    hands back the id of an identical existing icon instead of creating a new
    one, which is reported as a conflict.
    """

    type_name = "application_icon"
    display_name = "Application Icon"
    model = ApplicationIconModel
    write_only_fields = ("raw_data", "file_path")

    def _validate(self, config):
        if (config.raw_data is None) == (config.file_path is None):
            yield InvalidConfigError(
                "Invalid Attribute Configuration",
                "Exactly one of `raw_data` and `file_path` is required.",
            )
        file_path = config.file_path
        if file_path is not None and not file_path.lower().endswith(".ico"):
            yield InvalidConfigError(
                "Invalid file format", "Only `.ico` icon file format is supported"
            )

    def _parse_import_field(self, name, value):
        if not value.isdigit():
            raise ImportFormatError(
                "Invalid Import Identifier", f'Icon id must be numeric, got: "{value}"'
            )
        return value

    def _icon_data(self, config) -> str:
        if config.raw_data is not None:
            return config.raw_data
        return read_icon_file(config.file_path)

    def _list_icons(self, ctx) -> list:
        icons = []
        token = None
        while True:
            page, _ = self.client.execute_with_retry(
                "GET",
                ORCHESTRATION,
                ICONS_PATH,
                query_params={"continuationToken": token},
                ctx=ctx,
                summary="Error getting all the existing icons",
            )
            page = page or {}
            icons.extend(page.get("Items") or [])
            token = page.get("ContinuationToken")
            if not token:
                return icons

    def _create(self, config, ctx):
        existing_ids = {str(icon.get("Id")) for icon in self._list_icons(ctx)}
        body = {"RawData": self._icon_data(config), "IconFormat": ICON_FORMAT}
        created, _ = self.client.execute(
            "POST", ORCHESTRATION, ICONS_PATH, data=body, ctx=ctx
        )
        icon_id = str((created or {}).get("Id") or "")
        if icon_id in existing_ids:
            raise ConflictError("Icon already exists.", f"\nIcon ID: {icon_id}")
        return self._read(ApplicationIconModel(id=icon_id), ctx)

    def _read(self, state, ctx):
        remote, _ = self.client.execute_with_retry(
            "GET", ORCHESTRATION, f"{ICONS_PATH}/{state.id}", ctx=ctx
        )
        return ApplicationIconModel(id=str(remote.get("Id")))

    def _locate(self, config, ctx):
        data = self._icon_data(config)
        for icon in self._list_icons(ctx):
            if icon.get("RawData") == data:
                return ApplicationIconModel(id=str(icon.get("Id")))
        return None

    def _update(self, state, config, ctx):
        raise UnsupportedOperationError(
            UNSUPPORTED_OPERATION, "Update is not supported for this resource"
        )

    def _delete(self, state, ctx):
        if not str(state.id or "").isdigit():
            raise InvalidConfigError("Error deleting Icon", "Invalid Icon Id")
        self.client.execute(
            "DELETE", ORCHESTRATION, f"{ICONS_PATH}/{int(state.id)}", ctx=ctx
        )
