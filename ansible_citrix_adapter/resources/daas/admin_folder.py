import re
from typing import List, Optional, Set
from urllib.parse import quote

from pydantic import Field

from ansible_citrix_adapter.client import ORCHESTRATION
from ansible_citrix_adapter.errors import ImportFormatError, InvalidConfigError
from ansible_citrix_adapter.helpers import (
    ADMIN_FOLDER_PATH_EXCEPTION,
    ADMIN_FOLDER_PATH_REGEX,
)
from ansible_citrix_adapter.interfaces.resource import BaseDataSource, BaseResource
from ansible_citrix_adapter.interfaces.state import BaseState

FOLDERS_PATH = "AdminFolders"

# Declared folder type -> category of objects removed together with the folder.
FOLDER_OBJECTS = {
    "ContainsApplications": "Applications",
    "ContainsApplicationGroups": "ApplicationGroups",
    "ContainsDeliveryGroups": "DeliveryGroups",
    "ContainsMachineCatalogs": "MachineCatalogs",
}


def folder_objects_for_types(folder_name: str, folder_types) -> List[str]:
    """
    Maps declared folder types onto the object categories a delete removes.

    Raises:
        InvalidConfigError: For a type without a known category.
    """
    objects = []
    for folder_type in sorted(folder_types):
        if folder_type not in FOLDER_OBJECTS:
            raise InvalidConfigError(
                f"Unable to get admin folder objects enum with type {folder_type} "
                f"for admin folder {folder_name}",
                f"unable to parse admin folder object type {folder_type}",
            )
        objects.append(FOLDER_OBJECTS[folder_type])
    return objects


def folder_fields_from_remote(remote: dict) -> dict:
    name = remote.get("Name", "")
    raw_path = remote.get("Path") or ""
    if raw_path.endswith(name + "\\"):
        parent_path = raw_path[: -len(name + "\\")]
    else:
        parent_path = raw_path
    parent_path = parent_path.rstrip("\\")
    return {
        "id": remote.get("Id"),
        "name": name,
        "path": raw_path.rstrip("\\"),
        "parent_path": parent_path or None,
        "type": {
            m["Name"]
            for m in remote.get("Metadata") or []
            if m.get("Name", "").startswith("Contains")
        },
        "total_applications": remote.get("TotalApplications", 0),
        "total_machine_catalogs": remote.get("TotalMachineCatalogs", 0),
        "total_application_groups": remote.get("TotalApplicationGroups", 0),
        "total_delivery_groups": remote.get("TotalDesktopGroups", 0),
    }


def get_admin_folder(client, id_or_path: str, ctx) -> dict:
    """Fetches one folder by id or by backslash separated path."""
    remote, _ = client.execute_with_retry(
        "GET", ORCHESTRATION, f"{FOLDERS_PATH}/{quote(id_or_path, safe='')}", ctx=ctx
    )
    return remote or {}


class AdminFolderModel(BaseState):
    id: Optional[str] = None
    name: str = Field(description="Name of the admin folder.")
    parent_path: Optional[str] = Field(
        default=None,
        description="Path of the parent folder, using backslashes as separators.",
    )
    type: Set[str] = Field(
        min_length=1,
        description="Kinds of objects the folder holds: "
        + ", ".join(sorted(FOLDER_OBJECTS))
        + ".",
    )
    path: Optional[str] = None
    total_applications: Optional[int] = None
    total_machine_catalogs: Optional[int] = None
    total_application_groups: Optional[int] = None
    total_delivery_groups: Optional[int] = None

    @property
    def full_path(self) -> str:
        return f"{self.parent_path}\\{self.name}" if self.parent_path else self.name

    @classmethod
    def from_remote(cls, remote: dict) -> "AdminFolderModel":
        return cls.model_construct(**folder_fields_from_remote(remote))


class AdminFolder(BaseResource):
    """
    A DaaS admin folder.

    Folders are addressed either by id or by their backslash separated path.
    Deleting a folder requires naming the object categories removed with it,
    which are derived from the folder's declared types.
    """

    type_name = "admin_folder"
    display_name = "Admin Folder"
    model = AdminFolderModel
    computed_fields = (
        "id",
        "path",
        "total_applications",
        "total_machine_catalogs",
        "total_application_groups",
        "total_delivery_groups",
    )

    def _validate(self, config):
        if config.parent_path is not None and not re.match(
            ADMIN_FOLDER_PATH_REGEX, config.parent_path
        ):
            yield InvalidConfigError(
                "Invalid Attribute Configuration",
                f"parent_path {ADMIN_FOLDER_PATH_EXCEPTION}",
            )
        for folder_type in sorted(config.type):
            if folder_type not in FOLDER_OBJECTS:
                yield InvalidConfigError(
                    "Invalid Attribute Configuration",
                    f"type value {folder_type} must be one of "
                    f"{', '.join(sorted(FOLDER_OBJECTS))}",
                )

    def _parse_import_field(self, name, value):
        if value == "0":
            raise ImportFormatError(
                "Invalid Admin Folder Id", "Unable to manage admin folder with id `0`"
            )
        return value

    def _get(self, id_or_path: str, ctx) -> AdminFolderModel:
        remote = get_admin_folder(self.client, id_or_path, ctx)
        return AdminFolderModel.from_remote(remote)

    def _body(self, config) -> dict:
        # The create call takes the declared types as they are.
        return {
            "Name": config.name,
            "Path": config.parent_path or "",
            "ObjectIdentifiers": sorted(config.type),
        }

    def _create(self, config, ctx):
        created, _ = self.client.execute(
            "POST", ORCHESTRATION, FOLDERS_PATH, data=self._body(config), ctx=ctx
        )
        folder_id = (created or {}).get("Id")
        return self._get(folder_id or config.full_path, ctx)

    def _read(self, state, ctx):
        return self._get(state.id, ctx)

    def _locate(self, config, ctx):
        return self._get(config.full_path, ctx)

    def _update(self, state, config, ctx):
        current = self._get(state.id, ctx)
        body = {
            "Name": config.name,
            "Metadata": [
                {"Name": folder_type, "Value": "true"}
                for folder_type in sorted(config.type)
            ],
        }
        if (current.parent_path or "") != (config.parent_path or ""):
            body["Parent"] = config.parent_path or ""
        self.client.execute(
            "PATCH", ORCHESTRATION, f"{FOLDERS_PATH}/{state.id}", data=body, ctx=ctx
        )
        return self._get(state.id, ctx)

    def _delete(self, state, ctx):
        # Resolved before the request so an unknown type never reaches the API.
        objects = folder_objects_for_types(state.name, state.type)
        self.client.execute(
            "DELETE",
            ORCHESTRATION,
            f"{FOLDERS_PATH}/{state.id}",
            query_params={"objectsToRemove": objects},
            ctx=ctx,
        )


class AdminFolderInfoModel(BaseState):
    id: Optional[str] = Field(
        default=None,
        description="Id of the folder. Exactly one of id and path is required.",
    )
    path: Optional[str] = Field(
        default=None,
        description="Backslash separated path of the folder. "
        "Exactly one of id and path is required.",
    )
    name: Optional[str] = None
    parent_path: Optional[str] = None
    type: Optional[Set[str]] = None
    total_applications: Optional[int] = None
    total_machine_catalogs: Optional[int] = None
    total_application_groups: Optional[int] = None
    total_delivery_groups: Optional[int] = None


class AdminFolderInfo(BaseDataSource):
    """Reads one admin folder by id or path."""

    type_name = "admin_folder_info"
    display_name = "Admin Folder"
    model = AdminFolderInfoModel
    lookup_fields = ("id", "path")
    computed_fields = (
        "name",
        "parent_path",
        "type",
        "total_applications",
        "total_machine_catalogs",
        "total_application_groups",
        "total_delivery_groups",
    )

    def _read(self, config, ctx):
        remote = get_admin_folder(self.client, config.id or config.path, ctx)
        return AdminFolderInfoModel.model_construct(**folder_fields_from_remote(remote))
