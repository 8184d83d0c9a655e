import logging
from typing import Optional, Set
from urllib.parse import quote

from pydantic import Field

from ansible_citrix_adapter.client import ORCHESTRATION
from ansible_citrix_adapter.errors import AdapterError, ApiError, InvalidConfigError
from ansible_citrix_adapter.interfaces.resource import (
    BaseDataSource,
    BaseResource,
    is_not_found,
)
from ansible_citrix_adapter.interfaces.state import BaseState

logger = logging.getLogger(__name__)

ROLES_PATH = "Admin/Roles"

ON_PREMISES_TOGGLE_DETAIL = (
    "{attribute} can only be set to true for On-Premise deployments. "
    "Please either set the attribute to true or remove it from the configuration "
    "and try again."
)


def role_fields_from_remote(remote: dict) -> dict:
    return {
        "id": remote.get("Id"),
        "name": remote.get("Name", ""),
        "description": remote.get("Description") or "",
        "is_built_in": remote.get("IsBuiltIn"),
        "can_launch_manage": remote.get("CanLaunchManage", True),
        "can_launch_monitor": remote.get("CanLaunchMonitor", True),
        "permissions": {
            p["Id"] for p in remote.get("Permissions") or [] if p.get("Id")
        },
    }


def get_admin_role(client, name_or_id: str, ctx) -> dict:
    """Roles are addressable by their GUID and by their name."""
    remote, _ = client.execute_with_retry(
        "GET", ORCHESTRATION, f"{ROLES_PATH}/{quote(name_or_id)}", ctx=ctx
    )
    return remote or {}


class AdminRoleModel(BaseState):
    # GUID assigned by the site.
    id: Optional[str] = None
    name: str = Field(description="Name of the admin role.")
    description: str = Field(default="", description="Description of the admin role.")
    is_built_in: Optional[bool] = None
    can_launch_manage: bool = Field(
        default=True,
        description="Whether the role can launch the Manage console. Cloud only.",
    )
    can_launch_monitor: bool = Field(
        default=True,
        description="Whether the role can launch the Monitor console. Cloud only.",
    )
    permissions: Set[str] = Field(
        min_length=1, description="Ids of the permissions granted by the role."
    )

    @classmethod
    def from_remote(cls, remote: dict) -> "AdminRoleModel":
        return cls.model_construct(**role_fields_from_remote(remote))


class AdminRole(BaseResource):
    """A DaaS administrator role: a named set of permissions."""

    type_name = "admin_role"
    display_name = "Admin Role"
    model = AdminRoleModel
    computed_fields = ("id", "is_built_in")

    def _body(self, config: AdminRoleModel) -> dict:
        body = {
            "Name": config.name,
            "Description": config.description,
            "Permissions": sorted(config.permissions),
        }
        if not self.is_on_premises:
            body["CanLaunchManage"] = config.can_launch_manage
            body["CanLaunchMonitor"] = config.can_launch_monitor
        return body

    def _get(self, name_or_id: str, ctx) -> AdminRoleModel:
        remote = get_admin_role(self.client, name_or_id, ctx)
        return AdminRoleModel.from_remote(remote)

    def _create(self, config, ctx):
        try:
            self.client.execute(
                "POST", ORCHESTRATION, ROLES_PATH, data=self._body(config), ctx=ctx
            )
        except ApiError as e:
            if e.status_code == 403:
                try:
                    self._remove_partial_role(config.name, ctx)
                except AdapterError as cleanup_error:
                    logger.warning(
                        "Could not remove partially created admin role %s: %s",
                        config.name,
                        cleanup_error,
                    )
            raise e.with_summary(f"Error creating Admin Role: {config.name}") from e
        # The create call answers without a body.
        return self._get(config.name, ctx)

    def _remove_partial_role(self, name, ctx):
        """A forbidden create can still leave the role behind. Removes it."""
        try:
            partial = self._get(name, ctx)
        except ApiError as e:
            if is_not_found(e):
                return
            raise
        self.client.execute(
            "DELETE", ORCHESTRATION, f"{ROLES_PATH}/{partial.id}", ctx=ctx
        )

    def _read(self, state, ctx):
        return self._get(state.id, ctx)

    def _locate(self, config, ctx):
        return self._get(config.name, ctx)

    def _update(self, state, config, ctx):
        self.client.execute(
            "PUT",
            ORCHESTRATION,
            f"{ROLES_PATH}/{state.id}",
            data=self._body(config),
            ctx=ctx,
        )
        return self._get(state.id, ctx)

    def _delete(self, state, ctx):
        self.client.execute(
            "DELETE", ORCHESTRATION, f"{ROLES_PATH}/{state.id}", ctx=ctx
        )

    def _modify_plan(self, config, prior, ctx):
        if not self.is_on_premises:
            return
        for attribute, enabled in (
            ("CanLaunchManage", config.can_launch_manage),
            ("CanLaunchMonitor", config.can_launch_monitor),
        ):
            if not enabled:
                yield InvalidConfigError(
                    attribute, ON_PREMISES_TOGGLE_DETAIL.format(attribute=attribute)
                )


class AdminRoleInfoModel(BaseState):
    id: Optional[str] = Field(
        default=None,
        description="GUID of the role. Exactly one of id and name is required.",
    )
    name: Optional[str] = Field(
        default=None,
        description="Name of the role. Exactly one of id and name is required.",
    )
    description: Optional[str] = None
    is_built_in: Optional[bool] = None
    can_launch_manage: Optional[bool] = None
    can_launch_monitor: Optional[bool] = None
    permissions: Optional[Set[str]] = None


class AdminRoleInfo(BaseDataSource):
    """Reads one admin role by id or name."""

    type_name = "admin_role_info"
    display_name = "Admin Role"
    model = AdminRoleInfoModel
    lookup_fields = ("id", "name")
    computed_fields = (
        "description",
        "is_built_in",
        "can_launch_manage",
        "can_launch_monitor",
        "permissions",
    )

    def _read(self, config, ctx):
        remote = get_admin_role(self.client, config.id or config.name, ctx)
        return AdminRoleInfoModel.model_construct(**role_fields_from_remote(remote))
