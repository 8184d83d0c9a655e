from typing import List, Optional

from ansible_citrix_adapter.cache import OnceCache
from ansible_citrix_adapter.client import ORCHESTRATION
from ansible_citrix_adapter.errors import ApiError
from ansible_citrix_adapter.interfaces.resource import BaseDataSource
from ansible_citrix_adapter.interfaces.state import BaseState

PERMISSIONS_PATH = "Admin/Permissions"
PAGE_SIZE = 1000

# Permissions that exist in the catalogue but cannot be granted on a cloud site.
CLOUD_RESTRICTED_PERMISSIONS = frozenset(
    {
        "Configuration_Read",
        "Configuration_Edit",
        "Controllers_EditProperties",
        "Controllers_Remove",
        "Licensing_ChangeLicenseServer",
        "Licensing_EditLicensingProperties",
        "Licensing_Read",
        "Logging_Delete",
        "Logging_EditPreferences",
        "Logging_Read",
    }
)

# The permission catalogue is fixed for a given site version, so it is fetched
# once per process and shared by every caller.
PERMISSIONS_CACHE: OnceCache[list] = OnceCache("admin_permissions")


class PermissionModel(BaseState):
    id: str
    name: str = ""
    description: str = ""
    group_id: str = ""
    group_name: str = ""


class AdminPermissionsModel(BaseState):
    permissions: Optional[List[PermissionModel]] = None


class AdminPermissions(BaseDataSource):
    """All predefined permissions that can be assigned to an admin role."""

    type_name = "admin_permissions"
    display_name = "Admin Permissions"
    model = AdminPermissionsModel
    computed_fields = ("permissions",)

    def _fetch_all(self, ctx) -> list:
        items = []
        token = None
        while True:
            try:
                page, _ = self.client.execute_with_retry(
                    "GET",
                    ORCHESTRATION,
                    PERMISSIONS_PATH,
                    query_params={"limit": PAGE_SIZE, "continuationToken": token},
                    ctx=ctx,
                )
            except ApiError as e:
                summary = "Error reading predefined admin permissions"
                raise e.with_summary(summary) from e
            page = page or {}
            items.extend(page.get("Items") or [])
            token = page.get("ContinuationToken")
            if not token:
                return items

    def _read(self, config, ctx):
        items = PERMISSIONS_CACHE.get(lambda: self._fetch_all(ctx))
        permissions = [
            PermissionModel(
                id=item["Id"],
                name=item.get("Name") or "",
                description=item.get("Description") or "",
                group_id=item.get("GroupId") or "",
                group_name=item.get("GroupName") or "",
            )
            for item in items
            if self.is_on_premises or item["Id"] not in CLOUD_RESTRICTED_PERMISSIONS
        ]
        return AdminPermissionsModel(permissions=permissions)
