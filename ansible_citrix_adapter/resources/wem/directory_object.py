from typing import Optional

from pydantic import Field

from ansible_citrix_adapter.client import ORCHESTRATION, WEM
from ansible_citrix_adapter.errors import (
    ApiError,
    ConflictError,
    ImportFormatError,
    NotFoundError,
)
from ansible_citrix_adapter.helpers import GUID_REGEX
from ansible_citrix_adapter.interfaces.resource import BaseResource
from ansible_citrix_adapter.interfaces.state import BaseState

AD_OBJECTS_PATH = "services/wem/adObjects"

# Reserved by the WEM API; not used for ordering yet.
DEFAULT_PRIORITY = 1000


class DirectoryObjectModel(BaseState):
    id: Optional[str] = None
    machine_catalog_id: str = Field(
        pattern=GUID_REGEX,
        description="GUID of the machine catalog bound to the configuration set.",
    )
    configuration_set_id: int = Field(
        description="Id of the WEM configuration set (site)."
    )
    enabled: bool = Field(
        default=True, description="Whether the directory object is enabled."
    )

    @classmethod
    def from_remote(cls, remote: dict) -> "DirectoryObjectModel":
        object_id = remote.get("id")
        return cls.model_construct(
            id=str(object_id) if object_id is not None else None,
            machine_catalog_id=remote.get("sid", ""),
            configuration_set_id=remote.get("siteId"),
            enabled=bool(remote.get("enabled")),
        )


class DirectoryObject(BaseResource):
    """
    A machine-level directory object binding a machine catalog to a WEM
    configuration set.

    The WEM service rejects concurrent changes to directory objects, so every
    operation on this kind runs one at a time within the process.
    """

    type_name = "wem_directory_object"
    display_name = "WEM Directory Object"
    model = DirectoryObjectModel
    service = WEM
    serialize_operations = True
    cloud_only = True
    cloud_only_message = "Directory Objects are only supported for Cloud customers."

    def _parse_import_field(self, name, value):
        if not value.isdigit():
            raise ImportFormatError(
                "Invalid Import Identifier",
                f'Directory object id must be numeric, got: "{value}"',
            )
        return value

    def _catalog_name(self, catalog_id, ctx) -> str:
        try:
            catalog, _ = self.client.execute_with_retry(
                "GET", ORCHESTRATION, f"MachineCatalogs/{catalog_id}", ctx=ctx
            )
        except ApiError as e:
            raise ApiError(
                "Error reading machine catalog",
                f"Could not read machine catalog with ID {catalog_id}\n"
                f"Error message: {e.message}",
                e.metadata,
            ) from e
        return (catalog or {}).get("Name", "")

    def _body(self, config, catalog_name) -> dict:
        return {
            "siteId": config.configuration_set_id,
            "sid": config.machine_catalog_id,
            "name": catalog_name,
            "type": "Catalog",
            "enabled": config.enabled,
            "priority": DEFAULT_PRIORITY,
        }

    def _query_by_sid(self, sid, ctx) -> DirectoryObjectModel:
        page, _ = self.client.execute_with_retry(
            "GET", WEM, AD_OBJECTS_PATH, query_params={"sid": sid}, ctx=ctx
        )
        items = (page or {}).get("items") or []
        if not items:
            raise NotFoundError(
                "Error reading WEM Directory Object",
                f"WEM Directory object with SID {sid} not found",
            )
        return DirectoryObjectModel.from_remote(items[0])

    def _query_by_id(self, object_id, ctx) -> DirectoryObjectModel:
        remote, _ = self.client.execute_with_retry(
            "GET", WEM, f"{AD_OBJECTS_PATH}/{int(object_id)}", ctx=ctx
        )
        if not remote:
            raise NotFoundError(
                "Error reading WEM Directory Object",
                f"wem directory object with ID {object_id} not found",
            )
        return DirectoryObjectModel.from_remote(remote)

    def _create(self, config, ctx):
        catalog_name = self._catalog_name(config.machine_catalog_id, ctx)
        try:
            self.client.execute(
                "POST",
                WEM,
                AD_OBJECTS_PATH,
                data=self._body(config, catalog_name),
                ctx=ctx,
            )
        except ApiError as e:
            if e.status_code == 400 and "Duplicate property" in e.message:
                raise ConflictError(
                    f"Failed to create directory object for catalog '{catalog_name}'",
                    f"TransactionId: {e.transaction_id}\n"
                    "Error message: A Directory Object with the same "
                    "Machine Catalog ID already exists.",
                ) from e
            raise e.with_summary(
                f"Error binding {catalog_name} to WEM configuration set ID "
                f"{config.configuration_set_id}"
            ) from e
        return self._query_by_sid(config.machine_catalog_id, ctx)

    def _read(self, state, ctx):
        return self._query_by_id(state.id, ctx)

    def _locate(self, config, ctx):
        if config.id:
            return self._query_by_id(config.id, ctx)
        return self._query_by_sid(config.machine_catalog_id, ctx)

    def _update(self, state, config, ctx):
        catalog_name = self._catalog_name(config.machine_catalog_id, ctx)
        body = dict(self._body(config, catalog_name), id=int(state.id))
        try:
            self.client.execute("PUT", WEM, AD_OBJECTS_PATH, data=body, ctx=ctx)
        except ApiError as e:
            raise e.with_summary(
                f"Error Updating WEM Directory Object with ID {state.id}"
            ) from e
        return self._query_by_id(state.id, ctx)

    def _delete(self, state, ctx):
        try:
            self.client.execute(
                "DELETE", WEM, f"{AD_OBJECTS_PATH}/{int(state.id)}", ctx=ctx
            )
        except ApiError as e:
            raise e.with_summary(
                f"Error Deleting WEM Directory Object {state.id}"
            ) from e
