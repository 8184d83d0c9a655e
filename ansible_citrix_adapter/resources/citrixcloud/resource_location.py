from typing import Optional
from urllib.parse import quote

from pydantic import Field

from ansible_citrix_adapter.client import CITRIX_CLOUD
from ansible_citrix_adapter.errors import (
    ApiError,
    ConflictError,
    NotFoundError,
    PreconditionError,
)
from ansible_citrix_adapter.interfaces.resource import BaseDataSource, BaseResource
from ansible_citrix_adapter.interfaces.state import BaseState

LOCATIONS_PATH = "resourcelocations"
DEFAULT_TIME_ZONE = "GMT Standard Time"

MISSING_PERMISSION_DETAIL = (
    "The API client does not have the Citrix Cloud Resource Location permission. "
    "This is required to manage DaaS Zones."
)
CLOUD_ONLY_MESSAGE = (
    "Resource locations are only supported for Cloud customers. "
    "On-premises customers can use the Zone resource directly."
)


def list_resource_locations(client, ctx) -> list:
    page, _ = client.execute_with_retry(
        "GET",
        CITRIX_CLOUD,
        LOCATIONS_PATH,
        ctx=ctx,
        summary="Error listing resource locations",
    )
    return (page or {}).get("items") or []


def find_resource_location(client, name: str, ctx) -> Optional[dict]:
    """Names are compared case-insensitively."""
    for location in list_resource_locations(client, ctx):
        if (location.get("name") or "").lower() == name.lower():
            return location
    return None


class ResourceLocationModel(BaseState):
    id: Optional[str] = None
    name: str = Field(description="Name of the resource location.")
    internal_only: bool = Field(
        default=False,
        description="Whether the resource location can only be used internally.",
    )
    time_zone: str = Field(
        default=DEFAULT_TIME_ZONE,
        description="Windows time zone name of the resource location.",
    )

    @classmethod
    def from_remote(cls, remote: dict) -> "ResourceLocationModel":
        return cls.model_construct(
            id=remote.get("id"),
            name=remote.get("name", ""),
            internal_only=bool(remote.get("internalOnly")),
            time_zone=remote.get("timeZone") or DEFAULT_TIME_ZONE,
        )


class ResourceLocation(BaseResource):
    """A Citrix Cloud resource location. Names are unique per customer."""

    type_name = "resource_location"
    display_name = "Resource Location"
    model = ResourceLocationModel
    service = CITRIX_CLOUD
    cloud_only = True
    cloud_only_message = CLOUD_ONLY_MESSAGE

    def _body(self, config):
        return {
            "name": config.name,
            "internalOnly": config.internal_only,
            "timeZone": config.time_zone,
        }

    def _ensure_name_available(self, name, ctx, summary):
        if find_resource_location(self.client, name, ctx) is not None:
            raise ConflictError(
                summary, f"A resource location with name '{name}' already exists."
            )

    def _get(self, location_id, ctx) -> ResourceLocationModel:
        summary = f"Error reading resource location with id: {location_id}"
        try:
            remote, _ = self.client.execute_with_retry(
                "GET", CITRIX_CLOUD, f"{LOCATIONS_PATH}/{quote(location_id)}", ctx=ctx
            )
        except ApiError as e:
            if e.status_code == 403:
                raise PreconditionError(summary, MISSING_PERMISSION_DETAIL) from e
            raise e.with_summary(summary) from e
        if not remote:
            raise NotFoundError(summary, f"Resource Location {location_id} not found.")
        return ResourceLocationModel.from_remote(remote)

    def _create(self, config, ctx):
        summary = "Error creating resource location"
        self._ensure_name_available(config.name, ctx, summary)
        try:
            created, _ = self.client.execute(
                "POST", CITRIX_CLOUD, LOCATIONS_PATH, data=self._body(config), ctx=ctx
            )
        except ApiError as e:
            raise e.with_summary(summary) from e
        return self._get((created or {}).get("id") or "", ctx)

    def _read(self, state, ctx):
        return self._get(state.id, ctx)

    def _locate(self, config, ctx):
        if config.id:
            return self._get(config.id, ctx)
        remote = find_resource_location(self.client, config.name, ctx)
        return ResourceLocationModel.from_remote(remote) if remote else None

    def _update(self, state, config, ctx):
        summary = f"Error updating resource location with id: {state.id}"
        if config.name.lower() != (state.name or "").lower():
            self._ensure_name_available(config.name, ctx, summary)
        try:
            self.client.execute(
                "PUT",
                CITRIX_CLOUD,
                f"{LOCATIONS_PATH}/{quote(state.id)}",
                data=self._body(config),
                ctx=ctx,
            )
        except ApiError as e:
            raise e.with_summary(summary) from e
        return self._get(state.id, ctx)

    def _delete(self, state, ctx):
        try:
            self.client.execute(
                "DELETE", CITRIX_CLOUD, f"{LOCATIONS_PATH}/{quote(state.id)}", ctx=ctx
            )
        except ApiError as e:
            raise e.with_summary(
                f"Error deleting resource location with id: {state.id}"
            ) from e


class ResourceLocationInfoModel(BaseState):
    name: str = Field(description="Name of the resource location to read.")
    id: Optional[str] = None
    internal_only: Optional[bool] = None
    time_zone: Optional[str] = None


class ResourceLocationInfo(BaseDataSource):
    """Reads one resource location by name."""

    type_name = "resource_location_info"
    display_name = "Resource Location"
    model = ResourceLocationInfoModel
    lookup_fields = ("name",)
    service = CITRIX_CLOUD
    cloud_only = True
    cloud_only_message = CLOUD_ONLY_MESSAGE
    computed_fields = ("id", "internal_only", "time_zone")

    def _read(self, config, ctx):
        remote = find_resource_location(self.client, config.name, ctx)
        if remote is None:
            raise NotFoundError(
                "Error reading resource location",
                f"Resource location with name '{config.name}' not found.",
            )
        return ResourceLocationInfoModel.model_construct(
            **ResourceLocationModel.from_remote(remote).model_dump()
        )
