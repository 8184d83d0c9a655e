from typing import List, Literal, Optional
from urllib.parse import quote

from pydantic import Field

from ansible_citrix_adapter.client import STOREFRONT
from ansible_citrix_adapter.errors import (
    ApiError,
    ImportFormatError,
    InvalidConfigError,
    NotFoundError,
)
from ansible_citrix_adapter.interfaces.resource import BaseResource
from ansible_citrix_adapter.interfaces.state import BaseState

FarmType = Literal["XenApp", "XenDesktop", "AppController", "VDIinaBox", "Store"]


class FarmConfigModel(BaseState):
    farm_name: str = Field(description="Name of the farm.")
    farm_type: FarmType = Field(description="Type of the farm.")
    servers: List[str] = Field(min_length=1, description="Servers of the farm.")


class StoreServiceModel(BaseState):
    site_id: str = Field(
        default="1", description="IIS site id of the StoreFront deployment."
    )
    virtual_path: str = Field(
        description="IIS virtual path of the store, for example /Citrix/Store."
    )
    friendly_name: Optional[str] = Field(
        default=None, description="Friendly name of the store."
    )
    authentication_service: Optional[str] = Field(
        default=None,
        description="Virtual path of the authentication service used by the store.",
    )
    anonymous: Optional[bool] = Field(
        default=None, description="Whether the store allows anonymous access."
    )
    load_balance: Optional[bool] = Field(
        default=None, description="Whether the farm servers are load balanced."
    )
    farm_config: Optional[FarmConfigModel] = Field(
        default=None, description="Initial farm of the store."
    )

    @classmethod
    def from_remote(cls, remote: dict) -> "StoreServiceModel":
        return cls.model_construct(
            site_id=str(remote.get("SiteId", "1")),
            virtual_path=remote.get("VirtualPath", ""),
            friendly_name=remote.get("FriendlyName"),
            authentication_service=None,
            anonymous=None,
            load_balance=None,
            farm_config=None,
        )


def stores_path(site_id: str) -> str:
    return f"StorefrontAdmin/Sites/{int(site_id)}/Stores"


class StoreService(BaseResource):
    """
    A StoreFront store.

    The authentication, load balancing and farm settings are only used when
    the store is created and are never reported back.
    """

    type_name = "stf_store_service"
    display_name = "StoreFront StoreService"
    model = StoreServiceModel
    service = STOREFRONT
    identifier_fields = ("site_id", "virtual_path")
    computed_fields = ()
    write_only_fields = (
        "authentication_service",
        "anonymous",
        "load_balance",
        "farm_config",
    )

    def _validate(self, config):
        if not config.site_id.isdigit():
            yield InvalidConfigError(
                "Invalid Attribute Configuration",
                f'site_id should be an integer, got: "{config.site_id}"',
            )
        if config.anonymous and config.authentication_service:
            yield InvalidConfigError(
                "Invalid Attribute Configuration",
                "authentication_service cannot be set for an anonymous store",
            )

    def _parse_import_field(self, name, value):
        if name == "site_id" and not value.isdigit():
            raise ImportFormatError(
                "Invalid Site ID in Import Identifier",
                f'Site ID should be an integer, got: "{value}"',
            )
        return value

    def _store_path(self, state) -> str:
        return f"{stores_path(state.site_id)}/{quote(state.virtual_path, safe='')}"

    def _body(self, config) -> dict:
        return {
            "VirtualPath": config.virtual_path,
            "FriendlyName": config.friendly_name,
        }

    def _get(self, state, ctx) -> StoreServiceModel:
        summary = "Error fetching state of Storefront StoreService"
        try:
            remote, _ = self.client.execute_with_retry(
                "GET", STOREFRONT, self._store_path(state), ctx=ctx
            )
        except ApiError as e:
            raise e.with_summary(summary) from e
        if not remote:
            raise NotFoundError(
                summary,
                f"Store {state.virtual_path} not found in site {state.site_id}",
            )
        return StoreServiceModel.from_remote(remote)

    def _create(self, config, ctx):
        body = self._body(config)
        if config.anonymous:
            body["Anonymous"] = True
        elif config.authentication_service:
            body["AuthenticationService"] = config.authentication_service
        if config.load_balance is not None:
            body["LoadBalance"] = config.load_balance
        if config.farm_config is not None:
            body["FarmName"] = config.farm_config.farm_name
            body["FarmType"] = config.farm_config.farm_type
            body["Servers"] = list(config.farm_config.servers)

        try:
            self.client.execute(
                "POST", STOREFRONT, stores_path(config.site_id), data=body, ctx=ctx
            )
        except ApiError as e:
            raise e.with_summary("Error creating Storefront StoreService") from e
        return self._get(config, ctx)

    def _read(self, state, ctx):
        return self._get(state, ctx)

    def _update(self, state, config, ctx):
        try:
            self.client.execute(
                "PUT",
                STOREFRONT,
                self._store_path(state),
                data=self._body(config),
                ctx=ctx,
            )
        except ApiError as e:
            raise e.with_summary("Error updating Storefront StoreService") from e
        return self._get(state, ctx)

    def _delete(self, state, ctx):
        try:
            self.client.execute("DELETE", STOREFRONT, self._store_path(state), ctx=ctx)
        except ApiError as e:
            raise e.with_summary("Error deleting Storefront StoreService") from e
