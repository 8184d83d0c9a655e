import logging
import re
import time
from typing import List, Literal, Optional, Set
from urllib.parse import quote

from pydantic import Field

from ansible_citrix_adapter.client import CITRIX_CLOUD
from ansible_citrix_adapter.errors import (
    AdapterError,
    ApiError,
    ConfigurationError,
    InvalidConfigError,
    NotFoundError,
    OperationCancelledError,
    PreconditionError,
    UnsupportedOperationError,
)
from ansible_citrix_adapter.helpers import FQDN_REGEX, GUID_REGEX
from ansible_citrix_adapter.interfaces.resource import BaseResource, is_not_found
from ansible_citrix_adapter.interfaces.state import BaseState

logger = logging.getLogger(__name__)

ADMINISTRATORS_PATH = "administrators"
MONITOR_POLICY_SUFFIX = " (Monitor)"
XENDESKTOP_SERVICE = "XenDesktop"

FULL_ACCESS_UPDATE_DETAIL = (
    "Administrators with access type Full cannot be updated. "
    "Remove the administrator and add it again with the desired access."
)


class AdminPolicyModel(BaseState):
    name: str = Field(description="Display name of the access policy.")
    service_name: Optional[Literal["XenDesktop", "Platform", "CAS", "WEM"]] = Field(
        default=None,
        description="Service the policy belongs to. "
        "Required when the name is ambiguous.",
    )
    scopes: Optional[Set[str]] = Field(
        default=None, description="Display names of the scopes to grant."
    )


class CloudAdminUserModel(BaseState):
    # User id for users, ucOid for groups. Empty while an invitation is pending.
    admin_id: Optional[str] = None
    access_type: Literal["Full", "Custom"] = Field(description="Full or Custom access.")
    type: Literal["AdministratorUser", "AdministratorGroup"] = Field(
        default="AdministratorUser",
        description="Whether a single user or a directory group is added.",
    )
    provider_type: Literal["CitrixSts", "AzureAd", "Ad", "Google"] = Field(
        default="CitrixSts", description="Identity provider of the administrator."
    )
    email: Optional[str] = Field(default=None, description="Email of the invited user.")
    display_name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    external_provider_id: Optional[str] = Field(
        default=None, description="Tenant GUID for AzureAd, or domain FQDN for Ad."
    )
    external_user_id: Optional[str] = Field(
        default=None, description="Object id of the user or group in the provider."
    )
    policies: Optional[List[AdminPolicyModel]] = Field(
        default=None, description="Access policies for Custom access."
    )

    @property
    def invitation_accepted(self) -> bool:
        return bool(self.admin_id)


def external_user_id_of(external_oid: str) -> str:
    return (external_oid or "").split("/")[-1]


def trim_monitor_suffix(display_name: str) -> str:
    if display_name.endswith(MONITOR_POLICY_SUFFIX):
        return display_name[: -len(MONITOR_POLICY_SUFFIX)]
    return display_name


def refresh_admin(
    remote: dict, prior: Optional[CloudAdminUserModel]
) -> CloudAdminUserModel:
    """
    Maps a remote administrator onto the local shape.

    Optional descriptive attributes are only refreshed when the prior state
    tracks them.
    """
    admin_type = remote.get("type") or "AdministratorUser"
    if admin_type == "AdministratorGroup":
        admin_id = remote.get("ucOid")
    else:
        admin_id = remote.get("userId")
    values = {
        "access_type": remote.get("accessType") or "Full",
        "type": admin_type,
        "admin_id": admin_id or None,
        "provider_type": remote.get("providerType") or "CitrixSts",
        "email": remote.get("email") or None,
    }
    if prior is not None:
        legacy = [p.lower() for p in remote.get("legacyProviders") or []]
        if prior.provider_type and prior.provider_type.lower() in legacy:
            values["provider_type"] = prior.provider_type
        email = values["email"]
        if prior.email and email and prior.email.lower() == email.lower():
            values["email"] = prior.email
        if getattr(prior, "display_name", None) is not None:
            values["display_name"] = remote.get("displayName")
        if getattr(prior, "first_name", None) is not None:
            values["first_name"] = remote.get("firstName")
        if getattr(prior, "last_name", None) is not None:
            values["last_name"] = remote.get("lastName")
        if getattr(prior, "external_provider_id", None) is not None:
            values["external_provider_id"] = remote.get("providerId")
        if getattr(prior, "external_user_id", None) is not None:
            values["external_user_id"] = external_user_id_of(remote.get("externalOid"))
    return CloudAdminUserModel.model_construct(**values)


def refresh_policies(
    access: dict, configured: Optional[List[AdminPolicyModel]]
) -> List[AdminPolicyModel]:
    """Selected remote policies, restricted to the configured ones if any."""
    wanted = None
    if configured:
        wanted = {p.name.lower(): p for p in configured}

    policies = []
    for remote in access.get("policies") or []:
        if not (remote.get("checkable") or {}).get("value"):
            continue
        display_name = remote.get("displayName") or ""
        trimmed = trim_monitor_suffix(display_name)
        match = None
        if wanted is not None:
            match = wanted.get(display_name.lower()) or wanted.get(trimmed.lower())
            if match is None:
                continue
        scopes = {
            choice.get("displayName")
            for choice in (remote.get("scopeChoices") or {}).get("choices") or []
            if (choice.get("checkable") or {}).get("value")
        }
        configured_scopes = {}
        if match is not None:
            configured_scopes = {s.lower(): s for s in match.scopes or []}
        scopes = {configured_scopes.get(s.lower(), s) for s in scopes if s}
        policies.append(
            AdminPolicyModel.model_construct(
                name=match.name if match else display_name,
                service_name=remote.get("serviceName") or None,
                scopes=scopes or None,
            )
        )
    if configured:
        order = {p.name: index for index, p in enumerate(configured)}
        policies.sort(key=lambda p: order.get(p.name, len(order)))
    return policies


def policies_match(
    observed: Optional[List[AdminPolicyModel]],
    configured: Optional[List[AdminPolicyModel]],
) -> bool:
    """Whether exactly the configured policies are granted, as configured."""
    observed = observed or []
    configured = configured or []
    if len(observed) != len(configured):
        return False
    by_name = {p.name.lower(): p for p in observed}
    for policy in configured:
        current = by_name.get(policy.name.lower())
        if current is None:
            return False
        if policy.service_name is not None and (
            (current.service_name or "").lower() != policy.service_name.lower()
        ):
            return False
        if policy.scopes is not None and (
            {s.lower() for s in current.scopes or ()}
            != {s.lower() for s in policy.scopes}
        ):
            return False
    return True


def resolve_policy(policy: AdminPolicyModel, remote_policies: list) -> dict:
    """
    Builds the request model of one configured policy from the access model
    of the signed-in administrator.

    Raises:
        NotFoundError: The policy or one of its scopes is not known yet.
        InvalidConfigError: The policy exists but cannot be granted as configured.
    """
    summary = "Error resolving access policy"
    checkable = {"value": True, "canChangeValue": True}
    scopes = sorted(policy.scopes or [])
    resolved = None
    services = []
    for remote in remote_policies:
        display_name = remote.get("displayName") or ""
        trimmed = trim_monitor_suffix(display_name)
        if policy.name.lower() not in (display_name.lower(), trimmed.lower()):
            continue
        service_name = remote.get("serviceName") or ""
        if policy.service_name and service_name.lower() != policy.service_name.lower():
            continue
        services.append(remote.get("serviceName"))

        resolved = {
            "name": remote.get("name"),
            "serviceName": remote.get("serviceName"),
            "displayName": display_name,
            "checkable": checkable,
        }
        remote_choices = (remote.get("scopeChoices") or {}).get("choices")
        if remote_choices is not None:
            choices = []
            for scope in scopes:
                matched = [
                    c
                    for c in remote_choices
                    if (c.get("displayName") or "").lower() == scope.lower()
                ]
                if not matched:
                    raise NotFoundError(summary, f"scope with name: {scope} not found")
                choices.extend(
                    {
                        "name": c.get("name"),
                        "displayName": c.get("displayName"),
                        "checkable": checkable,
                    }
                    for c in matched
                )
            resolved["scopeChoices"] = {"allScopesSelected": False, "choices": choices}
        elif scopes:
            raise InvalidConfigError(
                summary, f"policy with name: {policy.name} does not contain any scopes"
            )
        else:
            resolved["scopeChoices"] = remote.get("scopeChoices")

    if resolved is None:
        raise NotFoundError(summary, f"policy with name: {policy.name} not found")
    if len(services) > 1:
        raise InvalidConfigError(
            summary,
            f"policy with name: {policy.name} is associated with multiple services "
            f"{', '.join(services)}. "
            "Please specify one of the services in the 'service_name' attribute",
        )
    if resolved["serviceName"] == XENDESKTOP_SERVICE and not scopes:
        raise InvalidConfigError(
            summary,
            f"policy '{policy.name}' with service name '{XENDESKTOP_SERVICE}' "
            "has no scopes; please add scope values",
        )
    return resolved


class CloudAdminUser(BaseResource):
    """
    A Citrix Cloud administrator, added either as an invited user or as a
    directory group.

    Inviting a user creates a pending record without an admin id; the id only
    appears once the invitation is accepted. Until then the user can only be
    removed by revoking the invitation.
    """

    type_name = "cloud_admin_user"
    display_name = "Admin User"
    model = CloudAdminUserModel
    service = CITRIX_CLOUD
    identifier_fields = ("admin_id",)
    computed_fields = ("admin_id",)
    write_only_fields = ("policies",)
    cloud_only = True
    cloud_only_message = (
        "Citrix Cloud administrators can only be managed for Cloud customers."
    )

    # Roles and scopes created through the DaaS API take a few minutes to show
    # up in the access model.
    policy_lookup_attempts = 7
    policy_lookup_interval = 30

    def _validate(self, config):
        if config.access_type == "Full" and config.policies is not None:
            yield InvalidConfigError(
                "Error validating policies",
                "Full access type does not require policies",
            )
        if config.access_type == "Custom" and config.policies is None:
            yield InvalidConfigError(
                "Error validating policies",
                "Policies are required to be set for access type Custom",
            )
        if config.type == "AdministratorUser":
            if not config.email:
                yield InvalidConfigError(
                    "Error validating email",
                    "Email is required for Administrator type User",
                )
            if config.provider_type != "CitrixSts":
                yield InvalidConfigError(
                    "Error validating provider type",
                    "Provider type should be CitrixSts for Administrator type User",
                )
            if (
                config.external_provider_id is not None
                or config.external_user_id is not None
            ):
                yield InvalidConfigError(
                    "Error validating external provider id and external user id",
                    "Administrator type User does not require external provider id "
                    "and external user id",
                )
        if config.type == "AdministratorGroup":
            if config.email is not None:
                yield InvalidConfigError(
                    "Error validating email",
                    "Email is not supported for Administrator Groups",
                )
            if config.access_type != "Custom":
                yield InvalidConfigError(
                    "Error validating access type",
                    "Access type should be Custom for Administrator type Group",
                )
        provider_id = config.external_provider_id or ""
        if config.provider_type in ("AzureAd", "Ad") and (
            not config.external_provider_id or not config.external_user_id
        ):
            yield InvalidConfigError(
                "Error validating provider type",
                "External provider id and external user id are required "
                "for provider type Azure AD and AD",
            )
        if config.provider_type == "AzureAd" and not re.match(GUID_REGEX, provider_id):
            yield InvalidConfigError(
                "Error validating external provider id",
                "The external provider ID for AzureAd must be a valid GUID",
            )
        if config.provider_type == "Ad" and not re.match(FQDN_REGEX, provider_id):
            yield InvalidConfigError(
                "Error validating external provider id",
                "The external provider ID for AD must be in FQDN format",
            )

    # --- remote lookups ---------------------------------------------------

    def _find(self, admin_id, email, external_user_id, ctx) -> dict:
        token = None
        while True:
            page, _ = self.client.execute_with_retry(
                "GET",
                CITRIX_CLOUD,
                ADMINISTRATORS_PATH,
                query_params={"requestContinuation": token},
                ctx=ctx,
            )
            page = page or {}
            for item in page.get("items") or []:
                if admin_id and admin_id in (item.get("userId"), item.get("ucOid")):
                    return item
                external_id = external_user_id_of(item.get("externalOid"))
                if external_user_id and external_id.lower() == external_user_id.lower():
                    return item
                if email and (item.get("email") or "").lower() == email.lower():
                    return item
            token = page.get("continuationToken")
            if not token:
                break

        if email:
            identifier = f"email: {email}"
        elif admin_id:
            identifier = f"id: {admin_id}"
        else:
            identifier = f"external user id: {external_user_id}"
        raise NotFoundError(
            "Error fetching admin user", f"could not find admin user {identifier}"
        )

    def _access(self, admin_id, ctx) -> dict:
        access, _ = self.client.execute_with_retry(
            "GET",
            CITRIX_CLOUD,
            f"{ADMINISTRATORS_PATH}/{quote(admin_id)}/access",
            ctx=ctx,
            summary=f"Error getting access policies for user {admin_id}",
        )
        return access or {}

    def _refresh(self, prior, ctx) -> CloudAdminUserModel:
        remote = self._find(
            getattr(prior, "admin_id", None),
            getattr(prior, "email", None),
            getattr(prior, "external_user_id", None),
            ctx,
        )
        state = refresh_admin(remote, prior)
        if state.invitation_accepted and state.access_type == "Custom":
            policies = refresh_policies(
                self._access(state.admin_id, ctx), getattr(prior, "policies", None)
            )
            state = state.model_copy(update={"policies": policies})
        return state

    def _resolve_policies(self, config, ctx) -> Optional[list]:
        if config.access_type == "Full":
            return None

        summary = "Error adding policies to the user"
        signed_in_admin = self.client.token_claims(ctx).get("user_id")
        if not signed_in_admin:
            raise ConfigurationError(
                summary,
                "Unable to verify access of the admin user\n"
                "user_id not found in the auth token",
            )

        attempt = 0
        while True:
            attempt += 1
            remote_policies = self._access(signed_in_admin, ctx).get("policies") or []
            try:
                return [
                    resolve_policy(policy, remote_policies)
                    for policy in config.policies or []
                ]
            except NotFoundError as e:
                if attempt >= self.policy_lookup_attempts:
                    raise InvalidConfigError(
                        summary,
                        f"error fetching admin policy access models\n{e.detail}",
                    ) from e
                logger.info(
                    "%s, retrying in %ss (%d/%d)",
                    e.detail,
                    self.policy_lookup_interval,
                    attempt,
                    self.policy_lookup_attempts,
                )
                if ctx is None:
                    time.sleep(self.policy_lookup_interval)
                elif not ctx.sleep(self.policy_lookup_interval):
                    raise OperationCancelledError(
                        "Operation cancelled",
                        "Cancelled while waiting for access policies "
                        "to become available.",
                    ) from e

    # --- lifecycle hooks --------------------------------------------------

    def _create(self, config, ctx):
        body = {
            "type": config.type,
            "accessType": config.access_type,
            "providerType": config.provider_type,
        }
        optional = {
            "email": config.email,
            "firstName": config.first_name,
            "lastName": config.last_name,
            "displayName": config.display_name,
            "externalProviderId": config.external_provider_id,
            "externalUserId": config.external_user_id,
        }
        body.update({k: v for k, v in optional.items() if v is not None})
        body["policies"] = self._resolve_policies(config, ctx)

        try:
            self.client.execute(
                "POST", CITRIX_CLOUD, ADMINISTRATORS_PATH, data=body, ctx=ctx
            )
        except ApiError as e:
            who = config.email or config.external_user_id or ""
            raise e.with_summary(f"Error creating admin {who}") from e

        try:
            return self._refresh(config, ctx)
        except AdapterError as e:
            raise PreconditionError(
                "Error fetching admin user",
                f"The administrator was added but could not be read back: {e.detail}\n"
                "Running the operation again adopts the existing administrator.",
            ) from e

    def _read(self, state, ctx):
        return self._refresh(state, ctx)

    def _locate(self, config, ctx):
        return self._refresh(config, ctx)

    def _is_identified(self, state):
        return bool(state.admin_id or state.email or state.external_user_id)

    def changed_fields(self, observed, config):
        """
        Policies are compared only on the keys the configuration sets, since
        the service fills in ``service_name`` and ``scopes`` on its own.
        """
        changed = super().changed_fields(observed, config)
        if "policies" in changed and policies_match(
            observed.policies, config.policies
        ):
            del changed["policies"]
        return changed

    def _update(self, state, config, ctx):
        if state.access_type == "Full" or config.access_type == "Full":
            raise UnsupportedOperationError(
                "Error updating admin user", FULL_ACCESS_UPDATE_DETAIL
            )
        if not state.invitation_accepted:
            raise PreconditionError(
                f"Error updating admin user with email: {state.email or ''}",
                "User should first accept the invitation before updating the user.",
            )
        for field, label in (
            ("first_name", "first name"),
            ("last_name", "last name"),
            ("display_name", "display name"),
        ):
            desired = getattr(config, field)
            if desired is not None and getattr(state, field, None) != desired:
                raise InvalidConfigError(
                    f"Error updating {label}", f"{label.capitalize()} cannot be updated"
                )

        body = {
            "accessType": config.access_type,
            "policies": self._resolve_policies(config, ctx),
        }
        try:
            self.client.execute(
                "PUT",
                CITRIX_CLOUD,
                f"{ADMINISTRATORS_PATH}/{quote(state.admin_id)}/access",
                data=body,
                ctx=ctx,
            )
        except ApiError as e:
            raise e.with_summary(f"Error updating policies for {state.admin_id}") from e
        prior = state.model_copy(update={"policies": config.policies})
        return self._refresh(prior, ctx)

    def _delete(self, state, ctx):
        if not state.invitation_accepted:
            if not state.email:
                raise PreconditionError(
                    "Error deleting admin user",
                    "The administrator has not accepted the invitation yet "
                    "and has no email to revoke the invitation with.",
                )
            try:
                self.client.execute(
                    "DELETE",
                    CITRIX_CLOUD,
                    f"{ADMINISTRATORS_PATH}/invitations",
                    query_params={"email": state.email},
                    ctx=ctx,
                )
            except ApiError as e:
                if is_not_found(e):
                    raise
                raise e.with_summary(
                    f"Error deleting admin user invitation with email: {state.email}"
                ) from e
            return

        try:
            self.client.execute(
                "DELETE",
                CITRIX_CLOUD,
                f"{ADMINISTRATORS_PATH}/{quote(state.admin_id)}",
                ctx=ctx,
            )
        except ApiError as e:
            if is_not_found(e):
                raise
            raise e.with_summary(
                f"Error deleting admin user with id: {state.admin_id}"
            ) from e
