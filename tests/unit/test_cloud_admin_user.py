import pytest

from ansible_citrix_adapter.client import CITRIX_CLOUD
from ansible_citrix_adapter.errors import InvalidConfigError, NotFoundError
from ansible_citrix_adapter.models import CallContext, Diagnostics
from ansible_citrix_adapter.resources.citrixcloud.admin_user import (
    FULL_ACCESS_UPDATE_DETAIL,
    AdminPolicyModel,
    CloudAdminUser,
    CloudAdminUserModel,
    resolve_policy,
)

ADMIN_ID = "8f1c1b9a0d"
SIGNED_IN_ADMIN = "api-client-admin"
GROUP_TENANT_ID = "2f1b7c36-6a3e-4bd4-8f7c-3c4d5e6f7a8b"

ACCEPTED_ADMIN = {
    "userId": ADMIN_ID,
    "email": "jane@example.com",
    "displayName": "Jane Doe",
    "firstName": "Jane",
    "lastName": "Doe",
    "providerType": "CitrixSts",
    "accessType": "Custom",
    "type": "AdministratorUser",
}
PENDING_ADMIN = dict(ACCEPTED_ADMIN, userId=None)

ACCESS_MODEL = {
    "accessType": "Custom",
    "policies": [
        {
            "name": "ReadOnlyAdmin",
            "displayName": "Read Only Administrator",
            "serviceName": "XenDesktop",
            "checkable": {"value": True},
            "scopeChoices": {
                "choices": [
                    {"name": "All", "displayName": "All", "checkable": {"value": True}},
                    {
                        "name": "Finance",
                        "displayName": "Finance",
                        "checkable": {"value": False},
                    },
                ]
            },
        },
        {
            "name": "Monitor",
            "displayName": "Help Desk (Monitor)",
            "serviceName": "Platform",
            "checkable": {"value": False},
        },
    ],
}


def route(ok, admins, access=None):
    """Answers the administrator list and access model calls of one test."""

    def answer(method, service, path, **kwargs):
        assert service == CITRIX_CLOUD
        if path == "administrators":
            return ok({"items": admins})
        if path.endswith("/access"):
            return ok(access or ACCESS_MODEL)
        raise AssertionError(f"unexpected call {method} {path}")

    return answer


@pytest.fixture
def admin_user(mock_client):
    kind = CloudAdminUser(mock_client)
    kind.policy_lookup_interval = 0
    mock_client.token_claims.return_value = {"user_id": SIGNED_IN_ADMIN}
    return kind


def custom_config(**overrides):
    values = dict(
        access_type="Custom",
        email="jane@example.com",
        policies=[AdminPolicyModel(name="Read Only Administrator", scopes={"All"})],
    )
    values.update(overrides)
    return CloudAdminUserModel(**values)


def observed_admin(*policies):
    return CloudAdminUserModel.model_construct(
        admin_id=ADMIN_ID,
        access_type="Custom",
        type="AdministratorUser",
        provider_type="CitrixSts",
        email="jane@example.com",
        policies=list(policies),
    )


class TestUpdate:
    @pytest.mark.parametrize(
        "state_access, config_access",
        [("Full", "Full"), ("Full", "Custom"), ("Custom", "Full")],
    )
    def test_full_access_always_fails_with_fixed_error(
        self, admin_user, mock_client, state_access, config_access
    ):
        # Arrange
        state = CloudAdminUserModel(
            admin_id=ADMIN_ID, access_type=state_access, email="jane@example.com"
        )
        policies = None
        if config_access == "Custom":
            policies = [AdminPolicyModel(name="Read Only Administrator")]
        config = CloudAdminUserModel(
            access_type=config_access, email="jane@example.com", policies=policies
        )
        diagnostics = Diagnostics()

        # Act
        result = admin_user.update(state, config, diagnostics)

        # Assert
        assert result is None
        assert [(d.summary, d.detail) for d in diagnostics.errors] == [
            ("Error updating admin user", FULL_ACCESS_UPDATE_DETAIL)
        ]
        mock_client.execute.assert_not_called()
        mock_client.execute_with_retry.assert_not_called()

    def test_pending_invitation_cannot_be_updated(self, admin_user, mock_client):
        state = CloudAdminUserModel(access_type="Custom", email="jane@example.com")
        diagnostics = Diagnostics()

        admin_user.update(state, custom_config(), diagnostics)

        assert diagnostics.errors[0].summary == (
            "Error updating admin user with email: jane@example.com"
        )
        assert diagnostics.errors[0].detail == (
            "User should first accept the invitation before updating the user."
        )
        mock_client.execute.assert_not_called()

    def test_names_are_immutable(self, admin_user):
        state = CloudAdminUserModel(
            admin_id=ADMIN_ID,
            access_type="Custom",
            email="jane@example.com",
            first_name="Jane",
        )
        diagnostics = Diagnostics()

        admin_user.update(state, custom_config(first_name="Janet"), diagnostics)

        assert (diagnostics.errors[0].summary, diagnostics.errors[0].detail) == (
            "Error updating first name",
            "First name cannot be updated",
        )

    def test_custom_access_is_replaced_with_resolved_policies(
        self, admin_user, mock_client, ok
    ):
        # Arrange
        mock_client.execute_with_retry.side_effect = route(ok, [ACCEPTED_ADMIN])
        mock_client.execute.return_value = ok()
        state = CloudAdminUserModel(
            admin_id=ADMIN_ID, access_type="Custom", email="jane@example.com"
        )

        # Act
        updated = admin_user.update(state, custom_config(), Diagnostics())

        # Assert
        assert mock_client.execute.call_args.args == (
            "PUT",
            CITRIX_CLOUD,
            f"administrators/{ADMIN_ID}/access",
        )
        body = mock_client.execute.call_args.kwargs["data"]
        assert body["accessType"] == "Custom"
        assert body["policies"][0]["name"] == "ReadOnlyAdmin"
        assert body["policies"][0]["scopeChoices"]["choices"][0]["name"] == "All"
        assert updated.admin_id == ADMIN_ID
        assert [p.name for p in updated.policies] == ["Read Only Administrator"]
        assert updated.policies[0].scopes == {"All"}


class TestChangeDetection:
    def test_policy_without_service_name_is_unchanged(self, admin_user):
        observed = observed_admin(
            AdminPolicyModel.model_construct(
                name="Cloud Administrator", service_name="Platform", scopes=None
            )
        )
        config = custom_config(policies=[{"name": "Cloud Administrator"}])

        assert admin_user.changed_fields(observed, config) == {}

    def test_scopes_are_compared_without_case(self, admin_user):
        observed = observed_admin(
            AdminPolicyModel.model_construct(
                name="Read Only Administrator",
                service_name="XenDesktop",
                scopes={"All"},
            )
        )
        config = custom_config(
            policies=[{"name": "read only administrator", "scopes": ["all"]}]
        )

        assert admin_user.changed_fields(observed, config) == {}

    def test_different_scopes_are_reported(self, admin_user):
        observed = observed_admin(
            AdminPolicyModel.model_construct(
                name="Read Only Administrator",
                service_name="XenDesktop",
                scopes={"All"},
            )
        )
        config = custom_config(
            policies=[{"name": "Read Only Administrator", "scopes": ["All", "Finance"]}]
        )

        assert "policies" in admin_user.changed_fields(observed, config)

    def test_different_service_is_reported(self, admin_user):
        observed = observed_admin(
            AdminPolicyModel.model_construct(
                name="Viewer", service_name="CAS", scopes=None
            )
        )
        config = custom_config(policies=[{"name": "Viewer", "service_name": "WEM"}])

        assert "policies" in admin_user.changed_fields(observed, config)

    def test_additional_granted_policy_is_reported(self, admin_user):
        observed = observed_admin(
            AdminPolicyModel.model_construct(
                name="Cloud Administrator", service_name="Platform", scopes=None
            ),
            AdminPolicyModel.model_construct(
                name="Viewer", service_name="CAS", scopes=None
            ),
        )
        config = custom_config(policies=[{"name": "Cloud Administrator"}])

        assert "policies" in admin_user.changed_fields(observed, config)

    def test_located_administrator_matches_its_configuration(
        self, admin_user, mock_client, ok
    ):
        # Arrange
        mock_client.execute_with_retry.side_effect = route(ok, [ACCEPTED_ADMIN])
        config = custom_config()

        # Act
        located = admin_user.locate(config, Diagnostics())

        # Assert
        assert located.policies[0].service_name == "XenDesktop"
        assert admin_user.changed_fields(located, config) == {}


class TestDelete:
    def test_pending_invitation_is_revoked_by_email(self, admin_user, mock_client, ok):
        mock_client.execute.return_value = ok(None, 204)
        state = CloudAdminUserModel(access_type="Custom", email="jane@example.com")

        assert admin_user.delete(state, Diagnostics()) is True

        mock_client.execute.assert_called_once_with(
            "DELETE",
            CITRIX_CLOUD,
            "administrators/invitations",
            query_params={"email": "jane@example.com"},
            ctx=None,
        )

    def test_pending_invitation_without_email_is_a_precondition_error(
        self, admin_user, mock_client
    ):
        diagnostics = Diagnostics()
        state = CloudAdminUserModel.model_construct(
            access_type="Custom", admin_id=None, email=None
        )

        assert admin_user.delete(state, diagnostics) is False

        assert diagnostics.errors[0].summary == "Error deleting admin user"
        mock_client.execute.assert_not_called()

    def test_accepted_administrator_is_deleted_by_id(self, admin_user, mock_client, ok):
        mock_client.execute.return_value = ok()
        state = CloudAdminUserModel(
            admin_id=ADMIN_ID, access_type="Full", email="jane@example.com"
        )

        admin_user.delete(state, Diagnostics())

        assert mock_client.execute.call_args.args == (
            "DELETE",
            CITRIX_CLOUD,
            f"administrators/{ADMIN_ID}",
        )

    def test_missing_administrator_counts_as_deleted(
        self, admin_user, mock_client, api_error
    ):
        mock_client.execute.side_effect = api_error(
            400, "Cannot find this administrator"
        )
        diagnostics = Diagnostics()
        state = CloudAdminUserModel(admin_id=ADMIN_ID, access_type="Full")

        assert admin_user.delete(state, diagnostics) is True
        assert len(diagnostics) == 0


class TestCreateAndRead:
    def test_invited_user_is_created_and_adopted_by_email(
        self, admin_user, mock_client, ok
    ):
        # Arrange
        mock_client.execute.return_value = ok(None, 201)
        mock_client.execute_with_retry.side_effect = route(
            ok, [{"email": "other@example.com"}, PENDING_ADMIN]
        )
        config = CloudAdminUserModel(
            access_type="Full", email="Jane@Example.com", first_name="Jane"
        )

        # Act
        state = admin_user.create(config, Diagnostics())

        # Assert
        body = mock_client.execute.call_args.kwargs["data"]
        assert body == {
            "type": "AdministratorUser",
            "accessType": "Full",
            "providerType": "CitrixSts",
            "email": "Jane@Example.com",
            "firstName": "Jane",
            "policies": None,
        }
        assert state.admin_id is None
        assert state.email == "Jane@Example.com"
        assert state.first_name == "Jane"

    def test_read_of_vanished_administrator_is_pruned(
        self, admin_user, mock_client, ok
    ):
        mock_client.execute_with_retry.side_effect = route(ok, [])
        diagnostics = Diagnostics()
        state = CloudAdminUserModel(admin_id=ADMIN_ID, access_type="Full")

        result = admin_user.read(state, diagnostics)

        assert result is None
        assert diagnostics.warnings[0].summary == "Admin User not found"

    def test_group_admin_id_is_the_object_id(self, admin_user, mock_client, ok):
        group = {
            "ucOid": "OID:/azuread/1111",
            "externalOid": "tenant/1111",
            "type": "AdministratorGroup",
            "accessType": "Custom",
            "providerType": "AzureAd",
        }
        mock_client.execute_with_retry.side_effect = route(
            ok, [group], {"policies": []}
        )
        config = CloudAdminUserModel(
            access_type="Custom",
            type="AdministratorGroup",
            provider_type="AzureAd",
            external_provider_id=GROUP_TENANT_ID,
            external_user_id="1111",
            policies=[],
        )

        located = admin_user.locate(config, Diagnostics())

        assert located.admin_id == "OID:/azuread/1111"
        assert located.external_user_id == "1111"


class TestValidation:
    @pytest.mark.parametrize(
        "raw_config, expected",
        [
            (
                {"access_type": "Full", "email": "a@b.com", "policies": []},
                (
                    "Error validating policies",
                    "Full access type does not require policies",
                ),
            ),
            (
                {"access_type": "Custom", "email": "a@b.com"},
                (
                    "Error validating policies",
                    "Policies are required to be set for access type Custom",
                ),
            ),
            (
                {"access_type": "Full"},
                (
                    "Error validating email",
                    "Email is required for Administrator type User",
                ),
            ),
            (
                {"access_type": "Full", "email": "a@b.com", "external_user_id": "x"},
                (
                    "Error validating external provider id and external user id",
                    "Administrator type User does not require external provider id "
                    "and external user id",
                ),
            ),
            (
                {
                    "access_type": "Full",
                    "type": "AdministratorGroup",
                    "provider_type": "AzureAd",
                    "external_provider_id": GROUP_TENANT_ID,
                    "external_user_id": "1111",
                },
                (
                    "Error validating access type",
                    "Access type should be Custom for Administrator type Group",
                ),
            ),
            (
                {
                    "access_type": "Custom",
                    "type": "AdministratorGroup",
                    "provider_type": "Ad",
                    "external_provider_id": "not a domain",
                    "external_user_id": "1111",
                    "policies": [],
                },
                (
                    "Error validating external provider id",
                    "The external provider ID for AD must be in FQDN format",
                ),
            ),
        ],
    )
    def test_rules(self, admin_user, raw_config, expected):
        diagnostics = Diagnostics()

        assert admin_user.validate_config(raw_config, diagnostics) is None

        assert expected in [(d.summary, d.detail) for d in diagnostics.errors]

    def test_valid_group(self, admin_user):
        raw_config = {
            "access_type": "Custom",
            "type": "AdministratorGroup",
            "provider_type": "Ad",
            "external_provider_id": "corp.example.com",
            "external_user_id": "S-1-5-21-1111",
            "policies": [{"name": "Read Only Administrator", "scopes": ["All"]}],
        }

        assert admin_user.validate_config(raw_config, Diagnostics()) is not None


class TestPolicyResolution:
    def test_monitor_suffix_and_case_are_ignored(self):
        resolved = resolve_policy(
            AdminPolicyModel(name="help desk"), ACCESS_MODEL["policies"]
        )

        assert resolved["name"] == "Monitor"
        assert resolved["checkable"] == {"value": True, "canChangeValue": True}

    def test_unknown_scope(self):
        policy = AdminPolicyModel(name="Read Only Administrator", scopes={"HR"})

        with pytest.raises(NotFoundError) as exc_info:
            resolve_policy(policy, ACCESS_MODEL["policies"])

        assert exc_info.value.detail == "scope with name: HR not found"

    def test_xendesktop_policy_requires_scopes(self):
        policy = AdminPolicyModel(name="Read Only Administrator")

        with pytest.raises(InvalidConfigError) as exc_info:
            resolve_policy(policy, ACCESS_MODEL["policies"])

        assert "has no scopes" in exc_info.value.detail

    def test_ambiguous_policy_requires_service_name(self):
        policies = [
            {"name": "A", "displayName": "Viewer", "serviceName": "CAS"},
            {"name": "B", "displayName": "Viewer", "serviceName": "WEM"},
        ]

        with pytest.raises(InvalidConfigError):
            resolve_policy(AdminPolicyModel(name="Viewer"), policies)

        policy = AdminPolicyModel(name="Viewer", service_name="WEM")
        assert resolve_policy(policy, policies)["name"] == "B"

    def test_lookup_gives_up_after_the_configured_attempts(
        self, admin_user, mock_client, ok
    ):
        admin_user.policy_lookup_attempts = 3
        mock_client.execute_with_retry.side_effect = route(ok, [ACCEPTED_ADMIN])
        config = custom_config(policies=[AdminPolicyModel(name="Not There")])

        with pytest.raises(InvalidConfigError) as exc_info:
            admin_user._resolve_policies(config, CallContext())

        assert "policy with name: Not There not found" in exc_info.value.detail
        access_calls = [
            c
            for c in mock_client.execute_with_retry.call_args_list
            if c.args[2].endswith("/access")
        ]
        assert len(access_calls) == 3
        assert access_calls[0].args[2] == f"administrators/{SIGNED_IN_ADMIN}/access"

    def test_lookup_stops_when_cancelled(self, admin_user, mock_client, ok):
        admin_user.policy_lookup_interval = 30
        mock_client.execute_with_retry.side_effect = route(ok, [ACCEPTED_ADMIN])
        ctx = CallContext()
        ctx.cancel()
        diagnostics = Diagnostics()
        state = CloudAdminUserModel(
            admin_id=ADMIN_ID, access_type="Custom", email="jane@example.com"
        )
        config = custom_config(policies=[AdminPolicyModel(name="Not There")])

        admin_user.update(state, config, diagnostics, ctx)

        assert diagnostics.errors[0].summary == "Operation cancelled"
