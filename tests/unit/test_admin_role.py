from unittest.mock import call

import pytest

from ansible_citrix_adapter.client import ORCHESTRATION
from ansible_citrix_adapter.models import Diagnostics
from ansible_citrix_adapter.resources.daas.admin_role import (
    AdminRole,
    AdminRoleInfo,
    AdminRoleModel,
)

ROLE_ID = "7c7a1d0e-1b2f-4f0e-9a55-0f4f3b1e9e11"

REMOTE_ROLE = {
    "Id": ROLE_ID,
    "Name": "Help Desk",
    "Description": "First line support",
    "IsBuiltIn": False,
    "CanLaunchManage": True,
    "CanLaunchMonitor": False,
    "Permissions": [{"Id": "Director_DismissAlerts"}, {"Id": "Director_ResetVDisk"}],
}


@pytest.fixture
def role_config():
    return AdminRoleModel(
        name="Help Desk",
        description="First line support",
        can_launch_monitor=False,
        permissions={"Director_DismissAlerts", "Director_ResetVDisk"},
    )


class TestAdminRole:
    def test_create_posts_body_and_rereads_by_name(self, mock_client, role_config, ok):
        # Arrange
        mock_client.execute.return_value = ok(None, 201)
        mock_client.execute_with_retry.return_value = ok(REMOTE_ROLE)
        diagnostics = Diagnostics()

        # Act
        state = AdminRole(mock_client).create(role_config, diagnostics)

        # Assert
        assert len(diagnostics) == 0
        assert state.id == ROLE_ID
        assert state.is_built_in is False
        assert state.permissions == {"Director_DismissAlerts", "Director_ResetVDisk"}
        mock_client.execute.assert_called_once_with(
            "POST",
            ORCHESTRATION,
            "Admin/Roles",
            data={
                "Name": "Help Desk",
                "Description": "First line support",
                "Permissions": ["Director_DismissAlerts", "Director_ResetVDisk"],
                "CanLaunchManage": True,
                "CanLaunchMonitor": False,
            },
            ctx=None,
        )
        mock_client.execute_with_retry.assert_called_once_with(
            "GET", ORCHESTRATION, "Admin/Roles/Help%20Desk", ctx=None
        )

    def test_read_after_create_returns_the_same_state(
        self, mock_client, role_config, ok
    ):
        # Arrange
        mock_client.execute.return_value = ok(None, 201)
        mock_client.execute_with_retry.return_value = ok(REMOTE_ROLE)
        kind = AdminRole(mock_client)
        diagnostics = Diagnostics()

        # Act
        created = kind.create(role_config, diagnostics)
        reread = kind.read(created, diagnostics)

        # Assert
        assert len(diagnostics) == 0
        assert reread == created
        assert mock_client.execute_with_retry.call_args.args[2] == (
            f"Admin/Roles/{ROLE_ID}"
        )
        assert kind.changed_fields(reread, role_config) == {}

    def test_body_of_observed_role_reproduces_remote_fields(self, mock_client):
        body = AdminRole(mock_client)._body(AdminRoleModel.from_remote(REMOTE_ROLE))

        assert body == {
            "Name": REMOTE_ROLE["Name"],
            "Description": REMOTE_ROLE["Description"],
            "Permissions": ["Director_DismissAlerts", "Director_ResetVDisk"],
            "CanLaunchManage": REMOTE_ROLE["CanLaunchManage"],
            "CanLaunchMonitor": REMOTE_ROLE["CanLaunchMonitor"],
        }

    def test_from_remote_tolerates_role_without_permissions(self):
        role = AdminRoleModel.from_remote({"Id": ROLE_ID, "Name": "Empty"})

        assert role.id == ROLE_ID
        assert role.permissions == set()
        assert role.can_launch_manage is True
        assert role.description == ""

    def test_on_premises_body_omits_console_flags(self, on_premises_client, ok):
        on_premises_client.execute.return_value = ok()
        on_premises_client.execute_with_retry.return_value = ok(REMOTE_ROLE)
        config = AdminRoleModel(name="Help Desk", permissions={"Director_ResetVDisk"})

        AdminRole(on_premises_client).create(config, Diagnostics())

        body = on_premises_client.execute.call_args.kwargs["data"]
        assert "CanLaunchManage" not in body
        assert "CanLaunchMonitor" not in body

    def test_forbidden_create_removes_partial_role(
        self, mock_client, role_config, api_error, ok
    ):
        # Arrange
        mock_client.execute.side_effect = [api_error(403, "Forbidden", "tx-403"), ok()]
        mock_client.execute_with_retry.return_value = ok(REMOTE_ROLE)
        diagnostics = Diagnostics()

        # Act
        state = AdminRole(mock_client).create(role_config, diagnostics)

        # Assert
        assert state is None
        assert diagnostics.errors[0].summary == "Error creating Admin Role: Help Desk"
        assert diagnostics.errors[0].detail == (
            "TransactionId: tx-403\nError message: Forbidden"
        )
        assert mock_client.execute.call_args_list[1] == call(
            "DELETE", ORCHESTRATION, f"Admin/Roles/{ROLE_ID}", ctx=None
        )

    def test_forbidden_create_without_partial_role(
        self, mock_client, role_config, api_error
    ):
        mock_client.execute.side_effect = api_error(403, "Forbidden")
        mock_client.execute_with_retry.side_effect = api_error(404, "Not Found")
        diagnostics = Diagnostics()

        assert AdminRole(mock_client).create(role_config, diagnostics) is None

        assert len(diagnostics.errors) == 1
        assert mock_client.execute.call_count == 1

    def test_update_puts_body_and_rereads(self, mock_client, role_config, ok):
        mock_client.execute.return_value = ok()
        mock_client.execute_with_retry.return_value = ok(REMOTE_ROLE)
        state = AdminRoleModel.from_remote(REMOTE_ROLE)

        updated = AdminRole(mock_client).update(state, role_config, Diagnostics())

        assert updated.name == "Help Desk"
        assert mock_client.execute.call_args.args[:3] == (
            "PUT",
            ORCHESTRATION,
            f"Admin/Roles/{ROLE_ID}",
        )

    @pytest.mark.parametrize(
        "flags, expected",
        [
            ({"can_launch_manage": False}, ["CanLaunchManage"]),
            ({"can_launch_monitor": False}, ["CanLaunchMonitor"]),
            (
                {"can_launch_manage": False, "can_launch_monitor": False},
                ["CanLaunchManage", "CanLaunchMonitor"],
            ),
        ],
    )
    def test_on_premises_plan_rejects_disabled_console_flags(
        self, on_premises_client, flags, expected
    ):
        # Arrange
        config = AdminRoleModel(
            name="Help Desk", permissions={"Director_ResetVDisk"}, **flags
        )
        diagnostics = Diagnostics()

        # Act
        AdminRole(on_premises_client).modify_plan(config, None, diagnostics)

        # Assert
        assert [d.summary for d in diagnostics.errors] == expected
        assert diagnostics.errors[0].detail.endswith(
            "can only be set to true for On-Premise deployments. "
            "Please either set the attribute to true or remove it from the "
            "configuration and try again."
        )
        on_premises_client.execute.assert_not_called()
        on_premises_client.execute_with_retry.assert_not_called()

    def test_cloud_plan_accepts_disabled_console_flags(self, mock_client):
        config = AdminRoleModel(
            name="Help Desk",
            permissions={"Director_ResetVDisk"},
            can_launch_manage=False,
        )
        diagnostics = Diagnostics()

        AdminRole(mock_client).modify_plan(config, None, diagnostics)

        assert len(diagnostics) == 0

    def test_empty_permissions_are_invalid(self, mock_client):
        diagnostics = Diagnostics()

        AdminRole(mock_client).validate_config(
            {"name": "Help Desk", "permissions": []}, diagnostics
        )

        assert diagnostics.errors[0].summary == "Invalid Attribute Configuration"
        assert diagnostics.errors[0].detail.startswith("permissions:")


class TestAdminRoleInfo:
    def test_read_by_id(self, mock_client, ok):
        # Arrange
        mock_client.execute_with_retry.return_value = ok(REMOTE_ROLE)
        kind = AdminRoleInfo(mock_client)
        diagnostics = Diagnostics()

        # Act
        config = kind.validate_config({"id": ROLE_ID}, diagnostics)
        role = kind.read(config, diagnostics)

        # Assert
        assert len(diagnostics) == 0
        mock_client.execute_with_retry.assert_called_once_with(
            "GET", ORCHESTRATION, f"Admin/Roles/{ROLE_ID}", ctx=None
        )
        assert role.name == "Help Desk"
        assert role.description == "First line support"
        assert role.can_launch_monitor is False
        assert role.permissions == {"Director_DismissAlerts", "Director_ResetVDisk"}

    def test_read_by_name(self, mock_client, ok):
        mock_client.execute_with_retry.return_value = ok(REMOTE_ROLE)
        kind = AdminRoleInfo(mock_client)

        role = kind.read(AdminRoleInfo.model(name="Help Desk"), Diagnostics())

        assert mock_client.execute_with_retry.call_args.args[2] == (
            "Admin/Roles/Help%20Desk"
        )
        assert role.id == ROLE_ID

    @pytest.mark.parametrize(
        "raw_config", [{}, {"id": ROLE_ID, "name": "Help Desk"}]
    )
    def test_exactly_one_lookup_option(self, mock_client, raw_config):
        diagnostics = Diagnostics()

        config = AdminRoleInfo(mock_client).validate_config(raw_config, diagnostics)

        assert config is None
        assert diagnostics.errors[0].summary == "Invalid Attribute Combination"
        assert diagnostics.errors[0].detail == (
            "Exactly one of `id` and `name` must be specified."
        )

    def test_unknown_role_is_reported(self, mock_client, api_error):
        mock_client.execute_with_retry.side_effect = api_error(
            404, "Object does not exist", "tx-404"
        )
        diagnostics = Diagnostics()

        role = AdminRoleInfo(mock_client).read(
            AdminRoleInfo.model(name="Nobody"), diagnostics
        )

        assert role is None
        assert diagnostics.errors[0].summary == "Error reading Admin Role"
        assert diagnostics.errors[0].detail == (
            "TransactionId: tx-404\nError message: Object does not exist"
        )
