from typing import Optional, Type

from ansible.module_utils.basic import AnsibleModule

from ansible_citrix_adapter.client import STOREFRONT, CitrixClient
from ansible_citrix_adapter.config import ProviderConfig
from ansible_citrix_adapter.helpers import AUTH_OPTIONS, LIFECYCLE_OPTIONS
from ansible_citrix_adapter.interfaces.resource import BaseDataSource, BaseResource
from ansible_citrix_adapter.models import CallContext, Diagnostics


class BaseRunner:
    """
    Abstract base class for all module runners.
    It handles common initialization tasks, such as building the provider
    settings and the API client, and reporting diagnostics back to Ansible.
    """

    def __init__(
        self, module: AnsibleModule, kind_class, client: Optional[CitrixClient] = None
    ):
        """
        Initializes the runner.

        Args:
            module: The AnsibleModule instance.
            kind_class: The resource or data source class the module manages.
            client: An already configured client. Built from the module
                parameters when omitted.
        """
        self.module = module
        self.diagnostics = Diagnostics()
        self.has_changed = False
        self.resource = None
        self.ctx = CallContext.with_timeout(
            module.params.get("timeout") or LIFECYCLE_OPTIONS["timeout"]["default"]
        )

        if client is None:
            client = self._build_client(kind_class)
        self.kind = kind_class(client) if client is not None else None

    def _build_client(self, kind_class) -> Optional[CitrixClient]:
        try:
            config = ProviderConfig.from_sources(
                params=self.module.params,
                config_file=self.module.params.get("config_file"),
            )
        except ValueError as e:
            self.module.fail_json(msg=f"Invalid provider configuration: {e}")
            return None

        if kind_class.service != STOREFRONT:
            self.diagnostics.extend(config.validate_settings())
        return CitrixClient(config)

    def run(self):
        """
        The main execution method for the runner.
        This method should be implemented by all subclasses.
        """
        raise NotImplementedError

    def _raw_config(self) -> dict:
        """Module parameters of the kind's model. Unset values are dropped."""
        return {
            name: self.module.params[name]
            for name in self.kind.model.model_fields
            if self.module.params.get(name) is not None
        }

    def _fail_on_errors(self) -> bool:
        """Reports every error collected so far. Returns True when the module failed."""
        if not self.diagnostics.has_error:
            return False
        self._emit_warnings()
        first = self.diagnostics.errors[0]
        msg = f"{first.summary}: {first.detail}" if first.detail else first.summary
        self.module.fail_json(
            msg=msg,
            diagnostics=[d.to_dict() for d in self.diagnostics.items],
        )
        return True

    def _emit_warnings(self):
        for warning in self.diagnostics.warnings:
            self.module.warn(f"{warning.summary}: {warning.detail}")

    def exit(self):
        """
        Formats the final state and exits the module.
        """
        self._emit_warnings()
        if self.resource is not None:
            resource = self.resource.model_dump(mode="json")
        else:
            resource = None
        self.module.exit_json(changed=self.has_changed, resource=resource)


class LifecycleRunner(BaseRunner):
    """
    Drives one managed object through its lifecycle from module parameters.

    Ansible keeps no state between runs, so the observed state is obtained on
    every run, either by adopting an explicit ``import_id`` or by locating the
    object from the configuration. The runner then creates, updates or deletes
    it to match ``state``.
    """

    def run(self):
        if self.kind is None or self._fail_on_errors():
            return

        present = self.module.params["state"] == "present"

        # Step 1: Validate the configuration locally. Removing an object named
        # by import_id needs no configuration at all.
        config = None
        if present or not self.module.params.get("import_id"):
            config = self.kind.validate_config(self._raw_config(), self.diagnostics)
            if self._fail_on_errors():
                return

        # Step 2: Reject plans the deployment cannot carry out, before any remote call.
        self.kind.modify_plan(
            config if present else None, None, self.diagnostics, self.ctx
        )
        if self._fail_on_errors():
            return

        # Step 3: Determine the current state of the resource.
        self.check_existence(config)
        if self._fail_on_errors():
            return

        # Step 4: If in check mode, predict changes without making them.
        if self.module.check_mode:
            self.handle_check_mode(config)
            self.exit()
            return

        # Step 5: Execute actions based on current state and desired state.
        if present:
            if self.resource is None:
                self.create(config)
            else:
                self.update(config)
        elif self.resource is not None:
            self.delete()

        if self._fail_on_errors():
            return

        # Step 6: Exit the module with the final state.
        self.exit()

    def check_existence(self, config):
        """
        Looks up the existing object, by import identifier when one is given,
        otherwise from the configuration.
        """
        import_id = self.module.params.get("import_id")
        if import_id:
            identifiers = self.kind.import_state(import_id, self.diagnostics)
            if identifiers is None:
                return
            self.resource = self.kind.read(
                self.kind.state_from_identifier(identifiers), self.diagnostics, self.ctx
            )
            if self.resource is not None:
                self.resource = self.resource.copy_through(
                    config, self.kind.write_only_fields
                )
        else:
            self.resource = self.kind.locate(config, self.diagnostics, self.ctx)

    def create(self, config):
        self.resource = self.kind.create(config, self.diagnostics, self.ctx)
        self.has_changed = self.resource is not None

    def update(self, config):
        if not self.kind.changed_fields(self.resource, config):
            return
        updated = self.kind.update(self.resource, config, self.diagnostics, self.ctx)
        if updated is not None:
            self.resource = updated
            self.has_changed = True

    def delete(self):
        if self.kind.delete(self.resource, self.diagnostics, self.ctx):
            self.has_changed = True
            self.resource = None

    def handle_check_mode(self, config):
        """
        Predicts changes for Ansible's --check mode without making any API calls.
        """
        state = self.module.params["state"]
        if state == "present" and self.resource is None:
            self.has_changed = True  # Predicts creation.
        elif state == "absent" and self.resource is not None:
            self.has_changed = True  # Predicts deletion.
        elif state == "present":
            self.has_changed = bool(self.kind.changed_fields(self.resource, config))


class DataSourceRunner(BaseRunner):
    """Reads a data source and returns it without changing anything."""

    def run(self):
        if self.kind is None or self._fail_on_errors():
            return

        config = self.kind.validate_config(self._raw_config(), self.diagnostics)
        if self._fail_on_errors():
            return

        self.resource = self.kind.read(config, self.diagnostics, self.ctx)
        if self._fail_on_errors():
            return
        self.exit()


def documented_argument_spec(kind_class) -> dict:
    """
    Connection options, lifecycle options and the kind's own options, with
    descriptions.

    A managed kind's options are never required by Ansible itself: removing
    or adopting an object through ``import_id`` needs none of them. The
    rules returned by ``required_if_present`` enforce them for
    ``state: present``.
    """
    spec = dict(AUTH_OPTIONS)
    if issubclass(kind_class, BaseResource):
        spec.update(LIFECYCLE_OPTIONS)
        for name, option in kind_class.argument_spec().items():
            spec[name] = dict(option, required=False)
    else:
        spec["timeout"] = LIFECYCLE_OPTIONS["timeout"]
        spec.update(kind_class.argument_spec())
    return spec


def required_if_present(kind_class) -> list:
    """Rules making the kind's required options mandatory for ``state: present``."""
    if not issubclass(kind_class, BaseResource):
        return []
    names = [
        name
        for name, option in kind_class.argument_spec().items()
        if option.get("required")
    ]
    return [("state", "present", names)] if names else []


def module_argument_spec(kind_class) -> dict:
    """The argument spec handed to AnsibleModule, without documentation keys."""
    return _strip_descriptions(documented_argument_spec(kind_class))


def _strip_descriptions(spec: dict) -> dict:
    stripped = {}
    for name, option in spec.items():
        option = {k: v for k, v in option.items() if k != "description"}
        if "options" in option:
            option["options"] = _strip_descriptions(option["options"])
        stripped[name] = option
    return stripped


def run_module(kind_class: Type):
    """Entry point of every generated module."""
    module = AnsibleModule(
        argument_spec=module_argument_spec(kind_class),
        required_if=required_if_present(kind_class),
        supports_check_mode=True,
    )
    if issubclass(kind_class, BaseDataSource):
        runner_class = DataSourceRunner
    else:
        runner_class = LifecycleRunner
    runner = runner_class(module, kind_class)
    runner.run()
