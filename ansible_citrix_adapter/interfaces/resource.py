import contextlib
import logging
import threading
import types
import typing
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Optional, Type

from pydantic import BaseModel, ValidationError

from ansible_citrix_adapter.client import ORCHESTRATION, CitrixClient
from ansible_citrix_adapter.errors import (
    AdapterError,
    ApiError,
    ConfigurationError,
    InvalidConfigError,
    NotFoundError,
)
from ansible_citrix_adapter.helpers import (
    INVALID_IMPORT_IDENTIFIER,
    MISSING_CREDENTIALS_DETAIL,
    PROVIDER_INITIALIZATION_ERROR,
    PYTHON_TO_ANSIBLE_TYPE_MAP,
    is_not_found_message,
    split_import_id,
)
from ansible_citrix_adapter.interfaces.state import BaseState
from ansible_citrix_adapter.models import CallContext, Diagnostics

logger = logging.getLogger(__name__)

DEFAULT_API_ERROR_SUMMARY = "Error calling Citrix API"


def is_not_found(error: AdapterError) -> bool:
    """Whether ``error`` means the remote object no longer exists."""
    if isinstance(error, NotFoundError):
        return True
    if isinstance(error, ApiError):
        return error.status_code == 404 or is_not_found_message(error.message)
    return False


class BaseKind(ABC):
    """Attributes and helpers shared by resources and data sources."""

    # Unique name of the kind, used for registration and module names.
    type_name: str = ""

    # Human readable name used in diagnostics.
    display_name: str = ""

    # Pydantic model describing both configuration and state.
    model: Type[BaseState] = BaseState

    # Service the kind talks to.
    service: str = ORCHESTRATION

    # Deployment-mode restrictions enforced by modify_plan.
    cloud_only: bool = False
    on_premises_only: bool = False
    cloud_only_message: str = ""
    on_premises_only_message: str = ""

    def __init__(self, client: CitrixClient):
        self.client = client

    @property
    def is_on_premises(self) -> bool:
        return self.client.config.is_on_premises

    def _report(self, error: AdapterError, summary: str, diagnostics: Diagnostics):
        if isinstance(error, ApiError) and error.summary == DEFAULT_API_ERROR_SUMMARY:
            error = error.with_summary(summary)
        logger.debug("%s: %s", error.summary, error.detail)
        diagnostics.append(error.to_diagnostic())

    def validate_config(
        self, raw_config: Dict[str, Any], diagnostics: Diagnostics
    ) -> Optional[BaseState]:
        """
        Checks the configuration locally, without any remote call.

        Structural problems reported by the model come first; the kind's own
        rules run only on a structurally valid configuration.

        Returns:
            The parsed configuration, or ``None`` when an error was reported.
        """
        try:
            config = self.model.model_validate(raw_config)
        except ValidationError as e:
            for err in e.errors():
                location = ".".join(str(part) for part in err["loc"]) or self.type_name
                diagnostics.add_error(
                    "Invalid Attribute Configuration", f"{location}: {err['msg']}"
                )
            return None

        before = len(diagnostics.errors)
        for error in self._validate(config):
            diagnostics.append(error.to_diagnostic())
        return config if len(diagnostics.errors) == before else None

    def _validate(self, config: BaseState) -> Iterable[InvalidConfigError]:
        """Yields one error per violated rule. No rules by default."""
        return ()

    def check_deployment(self, diagnostics: Diagnostics) -> bool:
        """Rejects an uninitialised client or an unsupported deployment mode."""
        if not self.client.is_initialized(self.service):
            error = ConfigurationError(
                PROVIDER_INITIALIZATION_ERROR, MISSING_CREDENTIALS_DETAIL
            )
            diagnostics.append(error.to_diagnostic())
            return False
        summary = f"Error managing {self.display_name}"
        if self.cloud_only and self.is_on_premises:
            diagnostics.add_error(summary, self.cloud_only_message)
            return False
        if self.on_premises_only and not self.is_on_premises:
            diagnostics.add_error(summary, self.on_premises_only_message)
            return False
        return True

    @classmethod
    def argument_spec(cls) -> Dict[str, dict]:
        """Ansible argument spec derived from the kind's model."""
        computed = getattr(cls, "computed_fields", ())
        return build_argument_spec(cls.model, exclude=computed)


class BaseResource(BaseKind):
    """
    The lifecycle contract every managed kind implements.

    Public methods are template methods: they hold the kind's lock when one is
    required, call the kind's private hooks and turn every raised
    ``AdapterError`` into exactly one diagnostic. Hooks therefore only raise.
    """

    # Fields forming the identifier, in import order.
    identifier_fields: tuple = ("id",)

    # Server-computed fields; never sent and never compared for updates.
    computed_fields: tuple = ("id",)

    # Accepted by the API but not returned by it.
    write_only_fields: tuple = ()

    # Serialize create/read/update/delete of this kind across the process.
    serialize_operations: bool = False

    _operation_lock: Optional[threading.Lock] = None

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        if cls.serialize_operations and "_operation_lock" not in cls.__dict__:
            cls._operation_lock = threading.Lock()

    def _locked(self):
        if self.serialize_operations and self._operation_lock is not None:
            return self._operation_lock
        return contextlib.nullcontext()

    def identifier(self, state: BaseState) -> str:
        return ",".join(
            str(getattr(state, name, "") or "") for name in self.identifier_fields
        )

    def state_from_identifier(self, identifiers: Dict[str, Any]) -> BaseState:
        """A partial state carrying only identifier values, as produced by an import."""
        return self.model.model_construct(**identifiers)

    # --- lifecycle operations ---------------------------------------------

    def create(
        self, config: BaseState, diagnostics: Diagnostics, ctx: CallContext = None
    ) -> Optional[BaseState]:
        summary = f"Error creating {self.display_name}"
        try:
            with self._locked():
                state = self._create(config, ctx)
        except AdapterError as e:
            self._report(e, summary, diagnostics)
            return None

        if not self._is_identified(state):
            diagnostics.add_error(
                summary,
                f"The API did not return {', '.join(self.identifier_fields)} "
                f"for the new {self.display_name}. Re-running the operation is safe.",
            )
            return None
        return state.copy_through(config, self.write_only_fields)

    def read(
        self, state: BaseState, diagnostics: Diagnostics, ctx: CallContext = None
    ) -> Optional[BaseState]:
        """
        Refreshes ``state`` from the remote object.

        Returns ``None`` with a warning when the object is gone, so the caller
        can drop it instead of failing.
        """
        identifier = self.identifier(state)
        try:
            with self._locked():
                remote = self._read(state, ctx)
        except AdapterError as e:
            if is_not_found(e):
                diagnostics.add_warning(
                    f"{self.display_name} not found",
                    f"{self.display_name} {identifier} was not found and will be "
                    "removed from the state file. "
                    "An apply action will result in the creation of a new resource.",
                )
                return None
            summary = f"Error reading {self.display_name} {identifier}"
            self._report(e, summary, diagnostics)
            return None
        return remote.copy_through(state, self.write_only_fields)

    def update(
        self,
        state: BaseState,
        config: BaseState,
        diagnostics: Diagnostics,
        ctx: CallContext = None,
    ) -> Optional[BaseState]:
        identifier = self.identifier(state)
        try:
            with self._locked():
                updated = self._update(state, config, ctx)
        except AdapterError as e:
            summary = f"Error updating {self.display_name} {identifier}"
            self._report(e, summary, diagnostics)
            return None
        return updated.copy_through(config, self.write_only_fields)

    def delete(
        self, state: BaseState, diagnostics: Diagnostics, ctx: CallContext = None
    ) -> bool:
        """Deletes the remote object. An object already gone counts as deleted."""
        identifier = self.identifier(state)
        try:
            with self._locked():
                self._delete(state, ctx)
        except AdapterError as e:
            if is_not_found(e):
                logger.info("%s %s was already deleted", self.display_name, identifier)
                return True
            summary = f"Error deleting {self.display_name} {identifier}"
            self._report(e, summary, diagnostics)
            return False
        return True

    def import_state(
        self, import_id: str, diagnostics: Diagnostics
    ) -> Optional[Dict[str, Any]]:
        """Parses an operator supplied identifier into identifier attributes."""
        try:
            parts = split_import_id(import_id or "", list(self.identifier_fields))
        except ValueError:
            diagnostics.add_error(
                INVALID_IMPORT_IDENTIFIER,
                f"Expected format: `{','.join(self.identifier_fields)}`, "
                f'got: "{import_id}"',
            )
            return None

        identifiers = {}
        try:
            for name, value in parts.items():
                identifiers[name] = self._parse_import_field(name, value)
        except AdapterError as e:
            diagnostics.append(e.to_diagnostic())
            return None
        return identifiers

    def modify_plan(
        self,
        config: Optional[BaseState],
        prior: Optional[BaseState],
        diagnostics: Diagnostics,
        ctx: CallContext = None,
    ) -> None:
        """
        Last check before changes are applied.

        ``config`` is ``None`` when the object is being destroyed.
        """
        if not self.check_deployment(diagnostics):
            return
        if config is None:
            return
        try:
            for error in self._modify_plan(config, prior, ctx):
                diagnostics.append(error.to_diagnostic())
        except AdapterError as e:
            self._report(e, f"Error planning {self.display_name}", diagnostics)

    def locate(
        self, config: BaseState, diagnostics: Diagnostics, ctx: CallContext = None
    ) -> Optional[BaseState]:
        """
        Finds the remote object matching ``config``, or ``None`` when absent.

        Used to obtain the observed state when no prior state is held, and as
        the pre-query of conflict checks.
        """
        try:
            with self._locked():
                remote = self._locate(config, ctx)
        except AdapterError as e:
            if is_not_found(e):
                return None
            self._report(e, f"Error reading {self.display_name}", diagnostics)
            return None
        if remote is None:
            return None
        return remote.copy_through(config, self.write_only_fields)

    def changed_fields(self, observed: BaseState, config: BaseState) -> Dict[str, Any]:
        """The configured values that differ from the observed state."""
        computed = set(self.computed_fields)
        desired = config.model_dump(exclude_none=True, exclude=computed)
        current = observed.model_dump(exclude=computed)
        return {
            name: value for name, value in desired.items() if current.get(name) != value
        }

    # --- hooks ------------------------------------------------------------

    @abstractmethod
    def _create(self, config: BaseState, ctx: CallContext) -> BaseState:
        ...

    @abstractmethod
    def _read(self, state: BaseState, ctx: CallContext) -> BaseState:
        """Raises ``NotFoundError`` when the object is gone."""
        ...

    @abstractmethod
    def _update(
        self, state: BaseState, config: BaseState, ctx: CallContext
    ) -> BaseState:
        ...

    @abstractmethod
    def _delete(self, state: BaseState, ctx: CallContext) -> None:
        ...

    def _locate(self, config: BaseState, ctx: CallContext) -> Optional[BaseState]:
        if all(getattr(config, name, None) for name in self.identifier_fields):
            return self._read(config, ctx)
        return None

    def _modify_plan(
        self, config: BaseState, prior: Optional[BaseState], ctx: CallContext
    ) -> Iterable[AdapterError]:
        return ()

    def _parse_import_field(self, name: str, value: str) -> Any:
        return value

    def _is_identified(self, state: BaseState) -> bool:
        """Whether a freshly created object can be addressed again."""
        return all(getattr(state, name, None) for name in self.identifier_fields)


class BaseDataSource(BaseKind):
    """A read-only kind."""

    # Options that can each identify the object to read; exactly one is given
    # when there are several.
    lookup_fields: tuple = ()

    def _validate(self, config):
        if len(self.lookup_fields) < 2:
            return
        given = [
            name for name in self.lookup_fields if getattr(config, name) is not None
        ]
        if len(given) != 1:
            names = " and ".join(f"`{name}`" for name in self.lookup_fields)
            yield InvalidConfigError(
                "Invalid Attribute Combination",
                f"Exactly one of {names} must be specified.",
            )

    def read(
        self, config: BaseState, diagnostics: Diagnostics, ctx: CallContext = None
    ) -> Optional[BaseState]:
        if not self.check_deployment(diagnostics):
            return None
        try:
            return self._read(config, ctx)
        except AdapterError as e:
            self._report(e, f"Error reading {self.display_name}", diagnostics)
            return None

    @abstractmethod
    def _read(self, config: BaseState, ctx: CallContext) -> BaseState:
        ...


def _ansible_option(annotation) -> dict:
    option: Dict[str, Any] = {}
    origin = typing.get_origin(annotation)
    args = [a for a in typing.get_args(annotation) if a is not type(None)]

    if origin is typing.Union or origin is types.UnionType:
        return _ansible_option(args[0]) if len(args) == 1 else {"type": "raw"}
    if origin is typing.Literal:
        option["type"] = "str"
        option["choices"] = list(typing.get_args(annotation))
        return option
    if origin in (list, set, frozenset, tuple):
        option["type"] = "list"
        if args:
            element = _ansible_option(args[0])
            option["elements"] = element.get("type", "raw")
            if "options" in element:
                option["options"] = element["options"]
            if "choices" in element:
                option["choices"] = element["choices"]
        return option
    if origin is dict:
        return {"type": "dict"}
    if isinstance(annotation, type) and issubclass(annotation, BaseModel):
        return {"type": "dict", "options": build_argument_spec(annotation)}
    name = getattr(annotation, "__name__", "raw")
    return {"type": PYTHON_TO_ANSIBLE_TYPE_MAP.get(name, "raw")}


def build_argument_spec(
    model: Type[BaseModel], exclude: Iterable[str] = ()
) -> Dict[str, dict]:
    """Maps the fields of a pydantic model onto Ansible module options."""
    spec = {}
    for name, field in model.model_fields.items():
        if name in exclude:
            continue
        option = _ansible_option(field.annotation)
        option["required"] = field.is_required()
        if field.description:
            option["description"] = field.description
        if (field.json_schema_extra or {}).get("no_log"):
            option["no_log"] = True
        spec[name] = option
    return spec
