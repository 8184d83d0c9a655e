"""
Renders one thin Ansible module per registered resource kind.

Each generated module only holds its documentation and a call to
``run_module`` with the kind class; all behaviour stays in this package.
"""

import inspect
import os
import sys
from typing import Any, Dict, List, Type

import yaml
from jinja2 import Environment, FileSystemLoader

from .helpers import AUTH_FIXTURE, AUTH_OPTIONS
from .interfaces.resource import BaseDataSource, BaseKind, BaseResource
from .interfaces.runner import documented_argument_spec, required_if_present

DEFAULT_TEMPLATE_DIR = os.path.join(
    os.path.dirname(os.path.abspath(__file__)), "templates"
)
MODULE_PREFIX = "citrix_"

# Keys that are valid for an option in the DOCUMENTATION block.
VALID_DOC_KEYS = {
    "description",
    "required",
    "type",
    "default",
    "choices",
    "no_log",
    "suboptions",
    "elements",
}

REQUIRED_WHEN_PRESENT = "Required when I(state=present)."


def module_name_for(kind_class: Type[BaseKind]) -> str:
    return f"{MODULE_PREFIX}{kind_class.type_name}"


def documentation_options(spec: Dict[str, dict]) -> Dict[str, dict]:
    """
    Converts an argument spec into DOCUMENTATION options: nested ``options``
    become ``suboptions`` and every option gets a description.
    """
    options = {}
    for name, option in spec.items():
        doc = {}
        for key, value in option.items():
            if key == "options":
                doc["suboptions"] = documentation_options(value)
            elif key in VALID_DOC_KEYS:
                if key == "choices" and not value:
                    continue
                doc[key] = value
        doc.setdefault("description", name.replace("_", " ").capitalize() + ".")
        options[name] = doc
    return options


class Generator:
    """Orchestrates rendering of the module files."""

    def __init__(
        self, kinds: Dict[str, Type[BaseKind]], template_dir: str = DEFAULT_TEMPLATE_DIR
    ):
        """
        Args:
            kinds: Resource kind classes keyed by type name.
            template_dir: Path to the directory with Jinja2 templates.
        """
        self.kinds = kinds
        self.jinja_env = Environment(
            loader=FileSystemLoader(template_dir), trim_blocks=True, lstrip_blocks=True
        )

    def build_documentation(self, kind_class: Type[BaseKind]) -> Dict[str, Any]:
        module_name = module_name_for(kind_class)
        summary = (inspect.getdoc(kind_class) or "").split("\n\n")[0].replace("\n", " ")
        if issubclass(kind_class, BaseDataSource):
            short_description = f"Get facts about {kind_class.display_name}"
        else:
            short_description = f"Manage {kind_class.display_name} resources."

        description = [summary] if summary else []
        if (
            issubclass(kind_class, BaseResource)
            and len(kind_class.identifier_fields) > 1
        ):
            description.append(
                "Existing objects are adopted with import_id in the format "
                f"{','.join(kind_class.identifier_fields)}."
            )

        options = documentation_options(documented_argument_spec(kind_class))
        for _, _, names in required_if_present(kind_class):
            for name in names:
                option = options[name]
                option["description"] += f" {REQUIRED_WHEN_PRESENT}"
        return {
            "module": module_name,
            "short_description": short_description,
            "description": description,
            "options": options,
            "requirements": ["python >= 3.10"],
        }

    def build_examples(self, kind_class: Type[BaseKind]) -> List[dict]:
        module_name = module_name_for(kind_class)
        base = {k: v for k, v in AUTH_FIXTURE.items() if k in AUTH_OPTIONS}
        if issubclass(kind_class, BaseDataSource):
            lookup = {
                name: f"<{name}>"
                for name, option in kind_class.argument_spec().items()
                if option.get("required")
            }
            if kind_class.lookup_fields:
                name = kind_class.lookup_fields[-1]
                lookup.setdefault(name, f"<{name}>")
            return [
                {
                    "name": f"Read {kind_class.display_name}",
                    module_name: dict(base, **lookup),
                }
            ]

        examples = []
        if len(kind_class.identifier_fields) == 1:
            import_id = f"<{kind_class.identifier_fields[0]}>"
        else:
            import_id = ",".join(f"<{name}>" for name in kind_class.identifier_fields)
        desired = {
            name: f"<{name}>"
            for _, _, names in required_if_present(kind_class)
            for name in names
        }
        examples.append(
            {
                "name": f"Adopt an existing {kind_class.display_name}",
                module_name: dict(
                    base, state="present", import_id=import_id, **desired
                ),
            }
        )
        examples.append(
            {
                "name": f"Remove an existing {kind_class.display_name}",
                module_name: dict(base, state="absent", import_id=import_id),
            }
        )
        return examples

    def build_return(self, kind_class: Type[BaseKind]) -> Dict[str, Any]:
        contains = {
            name: {
                "description": field.description
                or name.replace("_", " ").capitalize() + "."
            }
            for name, field in kind_class.model.model_fields.items()
        }
        return {
            "resource": {
                "description": f"The {kind_class.display_name} after the operation. "
                "Null when it was removed.",
                "type": "dict",
                "returned": "always",
                "contains": contains,
            }
        }

    def render(self, kind_class: Type[BaseKind]) -> str:
        def dump(block):
            return yaml.safe_dump(block, sort_keys=False)

        context = {
            "module_name": module_name_for(kind_class),
            "kind_module": kind_class.__module__,
            "kind_class": kind_class.__name__,
            "documentation": dump(self.build_documentation(kind_class)),
            "examples": dump(self.build_examples(kind_class)),
            "return_block": dump(self.build_return(kind_class)),
        }
        return self.jinja_env.get_template("resource_module.py.j2").render(context)

    def generate(self, output_dir: str) -> List[str]:
        """
        Renders every registered kind into ``output_dir``.

        A kind that fails to render is reported on stderr and skipped; the
        others are still generated.

        Returns:
            The paths of the generated files.
        """
        os.makedirs(output_dir, exist_ok=True)
        generated = []
        for type_name in sorted(self.kinds):
            kind_class = self.kinds[type_name]
            try:
                rendered = self.render(kind_class)
            except Exception as e:
                print(
                    "\nAn unexpected error occurred while processing kind "
                    f"'{type_name}': {e}",
                    file=sys.stderr,
                )
                continue

            output_path = os.path.join(output_dir, f"{module_name_for(kind_class)}.py")
            with open(output_path, "w") as f:
                f.write(rendered)
            print(f"Successfully generated module: {output_path}")
            generated.append(output_path)
        return generated
