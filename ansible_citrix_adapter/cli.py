#!/usr/bin/env python

import argparse
import json
import logging
import os
import sys

from .generator import Generator
from .interfaces.resource import BaseResource
from .models import Diagnostics
from .plugin_manager import ResourceRegistry

DEFAULT_OUTPUT_DIR = os.path.join(os.getcwd(), "outputs")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="citrix-adapter",
        description="Ansible modules for Citrix DaaS, Citrix Cloud, WEM and "
        "StoreFront.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Log resource kind discovery."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    generate = subparsers.add_parser(
        "generate",
        help="Render one Ansible module per registered resource kind.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    generate.add_argument(
        "--output-dir",
        default=DEFAULT_OUTPUT_DIR,
        help="Directory to save the generated Ansible modules.",
    )

    parse_import_id = subparsers.add_parser(
        "parse-import-id",
        help="Check an import identifier and print the identifier attributes "
        "it maps to.",
    )
    parse_import_id.add_argument(
        "--type", required=True, dest="type_name", help="Resource kind type name."
    )
    parse_import_id.add_argument(
        "import_id", help="The identifier, comma separated for composite keys."
    )
    return parser


def generate_command(registry: ResourceRegistry, args) -> int:
    generator = Generator(registry.kinds)
    generated = generator.generate(output_dir=args.output_dir)
    print("\nGeneration complete.")
    return 0 if len(generated) == len(registry.kinds) else 1


def parse_import_id_command(registry: ResourceRegistry, args) -> int:
    kind_class = registry.get_kind(args.type_name)
    if kind_class is None or not issubclass(kind_class, BaseResource):
        known = ", ".join(
            name
            for name in registry.type_names()
            if issubclass(registry.get_kind(name), BaseResource)
        )
        print(
            f"Unknown resource type '{args.type_name}'. Known types: {known}",
            file=sys.stderr,
        )
        return 2

    # Parsing an identifier is local; no client is needed.
    diagnostics = Diagnostics()
    identifiers = kind_class(None).import_state(args.import_id, diagnostics)
    if identifiers is None:
        for error in diagnostics.errors:
            print(f"{error.summary}: {error.detail}", file=sys.stderr)
        return 1
    print(json.dumps(identifiers, indent=2))
    return 0


def main(argv=None) -> int:
    """
    Main function to parse command-line arguments and run the requested command.
    """
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING)

    registry = ResourceRegistry()
    if args.command == "generate":
        return generate_command(registry, args)
    return parse_import_id_command(registry, args)


if __name__ == "__main__":
    sys.exit(main())
