"""
Schema CLI tool for docshape.

This tool compiles and inspects schema descriptors:
- compile: Compile a YAML/JSON descriptor file and print tree + features
- tokens: List the shorthand token table
- template: Compile a built-in template

Usage:
    docshape compile user.yaml --name User
    docshape tokens
    docshape template product --format yaml

Descriptor files hold either a bare descriptor or a document of the form:

    name: User
    options:
      timestamps: true
    fields:
      name: string!
      email: email!!

Invariants:
    - Malformed descriptors exit with code 1 and a message on stderr
    - Output is deterministic for the same input

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep output format stable for CI parsing
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Optional

import yaml

from ..config import get_settings, setup_logging
from ..errors import SchemaDefinitionError
from ..registry import ModelRegistry
from ..runtime import InMemoryRuntime
from ..schema.tokens import TOKEN_TABLE, known_tokens
from ..templates import get_template, template_names

logger = logging.getLogger(__name__)


class SchemaCLI:
    """CLI tool for schema inspection.

    Example:
        >>> cli = SchemaCLI()
        >>> print(cli.compile({"title": "string!"}, name="Post"))
    """

    def __init__(self, output_format: str = "json") -> None:
        self.output_format = output_format
        self.registry = ModelRegistry(InMemoryRuntime(), settings=get_settings())

    def render(self, data: Any) -> str:
        if self.output_format == "yaml":
            return yaml.dump(data, default_flow_style=False, sort_keys=False)
        return json.dumps(data, indent=2)

    def compile(
        self,
        descriptor: Mapping[str, Any],
        name: str = "Model",
        options: Optional[Mapping[str, Any]] = None,
    ) -> str:
        """Compile and synthesize a descriptor.

        Raises:
            SchemaDefinitionError: If the descriptor is malformed
        """
        entry = self.registry.register_or_get(name, descriptor, options)
        return self.render(entry.to_dict())

    def tokens(self) -> str:
        table = {token: TOKEN_TABLE[token].to_dict() for token in known_tokens()}
        return self.render(table)

    def template(self, name: str) -> str:
        return self.compile(get_template(name), name=name.capitalize())


def load_descriptor(path: str) -> tuple[Optional[str], dict[str, Any], Optional[dict[str, Any]]]:
    """Load a descriptor file.

    Returns:
        Tuple of (name, fields, options); name and options may be None

    Raises:
        SchemaDefinitionError: If the file is not a mapping
    """
    text = Path(path).read_text()
    if path.endswith(".json"):
        data = json.loads(text)
    else:
        data = yaml.safe_load(text)

    if not isinstance(data, dict):
        raise SchemaDefinitionError(f"{path} must contain a mapping")
    if isinstance(data.get("fields"), dict):
        return data.get("name"), data["fields"], data.get("options")
    return None, data, None


def main(argv: Optional[list[str]] = None) -> None:
    """CLI entry point for schema tool."""
    parser = argparse.ArgumentParser(description="docshape schema tool")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # compile command
    compile_parser = subparsers.add_parser("compile", help="Compile a descriptor file")
    compile_parser.add_argument("file", help="YAML or JSON descriptor file")
    compile_parser.add_argument("--name", help="Model name (default: from file or 'Model')")
    compile_parser.add_argument(
        "--format", choices=["json", "yaml"], default="json", help="Output format"
    )

    # tokens command
    tokens_parser = subparsers.add_parser("tokens", help="List shorthand tokens")
    tokens_parser.add_argument(
        "--format", choices=["json", "yaml"], default="json", help="Output format"
    )

    # template command
    template_parser = subparsers.add_parser("template", help="Compile a built-in template")
    template_parser.add_argument("name", choices=template_names(), help="Template name")
    template_parser.add_argument(
        "--format", choices=["json", "yaml"], default="json", help="Output format"
    )

    args = parser.parse_args(argv)
    setup_logging()
    cli = SchemaCLI(output_format=args.format)

    try:
        if args.command == "compile":
            file_name, fields, options = load_descriptor(args.file)
            print(cli.compile(fields, name=args.name or file_name or "Model", options=options))
        elif args.command == "tokens":
            print(cli.tokens())
        elif args.command == "template":
            print(cli.template(args.name))
    except SchemaDefinitionError as e:
        print(f"Schema error: {e.message}", file=sys.stderr)
        sys.exit(1)

    sys.exit(0)


if __name__ == "__main__":
    main()
