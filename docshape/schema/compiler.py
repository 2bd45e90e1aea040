"""
Schema compiler for docshape.

Walks a full schema descriptor (mapping of field name to raw entry),
normalizes each field and assembles a canonical SchemaTree with the
schema-level defaults applied.

Invariants:
    - Field order of the descriptor is preserved in the tree
    - Timestamp fields are appended unless disabled or already declared
    - Compilation is synchronous, pure and raises SchemaDefinitionError
      for any malformed input

Example:
    >>> tree = compile_schema({"name": "string!", "email": "email!!", "age": "number?"})
    >>> tree.field_names()
    ['name', 'email', 'age', 'createdAt', 'updatedAt']
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Optional, Union

from ..config import Settings, get_settings
from ..errors import SchemaDefinitionError
from .normalizer import normalize, validate_field_name
from .types import NOW, BaseType, FieldDescriptor, SchemaNode, SchemaOptions, SchemaTree

logger = logging.getLogger(__name__)

OptionsLike = Union[SchemaOptions, Mapping[str, Any], None]


def resolve_options(options: OptionsLike, settings: Optional[Settings] = None) -> SchemaOptions:
    """Build SchemaOptions from explicit options layered over settings defaults.

    Raises:
        SchemaDefinitionError: If options contain unknown keys or bad values
    """
    settings = settings or get_settings()
    if isinstance(options, SchemaOptions):
        resolved = options
    else:
        base = SchemaOptions(
            timestamps=settings.timestamps,
            serialize_identity_as=settings.serialize_identity_as,
            strip_internal_fields=settings.strip_internal_fields,
        )
        if options is None:
            resolved = base
        elif isinstance(options, Mapping):
            try:
                resolved = SchemaOptions.from_dict(options, base)
            except ValueError as exc:
                raise SchemaDefinitionError(str(exc)) from exc
        else:
            raise SchemaDefinitionError(
                f"Schema options must be a mapping, got {type(options).__name__}"
            )

    if not isinstance(resolved.serialize_identity_as, str) or not resolved.serialize_identity_as:
        raise SchemaDefinitionError("serialize_identity_as must be a non-empty string")
    if resolved.timestamps and resolved.created_at_field == resolved.updated_at_field:
        raise SchemaDefinitionError("Timestamp fields must have different names")
    return resolved


def compile_schema(
    descriptor: Mapping[str, Any],
    options: OptionsLike = None,
    *,
    settings: Optional[Settings] = None,
) -> SchemaTree:
    """Compile a raw descriptor into a canonical schema tree.

    Args:
        descriptor: Mapping of field name to token, type, partial descriptor,
            nested mapping or list
        options: SchemaOptions or mapping of option overrides
        settings: Settings to use (process settings if not provided)

    Returns:
        SchemaTree

    Raises:
        SchemaDefinitionError: If the descriptor or options are malformed
    """
    settings = settings or get_settings()
    if not isinstance(descriptor, Mapping):
        raise SchemaDefinitionError(
            f"Schema descriptor must be a mapping, got {type(descriptor).__name__}"
        )
    resolved = resolve_options(options, settings)

    fields: dict[str, SchemaNode] = {}
    for name, entry in descriptor.items():
        validate_field_name(name)
        fields[name] = normalize(name, entry, strict_tokens=settings.strict_tokens)

    for name in resolved.timestamp_fields:
        if name not in fields:
            fields[name] = FieldDescriptor(base_type=BaseType.DATE, default=NOW)

    tree = SchemaTree(fields=fields, options=resolved)
    logger.debug(f"Compiled schema with {len(fields)} fields, fingerprint={tree.fingerprint()}")
    return tree
