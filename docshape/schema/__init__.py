"""
Schema module for docshape.

This module turns raw descriptors into canonical schema trees:
- Type definitions (FieldDescriptor, EmbeddedTree, ArrayOf, SchemaTree)
- Shorthand token table
- Field normalization and name-driven inference
- Schema compilation with schema-level options

Invariants:
    - Compiled trees are immutable
    - Malformed descriptors raise SchemaDefinitionError at compile time
    - Unknown tokens fall back to plain string fields unless strict_tokens is set

How to change safely:
    - Add new tokens as new table entries
    - Add new descriptor keys to DESCRIPTOR_KEYS and the partial normalizer together
"""

from .compiler import compile_schema, resolve_options
from .normalizer import infer, normalize, validate_field_name
from .tokens import TOKEN_TABLE, is_known_token, known_tokens, resolve
from .types import (
    ArrayOf,
    BaseType,
    DefaultFactory,
    EmbeddedTree,
    FieldDescriptor,
    RelationMarker,
    SchemaNode,
    SchemaOptions,
    SchemaTree,
    SerializationTransform,
    Validator,
    ValidatorKind,
)

__all__ = [
    # Types
    "BaseType",
    "DefaultFactory",
    "FieldDescriptor",
    "EmbeddedTree",
    "ArrayOf",
    "RelationMarker",
    "SchemaNode",
    "SchemaOptions",
    "SchemaTree",
    "SerializationTransform",
    "Validator",
    "ValidatorKind",
    # Tokens
    "TOKEN_TABLE",
    "resolve",
    "is_known_token",
    "known_tokens",
    # Normalizer
    "normalize",
    "infer",
    "validate_field_name",
    # Compiler
    "compile_schema",
    "resolve_options",
]
