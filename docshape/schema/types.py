"""
Core type definitions for the docshape schema system.

This module defines the canonical, fully-resolved form of a document schema:
- BaseType: The storage type of a field
- Validator: A single constraint check with a user-facing message
- FieldDescriptor: Canonical constraint set for one leaf field
- EmbeddedTree / ArrayOf: Nested object and repeated-value wrappers
- SchemaOptions: Schema-level structural options
- SchemaTree: The complete canonical structure for one model

A schema node is a closed variant: FieldDescriptor | EmbeddedTree | ArrayOf.
References to other models are RelationMarker values carried on a
FieldDescriptor, never embedded trees, so schema trees cannot form cycles.

Invariants:
    - Descriptors are immutable once computed
    - Field order is preserved exactly as supplied
    - Mutable and time-dependent defaults are DefaultFactory values,
      resolved per document
    - fingerprint() depends only on the tree's canonical dict form

Example:
    >>> from docshape.schema.types import BaseType, FieldDescriptor
    >>> email = FieldDescriptor(base_type=BaseType.STRING, required=True, unique=True)
    >>> email.to_dict()
    {'type': 'string', 'required': True, 'unique': True}
"""

from __future__ import annotations

import copy
import hashlib
import json
import re
from dataclasses import dataclass, replace
from dataclasses import field as dataclass_field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Iterator, Mapping, Union


class BaseType(Enum):
    """Supported base types for schema fields."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    ARRAY = "array"
    OBJECT = "object"
    BUFFER = "buffer"
    DECIMAL = "decimal"
    MAP = "map"
    MIXED = "mixed"
    OBJECTID = "objectid"  # Identity of a document in another model

    @classmethod
    def from_str(cls, value: str) -> BaseType:
        """Convert a type name to a BaseType.

        Args:
            value: Type name, case-insensitive

        Returns:
            Corresponding BaseType

        Raises:
            ValueError: If value is not a known type name
        """
        lowered = value.lower()
        for base in cls:
            if base.value == lowered:
                return base
        valid = [b.value for b in cls]
        raise ValueError(f"Invalid base type '{value}'. Valid types: {valid}")

    @property
    def is_numeric(self) -> bool:
        return self in (BaseType.NUMBER, BaseType.DECIMAL)

    @property
    def is_text(self) -> bool:
        return self is BaseType.STRING


@dataclass(frozen=True)
class DefaultFactory:
    """A default that must be produced fresh for every document.

    Attributes:
        kind: One of "now", "empty_list", "empty_dict"
    """

    kind: str

    KINDS = ("now", "empty_list", "empty_dict")

    def __post_init__(self) -> None:
        if self.kind not in self.KINDS:
            raise ValueError(f"Unknown default factory '{self.kind}'. Valid: {list(self.KINDS)}")

    def resolve(self) -> Any:
        """Produce a new default value."""
        if self.kind == "now":
            return datetime.now(timezone.utc)
        if self.kind == "empty_list":
            return []
        return {}


NOW = DefaultFactory("now")
EMPTY_LIST = DefaultFactory("empty_list")
EMPTY_DICT = DefaultFactory("empty_dict")


class ValidatorKind(Enum):
    """Kinds of field validators."""

    PATTERN = "pattern"
    ENUM = "enum"
    MIN = "min"
    MAX = "max"
    MIN_LENGTH = "min_length"
    MAX_LENGTH = "max_length"
    CUSTOM = "custom"


@dataclass(frozen=True)
class Validator:
    """A single constraint on a field value.

    Message templates may use {PATH}, {VALUE}, {MIN} and {MAX}.

    Attributes:
        kind: What the validator checks
        message: User-facing message template
        argument: Pattern string, allowed values, bound, or callable (CUSTOM)
        flags: Regex flags for PATTERN validators
    """

    kind: ValidatorKind
    message: str
    argument: Any = None
    flags: int = 0

    def check(self, value: Any) -> bool:
        """Return True when value satisfies the constraint.

        Missing values always pass; requiredness is checked separately.
        """
        if value is None:
            return True
        if self.kind == ValidatorKind.PATTERN:
            return isinstance(value, str) and re.search(self.argument, value, self.flags) is not None
        if self.kind == ValidatorKind.ENUM:
            return value in self.argument
        if self.kind == ValidatorKind.MIN:
            return value >= self.argument
        if self.kind == ValidatorKind.MAX:
            return value <= self.argument
        if self.kind == ValidatorKind.MIN_LENGTH:
            return len(value) >= self.argument
        if self.kind == ValidatorKind.MAX_LENGTH:
            return len(value) <= self.argument
        return bool(self.argument(value))

    def render(self, path: str, value: Any = None) -> str:
        """Render the message template for a failing value."""
        bound = "" if self.argument is None or callable(self.argument) else str(self.argument)
        return (
            self.message.replace("{PATH}", path)
            .replace("{VALUE}", str(value))
            .replace("{MIN}", bound)
            .replace("{MAX}", bound)
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        result: dict[str, Any] = {"kind": self.kind.value, "message": self.message}
        if callable(self.argument):
            result["argument"] = getattr(self.argument, "__qualname__", repr(self.argument))
        elif self.argument is not None:
            result["argument"] = _jsonable(self.argument)
        if self.flags:
            result["flags"] = self.flags
        return result


@dataclass(frozen=True)
class RelationMarker:
    """Marks a field as referencing the identity of another model."""

    model: str

    def __post_init__(self) -> None:
        if not self.model:
            raise ValueError("Relation target model cannot be empty")


@dataclass(frozen=True)
class FieldDescriptor:
    """Canonical constraint set for a single leaf field.

    Attributes:
        base_type: Storage type of the field
        required: Whether a value must be present on write
        unique: Whether values must be unique across the collection
        default: Plain default value or a DefaultFactory
        validators: Ordered value constraints
        relation: Target model when the field references another model
        lowercase: Case-fold text values (None = not yet inferred)
        trim: Strip surrounding whitespace (None = not yet inferred)
        enum: Allowed values
        min_value / max_value: Numeric bounds
        min_length / max_length: Length bounds for text or arrays
        index: Whether a single-field index was requested
        sparse: Whether that index skips missing values
        required_message: Message template used when a required value is missing
        description: Human-readable description

    Invariants:
        - min_value/max_value only on numeric base types
        - relation fields carry a RelationMarker
    """

    base_type: BaseType = BaseType.STRING
    required: bool = False
    unique: bool = False
    default: Any = None
    validators: tuple[Validator, ...] = ()
    relation: RelationMarker | None = None
    lowercase: bool | None = None
    trim: bool | None = None
    enum: tuple[Any, ...] | None = None
    min_value: Any = None
    max_value: Any = None
    min_length: int | None = None
    max_length: int | None = None
    index: bool = False
    sparse: bool = False
    required_message: str | None = None
    description: str = ""

    @property
    def is_text(self) -> bool:
        return self.base_type.is_text

    @property
    def has_default(self) -> bool:
        return self.default is not None

    def has_validator(self, kind: ValidatorKind) -> bool:
        """Whether a validator of the given kind is present."""
        return any(v.kind == kind for v in self.validators)

    def replace(self, **changes: Any) -> FieldDescriptor:
        """Return a copy with the given attributes changed."""
        return replace(self, **changes)

    def default_value(self) -> Any:
        """Produce the default for a new document."""
        if isinstance(self.default, DefaultFactory):
            return self.default.resolve()
        if callable(self.default):
            return self.default()
        return copy.deepcopy(self.default)

    def validate_value(self, value: Any, path: str) -> list[str]:
        """Validate a value against this descriptor.

        Args:
            value: The value to validate
            path: Field path used in messages

        Returns:
            List of rendered error messages (empty if valid)
        """
        if value is None:
            if self.required:
                template = self.required_message or "{PATH} is required"
                return [template.replace("{PATH}", path)]
            return []
        return [v.render(path, value) for v in self.validators if not v.check(value)]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation for serialization."""
        result: dict[str, Any] = {"type": self.base_type.value}
        if self.required:
            result["required"] = True
        if self.unique:
            result["unique"] = True
        if self.default is not None:
            result["default"] = _jsonable(self.default)
        if self.relation is not None:
            result["ref"] = self.relation.model
        if self.lowercase:
            result["lowercase"] = True
        if self.trim:
            result["trim"] = True
        if self.enum is not None:
            result["enum"] = [_jsonable(v) for v in self.enum]
        for key, value in (
            ("min", self.min_value),
            ("max", self.max_value),
            ("minlength", self.min_length),
            ("maxlength", self.max_length),
        ):
            if value is not None:
                result[key] = _jsonable(value)
        if self.index:
            result["index"] = True
        if self.sparse:
            result["sparse"] = True
        if self.validators:
            result["validators"] = [v.to_dict() for v in self.validators]
        if self.description:
            result["description"] = self.description
        return result


@dataclass(frozen=True)
class EmbeddedTree:
    """A nested object whose children are schema nodes."""

    fields: dict[str, SchemaNode] = dataclass_field(default_factory=dict)

    def names(self) -> list[str]:
        return list(self.fields)

    def to_dict(self) -> dict[str, Any]:
        return {"type": "embedded", "fields": {k: v.to_dict() for k, v in self.fields.items()}}


@dataclass(frozen=True)
class ArrayOf:
    """A repeated-value field; element is normalized one level deep."""

    element: SchemaNode
    required: bool = False

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"type": "array", "of": self.element.to_dict()}
        if self.required:
            result["required"] = True
        return result


SchemaNode = Union[FieldDescriptor, EmbeddedTree, ArrayOf]


@dataclass(frozen=True)
class SchemaOptions:
    """Schema-level structural options.

    Attributes:
        timestamps: Add created-at/updated-at fields
        created_at_field: Name of the creation timestamp field
        updated_at_field: Name of the modification timestamp field
        serialize_identity_as: Public alias for the internal identity field
        strip_internal_fields: Drop internal bookkeeping fields on serialization
        include_virtuals: Merge computed fields into serialized output
    """

    timestamps: bool = True
    created_at_field: str = "createdAt"
    updated_at_field: str = "updatedAt"
    serialize_identity_as: str = "id"
    strip_internal_fields: bool = True
    include_virtuals: bool = True

    # camelCase spellings accepted from descriptor files
    ALIASES = {
        "serializeIdentityAs": "serialize_identity_as",
        "stripInternalFields": "strip_internal_fields",
        "createdAtField": "created_at_field",
        "updatedAtField": "updated_at_field",
        "includeVirtuals": "include_virtuals",
    }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], base: SchemaOptions | None = None) -> SchemaOptions:
        """Create options from a mapping, layered over base.

        Raises:
            ValueError: If the mapping contains unknown keys
        """
        known = {
            "timestamps",
            "created_at_field",
            "updated_at_field",
            "serialize_identity_as",
            "strip_internal_fields",
            "include_virtuals",
        }
        changes: dict[str, Any] = {}
        for key, value in data.items():
            name = cls.ALIASES.get(key, key)
            if name not in known:
                raise ValueError(f"Unknown schema option '{key}'. Valid options: {sorted(known)}")
            changes[name] = value
        return replace(base or cls(), **changes)

    @property
    def timestamp_fields(self) -> tuple[str, ...]:
        if not self.timestamps:
            return ()
        return (self.created_at_field, self.updated_at_field)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamps": self.timestamps,
            "created_at_field": self.created_at_field,
            "updated_at_field": self.updated_at_field,
            "serialize_identity_as": self.serialize_identity_as,
            "strip_internal_fields": self.strip_internal_fields,
            "include_virtuals": self.include_virtuals,
        }


@dataclass(frozen=True)
class SerializationTransform:
    """Rule applied when a document is rendered for callers.

    Replaces the internal identity field with its public alias and strips
    internal bookkeeping fields.
    """

    identity_field: str = "_id"
    alias: str = "id"
    strip_internal: bool = True
    internal_fields: tuple[str, ...] = ("_id", "__v")
    include_virtuals: bool = True

    @classmethod
    def from_options(cls, options: SchemaOptions) -> SerializationTransform:
        return cls(
            alias=options.serialize_identity_as,
            strip_internal=options.strip_internal_fields,
            include_virtuals=options.include_virtuals,
        )

    def apply(
        self,
        document: Mapping[str, Any],
        computed: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Render a stored document for output.

        Args:
            document: Stored document fields
            computed: Computed field values to merge

        Returns:
            New dictionary; the input is not modified
        """
        result = dict(document)
        if self.identity_field in document and document[self.identity_field] is not None:
            result[self.alias] = str(document[self.identity_field])
        if self.strip_internal:
            for name in self.internal_fields:
                if name != self.alias:
                    result.pop(name, None)
        if computed and self.include_virtuals:
            for name, value in computed.items():
                result.setdefault(name, value)
        return result


@dataclass(frozen=True)
class SchemaTree:
    """The complete canonical structure for one model.

    Attributes:
        fields: Ordered mapping of field name to schema node
        options: Schema-level options the tree was compiled with
    """

    fields: dict[str, SchemaNode] = dataclass_field(default_factory=dict)
    options: SchemaOptions = dataclass_field(default_factory=SchemaOptions)

    @property
    def transform(self) -> SerializationTransform:
        return SerializationTransform.from_options(self.options)

    def field_names(self) -> list[str]:
        """Top-level field names in declaration order."""
        return list(self.fields)

    def __contains__(self, name: object) -> bool:
        return name in self.fields

    def leaf(self, name: str) -> FieldDescriptor | None:
        """Top-level leaf descriptor by name, if it is one."""
        node = self.fields.get(name)
        return node if isinstance(node, FieldDescriptor) else None

    def get(self, path: str) -> SchemaNode | None:
        """Look up a node by dotted path."""
        parts = path.split(".")
        node: SchemaNode | None = self.fields.get(parts[0])
        for part in parts[1:]:
            if isinstance(node, ArrayOf):
                node = node.element
            if not isinstance(node, EmbeddedTree):
                return None
            node = node.fields.get(part)
        return node

    def paths(self) -> Iterator[tuple[str, SchemaNode]]:
        """Yield (dotted_path, node) for every leaf, arrays included as leaves."""
        yield from _walk(self.fields, "")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "fields": {name: node.to_dict() for name, node in self.fields.items()},
            "options": self.options.to_dict(),
        }

    def fingerprint(self) -> str:
        """SHA-256 fingerprint of the canonical tree.

        Returns:
            Fingerprint string in format 'sha256:<hash>'
        """
        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), default=repr)
        return "sha256:" + hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _walk(fields: Mapping[str, SchemaNode], prefix: str) -> Iterator[tuple[str, SchemaNode]]:
    for name, node in fields.items():
        path = f"{prefix}{name}"
        if isinstance(node, EmbeddedTree):
            yield from _walk(node.fields, f"{path}.")
        else:
            yield path, node


def _jsonable(value: Any) -> Any:
    """Best-effort conversion of a descriptor value to a JSON-safe value."""
    if isinstance(value, DefaultFactory):
        return {"factory": value.kind}
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, bytes):
        return value.hex()
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (set, frozenset)):
        return sorted((_jsonable(v) for v in value), key=repr)
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if callable(value):
        return getattr(value, "__qualname__", repr(value))
    return repr(value)
