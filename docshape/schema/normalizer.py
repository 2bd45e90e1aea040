"""
Field descriptor normalization for docshape.

Converts one raw schema entry into a canonical schema node:

    "email!!"                          -> FieldDescriptor (token table)
    str / int / datetime / BaseType    -> FieldDescriptor
    {"type": "number", "min": 0}       -> FieldDescriptor (partial descriptor)
    {"street": "string!", ...}         -> EmbeddedTree
    ["url"] / [{"name": "string!"}]    -> ArrayOf

Name-driven inference runs after token or explicit resolution and only
fills gaps the author left unset:
    - text fields whose name contains "email" are lowercased and get the
      email pattern validator
    - text fields are trimmed
    - enum constraints get a membership validator listing the allowed values

Invariants:
    - normalize() is pure apart from the unknown-token warning
    - Malformed descriptors raise SchemaDefinitionError here, never at first write
    - Lists are normalized one level deep; list-in-list is rejected
    - Cyclic descriptor objects are rejected
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable

from ..errors import SchemaDefinitionError
from .tokens import EMAIL_VALIDATOR, REQUIRED_MESSAGE, is_known_token, resolve
from .types import (
    EMPTY_DICT,
    EMPTY_LIST,
    NOW,
    ArrayOf,
    BaseType,
    DefaultFactory,
    EmbeddedTree,
    FieldDescriptor,
    RelationMarker,
    SchemaNode,
    Validator,
    ValidatorKind,
)

logger = logging.getLogger(__name__)

DESCRIPTOR_KEYS = frozenset(
    {
        "type",
        "required",
        "unique",
        "default",
        "enum",
        "min",
        "max",
        "minlength",
        "maxlength",
        "match",
        "lowercase",
        "trim",
        "ref",
        "validate",
        "index",
        "sparse",
        "description",
    }
)

# Type names accepted in the "type" key of a partial descriptor
TYPE_NAMES: dict[str, BaseType] = {
    "string": BaseType.STRING,
    "number": BaseType.NUMBER,
    "boolean": BaseType.BOOLEAN,
    "date": BaseType.DATE,
    "array": BaseType.ARRAY,
    "object": BaseType.OBJECT,
    "buffer": BaseType.BUFFER,
    "objectid": BaseType.OBJECTID,
    "mixed": BaseType.MIXED,
    "decimal": BaseType.DECIMAL,
    "map": BaseType.MAP,
}

PYTHON_TYPES: dict[type, BaseType] = {
    str: BaseType.STRING,
    int: BaseType.NUMBER,
    float: BaseType.NUMBER,
    bool: BaseType.BOOLEAN,
    datetime: BaseType.DATE,
    date: BaseType.DATE,
    list: BaseType.ARRAY,
    dict: BaseType.OBJECT,
    bytes: BaseType.BUFFER,
    Decimal: BaseType.DECIMAL,
}

CUSTOM_VALIDATOR_MESSAGE = "Validator failed for path `{PATH}` with value `{VALUE}`"

_NOW_CALLABLES = (datetime.now, datetime.utcnow)


def validate_field_name(name: Any, path: str | None = None) -> None:
    """Reject names that cannot be stored as document keys.

    Raises:
        SchemaDefinitionError: If the name is empty, not a string,
            starts with '$' or contains '.'
    """
    if not isinstance(name, str) or not name:
        raise SchemaDefinitionError(f"Field name must be a non-empty string, got {name!r}", path)
    if name.startswith("$") or "." in name:
        raise SchemaDefinitionError(f"Field name '{name}' cannot start with '$' or contain '.'", path)


def normalize(
    field_name: str,
    raw_entry: Any,
    *,
    strict_tokens: bool = False,
) -> SchemaNode:
    """Normalize one raw schema entry into a canonical node.

    Args:
        field_name: Name of the field (drives inference)
        raw_entry: Token, Python type, partial descriptor, nested mapping or list
        strict_tokens: Reject unknown tokens instead of falling back

    Returns:
        FieldDescriptor, EmbeddedTree or ArrayOf

    Raises:
        SchemaDefinitionError: If the entry is malformed

    Example:
        >>> normalize("email", "email!!").unique
        True
        >>> normalize("price", {"type": "number", "min": 0}).min_value
        0
    """
    return _normalize(field_name, raw_entry, field_name, strict_tokens, ())


def _normalize(
    name: str,
    entry: Any,
    path: str,
    strict: bool,
    active: tuple[int, ...],
) -> SchemaNode:
    if isinstance(entry, FieldDescriptor):
        return infer(name, entry)
    if isinstance(entry, (EmbeddedTree, ArrayOf)):
        return entry

    if isinstance(entry, str):
        if strict and not is_known_token(entry):
            raise SchemaDefinitionError(f"Unknown shorthand token '{entry}'", path)
        return infer(name, resolve(entry))

    if isinstance(entry, BaseType):
        return infer(name, FieldDescriptor(base_type=entry))

    if isinstance(entry, type):
        base = PYTHON_TYPES.get(entry)
        if base is None:
            raise SchemaDefinitionError(f"Unsupported field type {entry.__name__}", path)
        return infer(name, FieldDescriptor(base_type=base))

    if isinstance(entry, (list, tuple)):
        if id(entry) in active:
            raise SchemaDefinitionError("Cyclic schema descriptor", path)
        return _normalize_list(name, entry, path, strict, active + (id(entry),))

    if isinstance(entry, Mapping):
        if id(entry) in active:
            raise SchemaDefinitionError("Cyclic schema descriptor", path)
        active = active + (id(entry),)
        type_value = entry.get("type")
        if "type" in entry and not isinstance(type_value, Mapping):
            return _normalize_partial(name, entry, path, strict, active)
        return _normalize_embedded(entry, path, strict, active)

    raise SchemaDefinitionError(
        f"Unsupported schema entry {entry!r} of type {type(entry).__name__}", path
    )


def _normalize_list(
    name: str,
    entry: list | tuple,
    path: str,
    strict: bool,
    active: tuple[int, ...],
) -> ArrayOf:
    if len(entry) == 0:
        return ArrayOf(element=FieldDescriptor(base_type=BaseType.MIXED))
    if len(entry) > 1:
        raise SchemaDefinitionError(
            f"Array descriptors take exactly one element type, got {len(entry)}", path
        )
    element = entry[0]
    if isinstance(element, (list, tuple)):
        raise SchemaDefinitionError("Nested arrays are not supported", path)
    return ArrayOf(element=_normalize(name, element, f"{path}.$", strict, active))


def _normalize_embedded(
    entry: Mapping[str, Any],
    path: str,
    strict: bool,
    active: tuple[int, ...],
) -> EmbeddedTree:
    fields: dict[str, SchemaNode] = {}
    for child_name, child in entry.items():
        validate_field_name(child_name, path)
        fields[child_name] = _normalize(child_name, child, f"{path}.{child_name}", strict, active)
    return EmbeddedTree(fields=fields)


def _resolve_type(value: Any, path: str) -> BaseType:
    if isinstance(value, BaseType):
        return value
    if isinstance(value, str):
        base = TYPE_NAMES.get(value.lower())
        if base is None:
            logger.warning(f"{path}: unknown type name '{value}', falling back to string")
            return BaseType.STRING
        return base
    if isinstance(value, type) and value in PYTHON_TYPES:
        return PYTHON_TYPES[value]
    raise SchemaDefinitionError(f"Unsupported type {value!r}", path)


def _value_and_message(value: Any, default_message: str, path: str, key: str) -> tuple[Any, str]:
    """Split the [value, message] form used by required/min/max/match."""
    if isinstance(value, (list, tuple)):
        if len(value) != 2 or not isinstance(value[1], str):
            raise SchemaDefinitionError(f"'{key}' must be a value or [value, message]", path)
        return value[0], value[1]
    return value, default_message


def _parse_default(value: Any) -> Any:
    if value in _NOW_CALLABLES:
        return NOW
    if isinstance(value, list) and not value:
        return EMPTY_LIST
    if isinstance(value, dict) and not value:
        return EMPTY_DICT
    return value


def _parse_pattern(value: Any, path: str) -> Validator:
    pattern, message = _value_and_message(value, "Path `{PATH}` is invalid ({VALUE})", path, "match")
    if isinstance(pattern, re.Pattern):
        return Validator(ValidatorKind.PATTERN, message, pattern.pattern, pattern.flags & ~re.UNICODE)
    if not isinstance(pattern, str):
        raise SchemaDefinitionError(f"'match' must be a regex pattern, got {pattern!r}", path)
    try:
        re.compile(pattern)
    except re.error as exc:
        raise SchemaDefinitionError(f"Invalid 'match' pattern: {exc}", path) from exc
    return Validator(ValidatorKind.PATTERN, message, pattern)


def _parse_custom(value: Any, path: str) -> list[Validator]:
    if isinstance(value, Validator):
        return [value]
    if isinstance(value, Mapping):
        fn: Callable[[Any], bool] | None = value.get("validator")
        if not callable(fn):
            raise SchemaDefinitionError("'validate.validator' must be callable", path)
        return [Validator(ValidatorKind.CUSTOM, value.get("message", CUSTOM_VALIDATOR_MESSAGE), fn)]
    if isinstance(value, (list, tuple)):
        validators: list[Validator] = []
        for item in value:
            validators.extend(_parse_custom(item, path))
        return validators
    if callable(value):
        return [Validator(ValidatorKind.CUSTOM, CUSTOM_VALIDATOR_MESSAGE, value)]
    raise SchemaDefinitionError(f"'validate' must be callable, got {value!r}", path)


def _normalize_partial(
    name: str,
    config: Mapping[str, Any],
    path: str,
    strict: bool,
    active: tuple[int, ...],
) -> SchemaNode:
    unknown = set(config) - DESCRIPTOR_KEYS
    if unknown:
        raise SchemaDefinitionError(
            f"Unknown descriptor keys {sorted(unknown)}. Valid keys: {sorted(DESCRIPTOR_KEYS)}", path
        )

    required, required_message = _value_and_message(
        config.get("required", False), REQUIRED_MESSAGE, path, "required"
    )

    type_value = config["type"]
    if isinstance(type_value, (list, tuple)):
        extra = set(config) - {"type", "required", "description"}
        if extra:
            raise SchemaDefinitionError(
                f"Array types only accept 'required' and 'description', got {sorted(extra)}", path
            )
        array = _normalize_list(name, type_value, path, strict, active)
        return ArrayOf(element=array.element, required=bool(required))

    base = _resolve_type(type_value, path)
    validators: list[Validator] = []

    relation = None
    ref = config.get("ref")
    if ref is not None:
        if not isinstance(ref, str) or not ref:
            raise SchemaDefinitionError(f"'ref' must be a model name, got {ref!r}", path)
        relation = RelationMarker(ref)

    if "validate" in config:
        validators.extend(_parse_custom(config["validate"], path))
    if "match" in config:
        if not base.is_text:
            raise SchemaDefinitionError(f"'match' requires a string type, got {base.value}", path)
        validators.append(_parse_pattern(config["match"], path))

    enum = config.get("enum")
    if enum is not None:
        if not base.is_text:
            raise SchemaDefinitionError(f"'enum' requires a string type, got {base.value}", path)
        if not isinstance(enum, (list, tuple)) or not enum:
            raise SchemaDefinitionError("'enum' must be a non-empty list", path)
        enum = tuple(enum)

    bounds: dict[str, Any] = {}
    for key, kind, message in (
        ("min", ValidatorKind.MIN, "{PATH} must be at least {MIN}"),
        ("max", ValidatorKind.MAX, "{PATH} cannot exceed {MAX}"),
        ("minlength", ValidatorKind.MIN_LENGTH, "{PATH} must be at least {MIN} characters"),
        ("maxlength", ValidatorKind.MAX_LENGTH, "{PATH} cannot exceed {MAX} characters"),
    ):
        if key not in config:
            continue
        value, message = _value_and_message(config[key], message, path, key)
        if key in ("min", "max"):
            if not base.is_numeric:
                raise SchemaDefinitionError(
                    f"'{key}' requires a numeric type, got {base.value}", path
                )
            if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
                raise SchemaDefinitionError(f"'{key}' must be a number, got {value!r}", path)
        else:
            if not (base.is_text or base is BaseType.ARRAY):
                raise SchemaDefinitionError(
                    f"'{key}' requires a string or array type, got {base.value}", path
                )
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise SchemaDefinitionError(
                    f"'{key}' must be a non-negative integer, got {value!r}", path
                )
        bounds[key] = value
        validators.append(Validator(kind, message, value))

    if "min" in bounds and "max" in bounds and bounds["min"] > bounds["max"]:
        raise SchemaDefinitionError(
            f"'min' ({bounds['min']}) is greater than 'max' ({bounds['max']})", path
        )
    if (
        "minlength" in bounds
        and "maxlength" in bounds
        and bounds["minlength"] > bounds["maxlength"]
    ):
        raise SchemaDefinitionError(
            f"'minlength' ({bounds['minlength']}) is greater than 'maxlength' ({bounds['maxlength']})",
            path,
        )

    default = _parse_default(config.get("default"))
    if (
        enum is not None
        and default is not None
        and not isinstance(default, DefaultFactory)
        and not callable(default)
        and default not in enum
    ):
        raise SchemaDefinitionError(f"default {default!r} is not one of {list(enum)}", path)

    descriptor = FieldDescriptor(
        base_type=base,
        required=bool(required),
        unique=bool(config.get("unique", False)),
        default=default,
        validators=tuple(validators),
        relation=relation,
        lowercase=config.get("lowercase"),
        trim=config.get("trim"),
        enum=enum,
        min_value=bounds.get("min"),
        max_value=bounds.get("max"),
        min_length=bounds.get("minlength"),
        max_length=bounds.get("maxlength"),
        index=bool(config.get("index", False)),
        sparse=bool(config.get("sparse", False)),
        required_message=required_message if required else None,
        description=config.get("description", ""),
    )
    return infer(name, descriptor)


def infer(field_name: str, descriptor: FieldDescriptor) -> FieldDescriptor:
    """Apply name-driven inference, filling only unset constraints.

    Idempotent: inferring an already-inferred descriptor returns an equal one.
    """
    changes: dict[str, Any] = {}
    validators = descriptor.validators

    if descriptor.is_text:
        if "email" in field_name.lower():
            if descriptor.lowercase is None:
                changes["lowercase"] = True
            if not descriptor.has_validator(ValidatorKind.PATTERN):
                validators = validators + (EMAIL_VALIDATOR,)
        if descriptor.trim is None:
            changes["trim"] = True

    if (
        descriptor.enum is not None
        and not descriptor.has_validator(ValidatorKind.CUSTOM)
        and not descriptor.has_validator(ValidatorKind.ENUM)
    ):
        allowed = ", ".join(str(v) for v in descriptor.enum)
        validators = validators + (
            Validator(ValidatorKind.ENUM, f"{{PATH}} must be one of: {allowed}", descriptor.enum),
        )

    if validators != descriptor.validators:
        changes["validators"] = validators
    return descriptor.replace(**changes) if changes else descriptor
