"""
Feature specifications attached to a compiled schema tree.

A FeatureSet groups everything derived from (or added to) a schema beyond
its stored fields:
- ComputedFieldSpec: virtual field with a getter and optional setter
- IndexSpec: index to create in the document store
- HookSpec: pre/post lifecycle hook keyed by operation name
- QueryHelperSpec: named filter builder
- methods / statics / plugins / validators: added only through registry extensions
- ExtensionKind: the kinds of extension a FeatureSet accepts

Invariants:
    - Specs are immutable; FeatureSet is the only mutable container
    - Equality is by value, so two synthesis runs over the same tree compare equal
    - A user extension replaces a synthesized spec of the same name, never
      the other way round
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from dataclasses import field as dataclass_field
from enum import Enum
from typing import Any, Callable, Optional, Union

from ..schema.types import Validator

IndexDirection = Union[int, str]


def _callable_name(fn: Any) -> Optional[str]:
    if fn is None:
        return None
    return getattr(fn, "__qualname__", None) or type(fn).__name__


@dataclass(frozen=True)
class ComputedFieldSpec:
    """A computed (virtual) field.

    Attributes:
        name: Field name exposed on documents
        getter: Callable receiving the document, returning the value
        setter: Optional callable receiving (document, value)
        synthesized: Whether the synthesizer produced this spec
    """

    name: str
    getter: Optional[Callable[..., Any]] = None
    setter: Optional[Callable[..., None]] = None
    synthesized: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "getter": _callable_name(self.getter),
            "setter": _callable_name(self.setter),
            "synthesized": self.synthesized,
        }


@dataclass(frozen=True)
class IndexSpec:
    """An index over one or more fields.

    Attributes:
        keys: Ordered (field, direction) pairs; direction is 1, -1, "text" or "2dsphere"
        unique: Reject duplicate key values
        sparse: Skip documents missing the indexed fields
        expire_after_seconds: TTL in seconds after the indexed date
        partial_filter: Only index documents matching this filter
        weights: Text index weights per field
        synthesized: Whether the synthesizer produced this spec
    """

    keys: tuple[tuple[str, IndexDirection], ...]
    unique: bool = False
    sparse: bool = False
    expire_after_seconds: Optional[int] = None
    partial_filter: Optional[dict[str, Any]] = None
    weights: Optional[dict[str, int]] = None
    synthesized: bool = False

    def __post_init__(self) -> None:
        if not self.keys:
            raise ValueError("Index must have at least one key")

    @classmethod
    def from_keys(
        cls,
        keys: Union[Mapping[str, IndexDirection], Sequence[tuple[str, IndexDirection]]],
        **options: Any,
    ) -> IndexSpec:
        """Create from a {field: direction} mapping or a sequence of pairs."""
        pairs = tuple(keys.items()) if isinstance(keys, Mapping) else tuple(tuple(k) for k in keys)
        return cls(keys=pairs, **options)  # type: ignore[arg-type]

    @property
    def name(self) -> str:
        """Store-style index name, e.g. 'status_1_createdAt_-1'."""
        return "_".join(f"{field}_{direction}" for field, direction in self.keys)

    @property
    def fields(self) -> tuple[str, ...]:
        return tuple(field for field, _ in self.keys)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"name": self.name, "keys": dict(self.keys)}
        if self.unique:
            result["unique"] = True
        if self.sparse:
            result["sparse"] = True
        if self.expire_after_seconds is not None:
            result["expireAfterSeconds"] = self.expire_after_seconds
        if self.partial_filter is not None:
            result["partialFilterExpression"] = self.partial_filter
        if self.weights is not None:
            result["weights"] = self.weights
        return result


class HookPhase(Enum):
    """When a hook runs relative to its operation."""

    PRE = "pre"
    POST = "post"


@dataclass(frozen=True)
class HookSpec:
    """A lifecycle hook.

    Attributes:
        name: Hook name (synthesized hooks have fixed names)
        phase: pre or post
        operations: Operation names the hook is attached to, e.g. ("save",)
        handler: Callable receiving the operation's subject (document,
            update mapping or aggregation pipeline)
        synthesized: Whether the synthesizer produced this spec
    """

    name: str
    phase: HookPhase
    operations: tuple[str, ...]
    handler: Callable[..., Any]
    synthesized: bool = False

    def applies_to(self, phase: HookPhase, operation: str) -> bool:
        return self.phase == phase and operation in self.operations

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "phase": self.phase.value,
            "operations": list(self.operations),
            "handler": _callable_name(self.handler),
            "synthesized": self.synthesized,
        }


@dataclass(frozen=True)
class QueryHelperSpec:
    """A named query helper; the builder returns a filter mapping."""

    name: str
    builder: Callable[..., Any]
    synthesized: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "builder": _callable_name(self.builder),
            "synthesized": self.synthesized,
        }


@dataclass(frozen=True)
class PluginRecord:
    """A plugin applied to a schema, recorded for inspection."""

    name: str
    options: dict[str, Any] = dataclass_field(default_factory=dict)


@dataclass(frozen=True)
class NamedCallable:
    """An instance or static method added through an extension."""

    name: str
    fn: Callable[..., Any]


@dataclass(frozen=True)
class FieldValidatorSpec:
    """A validator attached to a field path after compilation."""

    path: str
    validator: Validator

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path, **self.validator.to_dict()}


class ExtensionKind(Enum):
    """Kinds of schema extension accepted by the registry."""

    COMPUTED_FIELD = "computed_field"
    METHOD = "method"
    STATIC = "static"
    QUERY_HELPER = "query_helper"
    HOOK = "hook"
    PLUGIN = "plugin"
    INDEX = "index"
    VALIDATOR = "validator"


# Payload type expected for each extension kind
EXTENSION_PAYLOADS: dict[ExtensionKind, type] = {
    ExtensionKind.COMPUTED_FIELD: ComputedFieldSpec,
    ExtensionKind.METHOD: NamedCallable,
    ExtensionKind.STATIC: NamedCallable,
    ExtensionKind.QUERY_HELPER: QueryHelperSpec,
    ExtensionKind.HOOK: HookSpec,
    ExtensionKind.PLUGIN: PluginRecord,
    ExtensionKind.INDEX: IndexSpec,
    ExtensionKind.VALIDATOR: FieldValidatorSpec,
}


@dataclass
class FeatureSet:
    """Computed fields, indexes, hooks and helpers of one model."""

    computed_fields: list[ComputedFieldSpec] = dataclass_field(default_factory=list)
    indexes: list[IndexSpec] = dataclass_field(default_factory=list)
    hooks: list[HookSpec] = dataclass_field(default_factory=list)
    query_helpers: list[QueryHelperSpec] = dataclass_field(default_factory=list)
    methods: dict[str, Callable[..., Any]] = dataclass_field(default_factory=dict)
    statics: dict[str, Callable[..., Any]] = dataclass_field(default_factory=dict)
    plugins: list[PluginRecord] = dataclass_field(default_factory=list)
    validators: list[FieldValidatorSpec] = dataclass_field(default_factory=list)

    def computed(self, name: str) -> Optional[ComputedFieldSpec]:
        for spec in self.computed_fields:
            if spec.name == name:
                return spec
        return None

    def computed_names(self) -> list[str]:
        return [spec.name for spec in self.computed_fields]

    def hook_names(self) -> list[str]:
        return [spec.name for spec in self.hooks]

    def hooks_for(self, phase: HookPhase, operation: str) -> list[HookSpec]:
        """Hooks attached to an operation, in registration order."""
        return [spec for spec in self.hooks if spec.applies_to(phase, operation)]

    def query_helper(self, name: str) -> Optional[QueryHelperSpec]:
        for spec in self.query_helpers:
            if spec.name == name:
                return spec
        return None

    def index(self, keys: tuple[tuple[str, IndexDirection], ...]) -> Optional[IndexSpec]:
        for spec in self.indexes:
            if spec.keys == keys:
                return spec
        return None

    def upsert_computed(self, spec: ComputedFieldSpec) -> None:
        """Add a computed field, replacing any existing one of the same name."""
        for i, existing in enumerate(self.computed_fields):
            if existing.name == spec.name:
                self.computed_fields[i] = spec
                return
        self.computed_fields.append(spec)

    def upsert_hook(self, spec: HookSpec) -> None:
        """Add a hook; a synthesized hook of the same name is replaced."""
        for i, existing in enumerate(self.hooks):
            if existing.name == spec.name and existing.synthesized:
                self.hooks[i] = spec
                return
        self.hooks.append(spec)

    def upsert_query_helper(self, spec: QueryHelperSpec) -> None:
        for i, existing in enumerate(self.query_helpers):
            if existing.name == spec.name:
                self.query_helpers[i] = spec
                return
        self.query_helpers.append(spec)

    def upsert_index(self, spec: IndexSpec) -> None:
        """Add an index, replacing any existing one over the same keys."""
        for i, existing in enumerate(self.indexes):
            if existing.keys == spec.keys:
                self.indexes[i] = spec
                return
        self.indexes.append(spec)

    def validators_for(self, path: str) -> list[Validator]:
        return [spec.validator for spec in self.validators if spec.path == path]

    def copy(self) -> FeatureSet:
        """Copy with independent containers; specs themselves are shared."""
        return FeatureSet(
            computed_fields=list(self.computed_fields),
            indexes=list(self.indexes),
            hooks=list(self.hooks),
            query_helpers=list(self.query_helpers),
            methods=dict(self.methods),
            statics=dict(self.statics),
            plugins=list(self.plugins),
            validators=list(self.validators),
        )

    def apply_extension(self, kind: ExtensionKind, payload: Any) -> None:
        """Add one extension payload to this feature set.

        Raises:
            TypeError: If the payload type does not match the kind
        """
        expected = EXTENSION_PAYLOADS[kind]
        if not isinstance(payload, expected):
            raise TypeError(
                f"{kind.name} extension expects {expected.__name__}, got {type(payload).__name__}"
            )
        if kind == ExtensionKind.COMPUTED_FIELD:
            self.upsert_computed(payload)
        elif kind == ExtensionKind.METHOD:
            self.methods[payload.name] = payload.fn
        elif kind == ExtensionKind.STATIC:
            self.statics[payload.name] = payload.fn
        elif kind == ExtensionKind.QUERY_HELPER:
            self.upsert_query_helper(payload)
        elif kind == ExtensionKind.HOOK:
            self.upsert_hook(payload)
        elif kind == ExtensionKind.PLUGIN:
            self.plugins.append(payload)
        elif kind == ExtensionKind.INDEX:
            self.upsert_index(payload)
        else:
            self.validators.append(payload)

    def extensions(self) -> list[tuple[ExtensionKind, Any]]:
        """Every spec as a (kind, payload) pair, in collection order."""
        pairs: list[tuple[ExtensionKind, Any]] = []
        pairs.extend((ExtensionKind.COMPUTED_FIELD, s) for s in self.computed_fields)
        pairs.extend((ExtensionKind.INDEX, s) for s in self.indexes)
        pairs.extend((ExtensionKind.HOOK, s) for s in self.hooks)
        pairs.extend((ExtensionKind.QUERY_HELPER, s) for s in self.query_helpers)
        pairs.extend((ExtensionKind.METHOD, NamedCallable(n, fn)) for n, fn in self.methods.items())
        pairs.extend((ExtensionKind.STATIC, NamedCallable(n, fn)) for n, fn in self.statics.items())
        pairs.extend((ExtensionKind.VALIDATOR, s) for s in self.validators)
        pairs.extend((ExtensionKind.PLUGIN, s) for s in self.plugins)
        return pairs

    def to_dict(self) -> dict[str, Any]:
        return {
            "computed_fields": [s.to_dict() for s in self.computed_fields],
            "indexes": [s.to_dict() for s in self.indexes],
            "hooks": [s.to_dict() for s in self.hooks],
            "query_helpers": [s.to_dict() for s in self.query_helpers],
            "methods": sorted(self.methods),
            "statics": sorted(self.statics),
            "plugins": [{"name": p.name, "options": p.options} for p in self.plugins],
            "validators": [s.to_dict() for s in self.validators],
        }
