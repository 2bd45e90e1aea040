"""
Feature synthesizer for docshape.

Derives computed fields, indexes, lifecycle hooks and query helpers from
the field names and shapes of a compiled schema tree.

Synthesis is an ordered list of rules (SYNTHESIS_RULES). Each rule has a
predicate over the tree and a builder returning the specs it contributes.
Rules are applied in order; the synthesizer drops computed fields whose
name collides with a declared field and index key sets already produced by
an earlier rule.

Field shapes are matched case-insensitively with underscores ignored, so
"first_name", "firstName" and "FIRSTNAME" are the same shape.

Invariants:
    - synthesize() is a pure function of the tree and the settings it reads
    - Equal trees produce equal feature sets
    - A declared field is never shadowed by a computed field
    - Synthesis never fails

How to change safely:
    - Add new rules at the end of SYNTHESIS_RULES so existing index and
      hook order is preserved
    - Keep handlers frozen dataclasses so feature sets compare by value
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Callable, Optional, Union

from ..config import Settings, get_settings
from ..schema.types import BaseType, FieldDescriptor, SchemaTree
from .handlers import (
    AgeGetter,
    ExcludeSoftDeleted,
    FlagFilter,
    FormattedDate,
    FullNameGetter,
    FullNameSetter,
    IdentityString,
    LogDocumentEvent,
    NotDeletedFilter,
    PasswordHashHook,
    PopularFilter,
    RecentFilter,
    SlugHook,
    TouchUpdatedAt,
)
from .specs import ComputedFieldSpec, FeatureSet, HookPhase, HookSpec, IndexSpec, QueryHelperSpec

logger = logging.getLogger(__name__)

Spec = Union[ComputedFieldSpec, IndexSpec, HookSpec, QueryHelperSpec]

FIRST_NAME_SHAPES = ("firstname", "givenname")
LAST_NAME_SHAPES = ("lastname", "surname", "familyname")
BIRTH_DATE_SHAPES = ("birthdate", "dob", "dateofbirth")
OWNER_SHAPES = ("owner", "author", "user", "userid", "createdby")
EXPIRY_SHAPES = ("expiresat", "expireat", "expiry")
LOCATION_SHAPES = ("location", "coordinates", "geo")
ACTIVE_SHAPES = ("isactive", "active")
DELETED_SHAPES = ("isdeleted", "deleted")
VIEW_COUNT_SHAPES = ("viewcount", "views")
SLUG_SOURCE_SHAPES = ("name", "title")

# Text index weights by field shape, in index key order
TEXT_WEIGHTS = (("name", 10), ("title", 5), ("description", 1))

SLUG_FIELD = "slug"
PASSWORD_FIELD = "password"
EMAIL_FIELD = "email"
UPDATE_OPERATIONS = ("updateOne", "updateMany", "findOneAndUpdate")
REMOVE_OPERATIONS = ("deleteOne", "findOneAndDelete")


def shape(name: str) -> str:
    """Normalize a field name for shape matching."""
    return name.replace("_", "").lower()


@dataclass(frozen=True)
class SynthesisContext:
    """Read-only view of the tree handed to every rule."""

    tree: SchemaTree
    settings: Settings
    model_name: str = "Document"

    def find(
        self,
        shapes: Iterable[str],
        base_type: Optional[BaseType] = None,
    ) -> Optional[str]:
        """First top-level leaf matching one of the shapes.

        Shapes are tried in the given priority order; within a shape the
        first field in declaration order wins.
        """
        for wanted in shapes:
            for name, node in self.tree.fields.items():
                if not isinstance(node, FieldDescriptor) or shape(name) != wanted:
                    continue
                if base_type is None or node.base_type is base_type:
                    return name
        return None

    def find_text(self, shapes: Iterable[str]) -> Optional[str]:
        return self.find(shapes, BaseType.STRING)

    @property
    def timestamps(self) -> bool:
        return self.tree.options.timestamps

    @property
    def created_at(self) -> str:
        return self.tree.options.created_at_field

    @property
    def updated_at(self) -> str:
        return self.tree.options.updated_at_field

    def leaves(self) -> Iterable[tuple[str, FieldDescriptor]]:
        for name, node in self.tree.fields.items():
            if isinstance(node, FieldDescriptor):
                yield name, node


@dataclass(frozen=True)
class SynthesisRule:
    """One synthesis rule.

    Attributes:
        name: Rule name, used in logs and tests
        predicate: Whether the rule applies to the context
        build: Produces the specs the rule contributes
    """

    name: str
    predicate: Callable[[SynthesisContext], bool]
    build: Callable[[SynthesisContext], list[Spec]]

    def apply(self, ctx: SynthesisContext) -> list[Spec]:
        if not self.predicate(ctx):
            return []
        return self.build(ctx)


# ==================== computed fields ====================


def _identity(ctx: SynthesisContext) -> list[Spec]:
    alias = ctx.tree.options.serialize_identity_as
    return [ComputedFieldSpec(alias, getter=IdentityString(), synthesized=True)]


def _has_full_name_parts(ctx: SynthesisContext) -> bool:
    return bool(ctx.find_text(FIRST_NAME_SHAPES) and ctx.find_text(LAST_NAME_SHAPES))


def _full_name(ctx: SynthesisContext) -> list[Spec]:
    first = ctx.find_text(FIRST_NAME_SHAPES)
    last = ctx.find_text(LAST_NAME_SHAPES)
    return [
        ComputedFieldSpec(
            "fullName",
            getter=FullNameGetter(first, last),
            setter=FullNameSetter(first, last),
            synthesized=True,
        )
    ]


def _age(ctx: SynthesisContext) -> list[Spec]:
    sources = tuple(
        name
        for name, node in ctx.leaves()
        if node.base_type is BaseType.DATE and shape(name) in BIRTH_DATE_SHAPES
    )
    return [ComputedFieldSpec("age", getter=AgeGetter(sources), synthesized=True)]


def _formatted_timestamps(ctx: SynthesisContext) -> list[Spec]:
    return [
        ComputedFieldSpec(
            f"{source}Formatted",
            getter=FormattedDate(source, ctx.settings.date_format),
            synthesized=True,
        )
        for source in (ctx.created_at, ctx.updated_at)
    ]


# ==================== indexes ====================


def _unique_indexes(ctx: SynthesisContext) -> list[Spec]:
    return [
        IndexSpec.from_keys({name: 1}, unique=True, sparse=not node.required, synthesized=True)
        for name, node in ctx.leaves()
        if node.unique
    ]


def _email_index(ctx: SynthesisContext) -> list[Spec]:
    """Unique sparse index on an email field, declared unique or not."""
    email = ctx.find_text((EMAIL_FIELD,))
    return [IndexSpec.from_keys({email: 1}, unique=True, sparse=True, synthesized=True)]


def _declared_indexes(ctx: SynthesisContext) -> list[Spec]:
    return [
        IndexSpec.from_keys({name: 1}, sparse=node.sparse, synthesized=True)
        for name, node in ctx.leaves()
        if node.index
    ]


def _text_index(ctx: SynthesisContext) -> list[Spec]:
    weights: dict[str, int] = {}
    for wanted, weight in TEXT_WEIGHTS:
        name = ctx.find_text((wanted,))
        if name is not None:
            weights[name] = weight
    if not weights:
        return []
    return [
        IndexSpec.from_keys(
            [(name, "text") for name in weights], weights=weights, synthesized=True
        )
    ]


def _recency_indexes(ctx: SynthesisContext) -> list[Spec]:
    return [
        IndexSpec.from_keys({ctx.created_at: -1}, synthesized=True),
        IndexSpec.from_keys({ctx.updated_at: -1}, synthesized=True),
    ]


def _status_recency(ctx: SynthesisContext) -> list[Spec]:
    status = ctx.find(("status",))
    return [IndexSpec.from_keys([(status, 1), (ctx.created_at, -1)], synthesized=True)]


def _category_price(ctx: SynthesisContext) -> list[Spec]:
    category = ctx.find(("category",))
    price = ctx.find(("price",))
    return [IndexSpec.from_keys([(category, 1), (price, 1)], synthesized=True)]


def _owner_recency(ctx: SynthesisContext) -> list[Spec]:
    owner = ctx.find(OWNER_SHAPES)
    return [IndexSpec.from_keys([(owner, 1), (ctx.created_at, -1)], synthesized=True)]


def _ttl(ctx: SynthesisContext) -> list[Spec]:
    expiry = ctx.find(EXPIRY_SHAPES, BaseType.DATE)
    return [IndexSpec.from_keys({expiry: 1}, expire_after_seconds=0, synthesized=True)]


def _geo(ctx: SynthesisContext) -> list[Spec]:
    location = next(
        (name for name in ctx.tree.fields if shape(name) in LOCATION_SHAPES), None
    )
    return [IndexSpec.from_keys({location: "2dsphere"}, synthesized=True)]


def _active_partial(ctx: SynthesisContext) -> list[Spec]:
    flag = ctx.find(ACTIVE_SHAPES, BaseType.BOOLEAN)
    return [IndexSpec.from_keys({flag: 1}, partial_filter={flag: True}, synthesized=True)]


def _boolean_flags(ctx: SynthesisContext) -> list[Spec]:
    return [
        IndexSpec.from_keys({name: 1}, synthesized=True)
        for name, node in ctx.leaves()
        if node.base_type is BaseType.BOOLEAN
    ]


# ==================== hooks ====================


def _can_slugify(ctx: SynthesisContext) -> bool:
    if ctx.find_text(SLUG_SOURCE_SHAPES) is None:
        return False
    declared = ctx.tree.fields.get(SLUG_FIELD)
    return declared is None or (isinstance(declared, FieldDescriptor) and declared.is_text)


def _slug_hook(ctx: SynthesisContext) -> list[Spec]:
    found = (ctx.find_text((wanted,)) for wanted in SLUG_SOURCE_SHAPES)
    sources = tuple(name for name in found if name is not None)
    return [
        HookSpec(
            "slugify",
            HookPhase.PRE,
            ("save",),
            SlugHook(sources, SLUG_FIELD),
            synthesized=True,
        )
    ]


def _password_hook(ctx: SynthesisContext) -> list[Spec]:
    return [
        HookSpec(
            "hashPassword",
            HookPhase.PRE,
            ("save",),
            PasswordHashHook(PASSWORD_FIELD, ctx.settings.password_hash_rounds),
            synthesized=True,
        )
    ]


def _touch_updated_at(ctx: SynthesisContext) -> list[Spec]:
    return [
        HookSpec(
            "touchUpdatedAt",
            HookPhase.PRE,
            UPDATE_OPERATIONS,
            TouchUpdatedAt(ctx.updated_at),
            synthesized=True,
        )
    ]


def _log_hooks(ctx: SynthesisContext) -> list[Spec]:
    return [
        HookSpec(
            "logSaved",
            HookPhase.POST,
            ("save",),
            LogDocumentEvent(ctx.model_name, "saved"),
            synthesized=True,
        ),
        HookSpec(
            "logRemoved",
            HookPhase.POST,
            REMOVE_OPERATIONS,
            LogDocumentEvent(ctx.model_name, "removed"),
            synthesized=True,
        ),
    ]


def _soft_delete(ctx: SynthesisContext) -> list[Spec]:
    flag = ctx.find(DELETED_SHAPES, BaseType.BOOLEAN)
    return [
        HookSpec(
            "excludeSoftDeleted",
            HookPhase.PRE,
            ("aggregate",),
            ExcludeSoftDeleted(flag),
            synthesized=True,
        ),
        QueryHelperSpec("notDeleted", NotDeletedFilter(flag), synthesized=True),
    ]


# ==================== query helpers ====================


def _recent_helper(ctx: SynthesisContext) -> list[Spec]:
    builder = RecentFilter(ctx.created_at, ctx.settings.recent_window_days)
    return [QueryHelperSpec("recent", builder, synthesized=True)]


def _popular_helper(ctx: SynthesisContext) -> list[Spec]:
    field = ctx.find(VIEW_COUNT_SHAPES, BaseType.NUMBER)
    builder = PopularFilter(field, ctx.settings.popular_threshold)
    return [QueryHelperSpec("popular", builder, synthesized=True)]


def _active_helper(ctx: SynthesisContext) -> list[Spec]:
    flag = ctx.find(ACTIVE_SHAPES, BaseType.BOOLEAN)
    return [QueryHelperSpec("active", FlagFilter(flag, True), synthesized=True)]


def _always(ctx: SynthesisContext) -> bool:
    return True


def _with_timestamps(ctx: SynthesisContext) -> bool:
    return ctx.timestamps


SYNTHESIS_RULES: tuple[SynthesisRule, ...] = (
    # computed fields
    SynthesisRule("identity_string", _always, _identity),
    SynthesisRule("full_name", _has_full_name_parts, _full_name),
    SynthesisRule(
        "age", lambda ctx: ctx.find(BIRTH_DATE_SHAPES, BaseType.DATE) is not None, _age
    ),
    SynthesisRule("formatted_timestamps", _with_timestamps, _formatted_timestamps),
    # indexes
    SynthesisRule("unique_indexes", _always, _unique_indexes),
    SynthesisRule(
        "email_index", lambda ctx: ctx.find_text((EMAIL_FIELD,)) is not None, _email_index
    ),
    SynthesisRule("declared_indexes", _always, _declared_indexes),
    SynthesisRule("text_index", _always, _text_index),
    SynthesisRule("recency_indexes", _with_timestamps, _recency_indexes),
    SynthesisRule(
        "status_recency",
        lambda ctx: ctx.timestamps and ctx.find(("status",)) is not None,
        _status_recency,
    ),
    SynthesisRule(
        "category_price",
        lambda ctx: ctx.find(("category",)) is not None and ctx.find(("price",)) is not None,
        _category_price,
    ),
    SynthesisRule(
        "owner_recency",
        lambda ctx: ctx.timestamps and ctx.find(OWNER_SHAPES) is not None,
        _owner_recency,
    ),
    SynthesisRule(
        "ttl", lambda ctx: ctx.find(EXPIRY_SHAPES, BaseType.DATE) is not None, _ttl
    ),
    SynthesisRule(
        "geo", lambda ctx: any(shape(n) in LOCATION_SHAPES for n in ctx.tree.fields), _geo
    ),
    SynthesisRule(
        "active_partial",
        lambda ctx: ctx.find(ACTIVE_SHAPES, BaseType.BOOLEAN) is not None,
        _active_partial,
    ),
    SynthesisRule("boolean_flags", _always, _boolean_flags),
    # hooks
    SynthesisRule("slugify", _can_slugify, _slug_hook),
    SynthesisRule(
        "hash_password", lambda ctx: ctx.find_text((PASSWORD_FIELD,)) is not None, _password_hook
    ),
    SynthesisRule("touch_updated_at", _with_timestamps, _touch_updated_at),
    SynthesisRule("log_events", _always, _log_hooks),
    SynthesisRule(
        "soft_delete",
        lambda ctx: ctx.find(DELETED_SHAPES, BaseType.BOOLEAN) is not None,
        _soft_delete,
    ),
    # query helpers
    SynthesisRule("recent", _with_timestamps, _recent_helper),
    SynthesisRule(
        "popular",
        lambda ctx: ctx.find(VIEW_COUNT_SHAPES, BaseType.NUMBER) is not None,
        _popular_helper,
    ),
    SynthesisRule(
        "active", lambda ctx: ctx.find(ACTIVE_SHAPES, BaseType.BOOLEAN) is not None, _active_helper
    ),
)


def synthesize(
    tree: SchemaTree,
    *,
    model_name: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> FeatureSet:
    """Derive the feature set of a compiled schema tree.

    Args:
        tree: Compiled schema tree
        model_name: Model name used by the logging hooks
        settings: Settings to use (process settings if not provided)

    Returns:
        FeatureSet with synthesized computed fields, indexes, hooks and
        query helpers

    Example:
        >>> from docshape.schema.compiler import compile_schema
        >>> features = synthesize(compile_schema({"email": "email!!"}))
        >>> features.indexes[0].to_dict()
        {'name': 'email_1', 'keys': {'email': 1}, 'unique': True}
    """
    ctx = SynthesisContext(
        tree=tree,
        settings=settings or get_settings(),
        model_name=model_name or "Document",
    )
    features = FeatureSet()

    for rule in SYNTHESIS_RULES:
        for spec in rule.apply(ctx):
            if isinstance(spec, ComputedFieldSpec):
                if spec.name in tree or features.computed(spec.name) is not None:
                    logger.debug(f"Skipping computed field '{spec.name}': name already declared")
                    continue
                features.computed_fields.append(spec)
            elif isinstance(spec, IndexSpec):
                if features.index(spec.keys) is None:
                    features.indexes.append(spec)
            elif isinstance(spec, HookSpec):
                features.hooks.append(spec)
            else:
                features.query_helpers.append(spec)

    logger.debug(
        f"Synthesized {len(features.computed_fields)} computed fields, "
        f"{len(features.indexes)} indexes, {len(features.hooks)} hooks, "
        f"{len(features.query_helpers)} query helpers for {ctx.model_name}"
    )
    return features
