"""
Unit tests for the feature synthesizer.

Tests cover:
- Computed fields and name collisions
- Index synthesis and deduplication
- Hooks and query helpers
- Determinism and idempotence
"""

from datetime import datetime, timedelta, timezone

import pytest

from docshape.config import Settings
from docshape.features.handlers import AgeGetter, FullNameGetter, IdentityString
from docshape.features.specs import HookPhase
from docshape.features.synthesizer import (
    SYNTHESIS_RULES,
    SynthesisContext,
    shape,
    synthesize,
)
from docshape.runtime import Document
from docshape.schema.compiler import compile_schema


@pytest.fixture
def settings():
    return Settings()


def features_for(descriptor, options=None, settings=None):
    settings = settings or Settings()
    return synthesize(compile_schema(descriptor, options, settings=settings), settings=settings)


def index_names(features):
    return [index.name for index in features.indexes]


class TestShapeMatching:
    """Tests for field shape normalization."""

    def test_shape_ignores_case_and_underscores(self):
        assert shape("first_name") == shape("firstName") == shape("FIRSTNAME") == "firstname"

    def test_find_prefers_shape_priority(self, settings):
        tree = compile_schema({"surname": "string", "lastName": "string"}, settings=settings)
        ctx = SynthesisContext(tree=tree, settings=settings)
        assert ctx.find_text(("lastname", "surname")) == "lastName"


class TestEndToEnd:
    """Tests for a small user schema."""

    def test_user_schema(self):
        """{name, email!!, age?} gets no fullName and a unique email index."""
        features = features_for({"name": "string!", "email": "email!!", "age": "number?"})

        assert features.computed_names() == ["id", "createdAtFormatted", "updatedAtFormatted"]
        assert "fullName" not in features.computed_names()

        email_index = features.indexes[0]
        assert email_index.keys == (("email", 1),)
        assert email_index.unique is True
        assert email_index.sparse is False

        assert index_names(features) == ["email_1", "name_text", "createdAt_-1", "updatedAt_-1"]
        assert features.hook_names() == ["slugify", "touchUpdatedAt", "logSaved", "logRemoved"]
        assert [h.name for h in features.query_helpers] == ["recent"]


class TestComputedFields:
    """Tests for computed field synthesis."""

    def test_identity(self):
        features = features_for({"name": "string"})
        spec = features.computed("id")
        assert spec.getter == IdentityString()
        assert spec.getter({"_id": 7}) == "7"
        assert spec.synthesized is True

    def test_identity_alias_option(self):
        features = features_for({"name": "string"}, {"serialize_identity_as": "uid"})
        assert features.computed("uid") is not None
        assert features.computed("id") is None

    def test_full_name(self):
        features = features_for({"first_name": "string", "last_name": "string"})
        spec = features.computed("fullName")
        assert spec.getter == FullNameGetter("first_name", "last_name")
        doc = Document({"first_name": "Ada", "last_name": "Lovelace"})
        assert spec.getter(doc) == "Ada Lovelace"
        spec.setter(doc, "Grace Brewster Hopper")
        assert doc["first_name"] == "Grace"
        assert doc["last_name"] == "Brewster Hopper"

    def test_full_name_collision_skipped(self):
        """A declared fullName field is never shadowed."""
        features = features_for(
            {"firstName": "string", "lastName": "string", "fullName": "string"}
        )
        assert features.computed("fullName") is None

    def test_full_name_requires_text_parts(self):
        features = features_for({"firstName": "number", "lastName": "string"})
        assert features.computed("fullName") is None

    def test_age(self):
        """Thirty 365.25-day years give age 30."""
        features = features_for({"birthDate": "date"})
        spec = features.computed("age")
        assert spec.getter == AgeGetter(("birthDate",))

        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        birth = now - timedelta(days=365.25 * 30)
        assert spec.getter({"birthDate": birth}, now=now) == 30
        assert spec.getter({"birthDate": birth + timedelta(seconds=1)}, now=now) == 29
        assert spec.getter({}, now=now) is None

    def test_age_needs_date_field(self):
        features = features_for({"dob": "string"})
        assert features.computed("age") is None

    def test_declared_age_not_shadowed(self):
        features = features_for({"dob": "date", "age": "number"})
        assert features.computed("age") is None

    def test_formatted_timestamps(self):
        features = features_for({"name": "string"}, settings=Settings(date_format="%d/%m/%Y"))
        spec = features.computed("createdAtFormatted")
        assert spec.getter({"createdAt": datetime(2024, 3, 5)}) == "05/03/2024"
        assert spec.getter({}) is None

    def test_no_timestamps_no_formatted(self):
        features = features_for({"name": "string"}, {"timestamps": False})
        assert features.computed_names() == ["id"]


class TestIndexes:
    """Tests for index synthesis."""

    def test_unique_sparse_when_optional(self):
        features = features_for({"code": {"type": str, "unique": True}}, {"timestamps": False})
        index = features.indexes[0]
        assert index.unique is True
        assert index.sparse is True

    def test_plain_email_gets_unique_index(self):
        features = features_for({"email": "email", "name": "string"}, {"timestamps": False})
        index = features.indexes[0]
        assert index.name == "email_1"
        assert index.unique is True
        assert index.sparse is True

    def test_email_index_needs_text_field(self):
        features = features_for({"email": {"type": int}}, {"timestamps": False})
        assert index_names(features) == []

    def test_declared_index(self):
        features = features_for({"sku": {"type": str, "index": True}}, {"timestamps": False})
        assert index_names(features) == ["sku_1"]

    def test_text_index_weights(self):
        features = features_for(
            {"description": "string", "title": "string", "name": "string"},
            {"timestamps": False},
        )
        index = features.indexes[0]
        assert index.keys == (("name", "text"), ("title", "text"), ("description", "text"))
        assert index.weights == {"name": 10, "title": 5, "description": 1}

    def test_status_recency(self):
        features = features_for({"status": "string"})
        assert "status_1_createdAt_-1" in index_names(features)

    def test_status_needs_timestamps(self):
        features = features_for({"status": "string"}, {"timestamps": False})
        assert index_names(features) == []

    def test_category_price(self):
        features = features_for({"category": "string", "price": "number"}, {"timestamps": False})
        assert index_names(features) == ["category_1_price_1"]

    def test_owner_recency(self):
        features = features_for({"author": "userRef"})
        assert "author_1_createdAt_-1" in index_names(features)

    def test_ttl(self):
        features = features_for({"expiresAt": "date"}, {"timestamps": False})
        index = features.indexes[0]
        assert index.keys == (("expiresAt", 1),)
        assert index.expire_after_seconds == 0
        assert index.to_dict()["expireAfterSeconds"] == 0

    def test_geo(self):
        features = features_for({"location": "mixed"}, {"timestamps": False})
        assert features.indexes[0].keys == (("location", "2dsphere"),)

    def test_active_partial_wins_over_boolean_index(self):
        """Duplicate key sets keep the first synthesized index."""
        features = features_for({"isActive": "boolean+"}, {"timestamps": False})
        assert len(features.indexes) == 1
        assert features.indexes[0].partial_filter == {"isActive": True}

    def test_boolean_flags(self):
        features = features_for({"isFeatured": "boolean+", "isDigital": "boolean"}, {"timestamps": False})
        assert index_names(features) == ["isFeatured_1", "isDigital_1"]

    def test_recency_indexes(self):
        features = features_for({"count": "number"})
        assert index_names(features) == ["createdAt_-1", "updatedAt_-1"]


class TestHooksAndHelpers:
    """Tests for hook and query helper synthesis."""

    def test_password_hook(self):
        features = features_for({"password": "password"}, settings=Settings(password_hash_rounds=4))
        hook = next(h for h in features.hooks if h.name == "hashPassword")
        assert hook.phase == HookPhase.PRE
        assert hook.operations == ("save",)
        assert hook.handler.rounds == 4

    def test_slug_hook_skipped_for_non_text_slug(self):
        features = features_for({"title": "string", "slug": "number"})
        assert "slugify" not in features.hook_names()

    def test_slug_hook_sources(self):
        features = features_for({"title": "string", "name": "string", "slug": "string"})
        hook = next(h for h in features.hooks if h.name == "slugify")
        assert hook.handler.sources == ("name", "title")

    def test_touch_updated_at_operations(self):
        features = features_for({"name": "string"})
        assert [h.name for h in features.hooks_for(HookPhase.PRE, "updateMany")] == ["touchUpdatedAt"]
        assert [h.name for h in features.hooks_for(HookPhase.PRE, "findOneAndUpdate")] == ["touchUpdatedAt"]

    def test_log_hooks(self):
        features = synthesize(compile_schema({"name": "string"}), model_name="User")
        saved = next(h for h in features.hooks if h.name == "logSaved")
        assert saved.phase == HookPhase.POST
        assert saved.handler.model == "User"
        removed = next(h for h in features.hooks if h.name == "logRemoved")
        assert removed.operations == ("deleteOne", "findOneAndDelete")

    def test_soft_delete(self):
        features = features_for({"isDeleted": "boolean+"})
        hook = next(h for h in features.hooks if h.name == "excludeSoftDeleted")
        assert hook.operations == ("aggregate",)
        assert hook.handler([{"$sort": {"a": 1}}])[0] == {"$match": {"isDeleted": {"$ne": True}}}
        assert features.query_helper("notDeleted").builder() == {"isDeleted": {"$ne": True}}

    def test_no_soft_delete_without_flag(self):
        features = features_for({"name": "string"})
        assert "excludeSoftDeleted" not in features.hook_names()

    def test_recent_helper_window(self):
        features = features_for({"name": "string"}, settings=Settings(recent_window_days=3))
        now = datetime(2024, 1, 10, tzinfo=timezone.utc)
        query = features.query_helper("recent").builder(now=now)
        assert query == {"createdAt": {"$gte": datetime(2024, 1, 7, tzinfo=timezone.utc)}}

    def test_popular_helper(self):
        features = features_for({"viewCount": "number+"})
        builder = features.query_helper("popular").builder
        assert builder() == {"viewCount": {"$gte": 100}}
        assert builder(5) == {"viewCount": {"$gte": 5}}

    def test_active_helper(self):
        features = features_for({"active": "boolean+"})
        assert features.query_helper("active").builder() == {"active": True}

    def test_no_timestamps_no_time_features(self):
        features = features_for({"name": "string"}, {"timestamps": False})
        assert "touchUpdatedAt" not in features.hook_names()
        assert features.query_helper("recent") is None


class TestDeterminism:
    """Tests for determinism and idempotence."""

    def test_same_tree_same_features(self, settings):
        tree = compile_schema({"firstName": "string", "lastName": "string", "isActive": "boolean+"})
        assert synthesize(tree, settings=settings) == synthesize(tree, settings=settings)

    def test_equal_trees_equal_features(self, settings):
        descriptor = {"title": "string!", "status": "string", "viewCount": "number+"}
        first = synthesize(compile_schema(descriptor), settings=settings)
        second = synthesize(compile_schema(dict(descriptor)), settings=settings)
        assert first == second
        assert first.to_dict() == second.to_dict()

    def test_rules_are_named_and_unique(self):
        names = [rule.name for rule in SYNTHESIS_RULES]
        assert len(names) == len(set(names))

    def test_rule_applies_independently(self, settings):
        tree = compile_schema({"category": "string", "price": "number"}, settings=settings)
        ctx = SynthesisContext(tree=tree, settings=settings)
        rule = next(r for r in SYNTHESIS_RULES if r.name == "category_price")
        assert [spec.name for spec in rule.apply(ctx)] == ["category_1_price_1"]
        ttl = next(r for r in SYNTHESIS_RULES if r.name == "ttl")
        assert ttl.apply(ctx) == []
