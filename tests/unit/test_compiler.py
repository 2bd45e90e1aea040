"""
Unit tests for the schema compiler.

Tests cover:
- Field order and timestamp fields
- Schema options and settings defaults
- Serialization transform
- Fingerprints
"""

import uuid

import pytest

from docshape.config import Settings
from docshape.errors import SchemaDefinitionError
from docshape.schema.compiler import compile_schema, resolve_options
from docshape.schema.types import (
    NOW,
    ArrayOf,
    BaseType,
    EmbeddedTree,
    FieldDescriptor,
    SchemaOptions,
)


class TestCompileSchema:
    """Tests for compile_schema()."""

    def test_field_order_preserved(self):
        """Fields keep declaration order, timestamps are appended."""
        tree = compile_schema({"name": "string!", "email": "email!!", "age": "number?"})
        assert tree.field_names() == ["name", "email", "age", "createdAt", "updatedAt"]

    def test_timestamp_fields(self):
        tree = compile_schema({"name": "string"})
        created = tree.leaf("createdAt")
        assert created.base_type == BaseType.DATE
        assert created.default == NOW

    def test_timestamps_disabled(self):
        tree = compile_schema({"name": "string"}, {"timestamps": False})
        assert tree.field_names() == ["name"]

    def test_declared_timestamp_kept(self):
        """A user-declared createdAt is not replaced."""
        tree = compile_schema({"createdAt": "date!"})
        assert tree.leaf("createdAt").required is True
        assert tree.field_names() == ["createdAt", "updatedAt"]

    def test_custom_timestamp_names(self):
        tree = compile_schema(
            {"name": "string"},
            {"created_at_field": "created", "updated_at_field": "modified"},
        )
        assert tree.field_names() == ["name", "created", "modified"]

    def test_nested_paths(self):
        tree = compile_schema(
            {"address": {"city": "string!", "geo": {"lat": "number"}}, "tags": ["string"]},
            {"timestamps": False},
        )
        assert [p for p, _ in tree.paths()] == ["address.city", "address.geo.lat", "tags"]
        assert isinstance(tree.get("address"), EmbeddedTree)
        assert isinstance(tree.get("tags"), ArrayOf)
        assert isinstance(tree.get("address.geo.lat"), FieldDescriptor)
        assert tree.get("address.missing") is None

    def test_non_mapping_descriptor_raises(self):
        with pytest.raises(SchemaDefinitionError, match="must be a mapping"):
            compile_schema(["name"])

    def test_invalid_field_name_raises(self):
        with pytest.raises(SchemaDefinitionError, match="cannot start with"):
            compile_schema({"$where": "string"})

    def test_field_error_propagates(self):
        with pytest.raises(SchemaDefinitionError, match="price"):
            compile_schema({"price": {"type": "number", "min": 10, "max": 1}})

    def test_strict_tokens_setting(self):
        settings = Settings(strict_tokens=True)
        with pytest.raises(SchemaDefinitionError, match="Unknown shorthand token"):
            compile_schema({"name": "strnig"}, settings=settings)

    def test_lenient_tokens_by_default(self):
        tree = compile_schema({"name": "strnig"}, settings=Settings())
        assert tree.leaf("name").base_type == BaseType.STRING


class TestSchemaOptions:
    """Tests for option resolution."""

    def test_defaults_from_settings(self):
        settings = Settings(timestamps=False, serialize_identity_as="uid")
        options = resolve_options(None, settings)
        assert options.timestamps is False
        assert options.serialize_identity_as == "uid"

    def test_camel_case_keys(self):
        options = resolve_options(
            {"serializeIdentityAs": "key", "stripInternalFields": False}, Settings()
        )
        assert options.serialize_identity_as == "key"
        assert options.strip_internal_fields is False

    def test_explicit_options_object(self):
        options = SchemaOptions(timestamps=False)
        assert resolve_options(options, Settings()) is options

    def test_unknown_option_raises(self):
        with pytest.raises(SchemaDefinitionError, match="Unknown schema option"):
            compile_schema({"name": "string"}, {"timestamp": True})

    def test_non_mapping_options_raise(self):
        with pytest.raises(SchemaDefinitionError, match="options must be a mapping"):
            compile_schema({"name": "string"}, ["timestamps"])

    def test_empty_identity_alias_raises(self):
        with pytest.raises(SchemaDefinitionError, match="serialize_identity_as"):
            compile_schema({"name": "string"}, {"serialize_identity_as": ""})

    def test_same_timestamp_names_raise(self):
        with pytest.raises(SchemaDefinitionError, match="different names"):
            compile_schema({"name": "string"}, {"created_at_field": "ts", "updated_at_field": "ts"})


class TestSerializationTransform:
    """Tests for the output transform."""

    def test_identity_alias_and_internal_fields(self):
        tree = compile_schema({"name": "string"})
        output = tree.transform.apply({"_id": 42, "__v": 0, "name": "Ada"})
        assert output == {"id": "42", "name": "Ada"}

    def test_computed_values_merged(self):
        tree = compile_schema({"name": "string"})
        output = tree.transform.apply({"name": "Ada"}, {"greeting": "Hi Ada"})
        assert output["greeting"] == "Hi Ada"

    def test_stored_field_wins_over_computed(self):
        tree = compile_schema({"name": "string"})
        output = tree.transform.apply({"name": "Ada"}, {"name": "other"})
        assert output["name"] == "Ada"

    def test_keep_internal_fields(self):
        tree = compile_schema({"name": "string"}, {"strip_internal_fields": False})
        output = tree.transform.apply({"_id": 1, "__v": 3})
        assert output == {"_id": 1, "__v": 3, "id": "1"}

    def test_virtuals_excluded(self):
        tree = compile_schema({"name": "string"}, {"include_virtuals": False})
        assert "greeting" not in tree.transform.apply({}, {"greeting": "hi"})

    def test_input_not_modified(self):
        tree = compile_schema({"name": "string"})
        doc = {"_id": 1, "name": "Ada"}
        tree.transform.apply(doc)
        assert doc == {"_id": 1, "name": "Ada"}


class TestFingerprint:
    """Tests for tree fingerprints."""

    def test_fingerprint_format(self):
        fingerprint = compile_schema({"name": "string"}).fingerprint()
        assert fingerprint.startswith("sha256:")
        assert len(fingerprint) == len("sha256:") + 64

    def test_equal_descriptors_equal_fingerprints(self):
        a = compile_schema({"name": "string!", "tags": ["string"]})
        b = compile_schema({"name": "string!", "tags": ["string"]})
        assert a == b
        assert a.fingerprint() == b.fingerprint()

    def test_different_descriptors_differ(self):
        a = compile_schema({"name": "string!"})
        b = compile_schema({"name": "string"})
        assert a.fingerprint() != b.fingerprint()

    def test_to_dict(self):
        tree = compile_schema({"email": "email!!"}, {"timestamps": False})
        field = tree.to_dict()["fields"]["email"]
        assert field["type"] == "string"
        assert field["required"] is True
        assert field["unique"] is True
        assert field["lowercase"] is True

    def test_uuid_default_compiles(self):
        """Defaults without a JSON form are fingerprinted by their repr."""
        token = uuid.UUID(int=1)
        tree = compile_schema({"token": {"type": "string", "default": token}})
        assert tree.fields["token"].default == token
        assert tree.to_dict()["fields"]["token"]["default"] == repr(token)
        assert tree.fingerprint().startswith("sha256:")

    def test_set_default_is_order_independent(self):
        a = compile_schema({"tags": {"type": "mixed", "default": {"a", "b", "c"}}})
        b = compile_schema({"tags": {"type": "mixed", "default": {"c", "b", "a"}}})
        assert a.to_dict()["fields"]["tags"]["default"] == ["a", "b", "c"]
        assert a.fingerprint() == b.fingerprint()
