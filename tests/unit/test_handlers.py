"""
Unit tests for synthesized feature handlers.

Tests cover:
- slugify and password hashing helpers
- Computed field getters and setters
- Hook handlers
- Query helper builders
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from docshape.features.handlers import (
    AgeGetter,
    ExcludeSoftDeleted,
    FormattedDate,
    FullNameGetter,
    FullNameSetter,
    PasswordHashHook,
    RecentFilter,
    SlugHook,
    TouchUpdatedAt,
    hash_password,
    is_hashed,
    slugify,
    verify_password,
)
from docshape.runtime import Document

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class TestSlugify:
    """Tests for slugify()."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("Hello, World!", "hello-world"),
            ("  --Already--slug ", "already-slug"),
            ("Café au lait", "caf-au-lait"),
            ("2024 Report", "2024-report"),
        ],
    )
    def test_slugify(self, text, expected):
        assert slugify(text) == expected


class TestPasswords:
    """Tests for password hashing helpers."""

    def test_hash_and_verify(self):
        hashed = hash_password("s3cret!", rounds=4)
        assert hashed.startswith("$2b$04$")
        assert is_hashed(hashed)
        assert verify_password("s3cret!", hashed)
        assert not verify_password("wrong", hashed)

    def test_salt_differs(self):
        assert hash_password("same", 4) != hash_password("same", 4)

    def test_plaintext_is_not_hashed(self):
        assert not is_hashed("plain-password")
        assert not verify_password("plain-password", "plain-password")

    def test_verify_uses_stored_cost(self):
        """A hash made with one cost factor verifies regardless of the default."""
        hashed = hash_password("s3cret!", rounds=5)
        assert hashed.startswith("$2b$05$")
        assert verify_password("s3cret!", hashed)

    def test_other_schemes_are_not_hashed(self):
        assert not is_hashed("pbkdf2_sha256$1000$salt$abcd")
        assert not is_hashed("hashed_secret123_1700000000")


class TestComputedHandlers:
    """Tests for getters and setters."""

    def test_full_name_trims_missing_part(self):
        getter = FullNameGetter("firstName", "lastName")
        assert getter({"firstName": "Ada"}) == "Ada"
        assert getter({}) == ""

    def test_full_name_setter_single_word(self):
        doc = {}
        FullNameSetter("firstName", "lastName")(doc, "Plato")
        assert doc == {"firstName": "Plato", "lastName": ""}

    def test_age_from_date(self):
        """Plain dates are read as midnight UTC."""
        getter = AgeGetter(("birthDate",))
        assert getter({"birthDate": date(2000, 1, 1)}, now=datetime(2010, 1, 1, tzinfo=timezone.utc)) == 10

    def test_age_naive_datetime(self):
        getter = AgeGetter(("dob",))
        birth = datetime(1994, 6, 1, 12, 0)
        assert getter({"dob": birth}, now=NOW) == 30
        assert getter({"dob": birth + timedelta(days=2)}, now=NOW) == 29

    def test_age_first_set_source(self):
        getter = AgeGetter(("birthDate", "dob"))
        assert getter({"birthDate": None, "dob": NOW - timedelta(days=3653)}, now=NOW) == 10

    def test_formatted_date(self):
        assert FormattedDate("createdAt")({"createdAt": datetime(2024, 3, 5)}) == "2024-03-05"


class TestHookHandlers:
    """Tests for hook handlers."""

    def test_slug_hook_sets_slug(self):
        doc = Document({"title": "Hello, World!"})
        SlugHook(("title",))(doc)
        assert doc["slug"] == "hello-world"

    def test_slug_hook_keeps_existing_slug(self):
        doc = Document({"title": "New title", "slug": "custom"})
        SlugHook(("title",))(doc)
        assert doc["slug"] == "custom"

    def test_slug_hook_needs_modified_source(self):
        doc = Document({"title": "Hello"}, is_new=False)
        SlugHook(("title",))(doc)
        assert "slug" not in doc

    def test_password_hook_hashes_once(self):
        hook = PasswordHashHook("password", rounds=4)
        doc = Document({"password": "secret123"})
        hook(doc)
        hashed = doc["password"]
        assert verify_password("secret123", hashed)
        hook(doc)
        assert doc["password"] == hashed

    def test_password_hook_skips_unmodified(self):
        doc = Document({"password": "secret123"}, is_new=False)
        PasswordHashHook("password", rounds=4)(doc)
        assert doc["password"] == "secret123"

    def test_touch_updated_at_with_operators(self):
        update = TouchUpdatedAt("updatedAt")({"$set": {"name": "x"}})
        assert update["$set"]["name"] == "x"
        assert isinstance(update["$set"]["updatedAt"], datetime)

    def test_touch_updated_at_adds_set(self):
        update = TouchUpdatedAt("updatedAt")({"$inc": {"views": 1}})
        assert "updatedAt" in update["$set"]

    def test_touch_updated_at_plain_update(self):
        update = TouchUpdatedAt("modified")({"name": "x"})
        assert isinstance(update["modified"], datetime)

    def test_exclude_soft_deleted_not_duplicated(self):
        handler = ExcludeSoftDeleted("isDeleted")
        pipeline = handler([])
        pipeline = handler(pipeline)
        assert pipeline == [{"$match": {"isDeleted": {"$ne": True}}}]


class TestQueryBuilders:
    """Tests for query helper builders."""

    def test_recent_default_window(self):
        query = RecentFilter("createdAt", 7)(now=NOW)
        assert query == {"createdAt": {"$gte": NOW - timedelta(days=7)}}

    def test_recent_explicit_window(self):
        query = RecentFilter("createdAt", 7)(days=0, now=NOW)
        assert query == {"createdAt": {"$gte": NOW}}
