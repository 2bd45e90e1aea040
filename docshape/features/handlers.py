"""
Callable handlers used by synthesized features.

Every handler is a frozen dataclass so synthesized feature sets compare
equal by value across runs. Document handlers accept any object that
supports mapping access (get, __setitem__) and is_modified(path), such as
docshape.runtime.Document.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

from passlib.context import CryptContext

logger = logging.getLogger(__name__)

DAYS_PER_YEAR = 365.25
SECONDS_PER_YEAR = DAYS_PER_YEAR * 24 * 60 * 60

DEFAULT_BCRYPT_ROUNDS = 12

_NON_SLUG_RE = re.compile(r"[^a-z0-9]")
_DASH_RUN_RE = re.compile(r"-+")

_default_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def _as_utc(value: date | datetime) -> datetime:
    if not isinstance(value, datetime):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def slugify(text: str) -> str:
    """Lowercase, map non-alphanumerics to '-', collapse runs, trim edge dashes.

    Example:
        >>> slugify("Hello, World!")
        'hello-world'
    """
    slug = _NON_SLUG_RE.sub("-", text.lower())
    return _DASH_RUN_RE.sub("-", slug).strip("-")


def password_context(rounds: int = DEFAULT_BCRYPT_ROUNDS) -> CryptContext:
    """bcrypt context used by the hashPassword hook."""
    return CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)


def hash_password(raw: str, rounds: int = DEFAULT_BCRYPT_ROUNDS) -> str:
    """Hash a password with bcrypt, e.g. '$2b$12$...'."""
    return password_context(rounds).hash(raw)


def is_hashed(value: str) -> bool:
    return _default_context.identify(value, required=False) is not None


def verify_password(raw: str, hashed: str) -> bool:
    """Check a raw password against a value produced by hash_password()."""
    if not is_hashed(hashed):
        return False
    return _default_context.verify(raw, hashed)


# ==================== computed field getters/setters ====================


@dataclass(frozen=True)
class IdentityString:
    """Identity field rendered as a string."""

    identity_field: str = "_id"

    def __call__(self, doc: Any) -> Optional[str]:
        value = doc.get(self.identity_field)
        return None if value is None else str(value)


@dataclass(frozen=True)
class FullNameGetter:
    first: str
    last: str

    def __call__(self, doc: Any) -> str:
        return f"{doc.get(self.first) or ''} {doc.get(self.last) or ''}".strip()


@dataclass(frozen=True)
class FullNameSetter:
    """Split on spaces: first word to the first name, the rest to the last name."""

    first: str
    last: str

    def __call__(self, doc: Any, value: str) -> None:
        parts = value.split(" ")
        doc[self.first] = parts[0] or ""
        doc[self.last] = " ".join(parts[1:])


@dataclass(frozen=True)
class AgeGetter:
    """Elapsed whole years since the first set birth-date field.

    A year is approximated as 365.25 days, so the age can change up to a
    day before or after the actual birthday.
    """

    sources: tuple[str, ...]

    def __call__(self, doc: Any, now: Optional[datetime] = None) -> Optional[int]:
        birth = next((doc.get(s) for s in self.sources if doc.get(s) is not None), None)
        if birth is None:
            return None
        now = _as_utc(now) if now is not None else datetime.now(timezone.utc)
        elapsed = (now - _as_utc(birth)).total_seconds()
        return math.floor(elapsed / SECONDS_PER_YEAR)


@dataclass(frozen=True)
class FormattedDate:
    source: str
    date_format: str = "%Y-%m-%d"

    def __call__(self, doc: Any) -> Optional[str]:
        value = doc.get(self.source)
        if value is None:
            return None
        return value.strftime(self.date_format)


# ==================== hooks ====================


@dataclass(frozen=True)
class SlugHook:
    """Derive a slug from the first set source field.

    Runs only when a source field was modified and no slug is present.
    """

    sources: tuple[str, ...]
    target: str = "slug"

    def __call__(self, doc: Any) -> None:
        if not any(doc.is_modified(s) for s in self.sources):
            return
        source = next((doc.get(s) for s in self.sources if doc.get(s)), None)
        if source and not doc.get(self.target):
            doc[self.target] = slugify(str(source))


@dataclass(frozen=True)
class PasswordHashHook:
    """Replace a modified plaintext password with its bcrypt hash."""

    field: str = "password"
    rounds: int = DEFAULT_BCRYPT_ROUNDS

    def __call__(self, doc: Any) -> None:
        if not doc.is_modified(self.field):
            return
        value = doc.get(self.field)
        if not value or is_hashed(value):
            return
        doc[self.field] = hash_password(value, self.rounds)


@dataclass(frozen=True)
class TouchUpdatedAt:
    """Set the modification timestamp on an update document."""

    field: str = "updatedAt"

    def __call__(self, update: dict[str, Any]) -> dict[str, Any]:
        now = datetime.now(timezone.utc)
        if any(key.startswith("$") for key in update):
            update.setdefault("$set", {})[self.field] = now
        else:
            update[self.field] = now
        return update


@dataclass(frozen=True)
class LogDocumentEvent:
    """Observability callback for writes and deletes."""

    model: str
    action: str

    def __call__(self, doc: Any) -> None:
        logger.debug(f"{self.model} {self.action}: {doc.get('_id')}")


@dataclass(frozen=True)
class ExcludeSoftDeleted:
    """Prepend a stage excluding soft-deleted documents to a pipeline."""

    field: str

    @property
    def stage(self) -> dict[str, Any]:
        return {"$match": {self.field: {"$ne": True}}}

    def __call__(self, pipeline: list[dict[str, Any]]) -> list[dict[str, Any]]:
        stage = self.stage
        if not pipeline or pipeline[0] != stage:
            pipeline.insert(0, stage)
        return pipeline


# ==================== query helper builders ====================


@dataclass(frozen=True)
class RecentFilter:
    field: str
    default_days: int = 7

    def __call__(self, days: Optional[int] = None, now: Optional[datetime] = None) -> dict[str, Any]:
        now = now or datetime.now(timezone.utc)
        window = self.default_days if days is None else days
        return {self.field: {"$gte": now - timedelta(days=window)}}


@dataclass(frozen=True)
class PopularFilter:
    field: str
    default_threshold: int = 100

    def __call__(self, threshold: Optional[int] = None) -> dict[str, Any]:
        limit = self.default_threshold if threshold is None else threshold
        return {self.field: {"$gte": limit}}


@dataclass(frozen=True)
class FlagFilter:
    field: str
    value: Any = True

    def __call__(self) -> dict[str, Any]:
        return {self.field: self.value}


@dataclass(frozen=True)
class NotDeletedFilter:
    field: str

    def __call__(self) -> dict[str, Any]:
        return {self.field: {"$ne": True}}
