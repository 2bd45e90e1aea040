"""
Mapping runtime interface and in-memory reference runtime.

The registry hands every compiled tree and feature set to a ModelRuntime,
which turns them into a live model handle. Production runtimes wrap a
document store driver; InMemoryRuntime keeps documents in process memory
for unit tests, local development and the schema CLI.

Invariants:
    - materialize() is called at most once per model name
    - A handle owns a private copy of the feature set; later extensions
      reach it only through bind()
    - Every store failure leaving a handle is a normalized DocumentError

How to change safely:
    - Protocol changes require updating all runtimes
    - Keep InMemoryRuntime failures shaped like the store driver's
      (code 11000, ValidationError, InvalidId) so the error normalizer
      sees the same shapes in tests and production
"""

from __future__ import annotations

import copy
import logging
import re
import secrets
import threading
from abc import abstractmethod
from collections.abc import Iterator, Mapping, MutableMapping
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from .errors import ensure_found, translate_errors
from .features.specs import ExtensionKind, FeatureSet, HookPhase, IndexSpec
from .schema.types import ArrayOf, FieldDescriptor, SchemaNode, SchemaTree

logger = logging.getLogger(__name__)

IDENTITY_FIELD = "_id"

_IDENTITY_RE = re.compile(r"^[0-9a-f]{24}$")


# ==================== store failure shapes ====================


class WriteConflict(Exception):
    """Unique index violation, shaped like the store driver's code 11000 error."""

    def __init__(self, index_name: str, key_value: Dict[str, Any]) -> None:
        super().__init__(f"E11000 duplicate key error index: {index_name} dup key: {key_value}")
        self.code = 11000
        self.keyValue = key_value


class ValidationError(Exception):
    """Document failed field validation; errors maps path to message."""

    def __init__(self, errors: Dict[str, str]) -> None:
        super().__init__(", ".join(errors.values()))
        self.errors = errors


class InvalidId(Exception):
    """Identifier is not a 24-character hex string."""


# ==================== document view ====================


class Document(MutableMapping):
    """Mutable document with modification tracking.

    Every key set on a new document counts as modified until mark_clean().

    Example:
        >>> doc = Document({"name": "Ada"})
        >>> doc.is_modified("name")
        True
        >>> doc.mark_clean()
        >>> doc.is_modified("name")
        False
    """

    def __init__(self, data: Optional[Mapping[str, Any]] = None, *, is_new: bool = True) -> None:
        self._data: Dict[str, Any] = dict(data or {})
        self._modified = set(self._data) if is_new else set()
        self.is_new = is_new

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self._data[key] = value
        self._modified.add(key)

    def __delitem__(self, key: str) -> None:
        del self._data[key]
        self._modified.add(key)

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"Document({self._data!r})"

    def is_modified(self, path: Optional[str] = None) -> bool:
        """Whether a path (or, without a path, anything) was modified."""
        if path is None:
            return bool(self._modified)
        return path.split(".")[0] in self._modified

    def modified_paths(self) -> List[str]:
        return sorted(self._modified)

    def mark_clean(self) -> None:
        self._modified.clear()
        self.is_new = False

    def to_dict(self) -> Dict[str, Any]:
        return copy.deepcopy(self._data)


def get_path(data: Mapping[str, Any], path: str) -> Any:
    """Read a dotted path, returning None when any segment is missing."""
    value: Any = data
    for part in path.split("."):
        if not isinstance(value, Mapping):
            return None
        value = value.get(part)
    return value


def _set_path(doc: MutableMapping[str, Any], path: str, value: Any) -> None:
    """Write a dotted path by replacing its top-level value, so the change is tracked."""
    top, _, rest = path.partition(".")
    if not rest:
        doc[top] = value
        return
    container = copy.deepcopy(doc[top])
    target = container
    parts = rest.split(".")
    for part in parts[:-1]:
        target = target[part]
    target[parts[-1]] = value
    doc[top] = container


def _default_for(node: SchemaNode) -> Any:
    if isinstance(node, FieldDescriptor):
        return node.default_value() if node.has_default else None
    if isinstance(node, ArrayOf):
        return []
    nested = {name: _default_for(child) for name, child in node.fields.items()}
    nested = {name: value for name, value in nested.items() if value is not None}
    return nested or None


# ==================== runtime protocol ====================


@runtime_checkable
class ModelRuntime(Protocol):
    """Protocol for mapping runtimes.

    A runtime turns a compiled tree and feature set into a live model
    handle. Runtimes that cannot change a model after materialization
    report supports_late_binding = False; the registry then keeps the
    extension on its stored entry only.
    """

    @property
    @abstractmethod
    def supports_late_binding(self) -> bool:
        """Whether bind() can change a materialized model."""
        ...

    @abstractmethod
    def materialize(self, name: str, tree: SchemaTree, features: FeatureSet) -> Any:
        """Create the live model for a registered schema.

        Failures propagate to the caller unretried.
        """
        ...

    @abstractmethod
    def bind(self, handle: Any, kind: ExtensionKind, payload: Any) -> None:
        """Apply an extension to a materialized model."""
        ...

    @abstractmethod
    def sync_indexes(self, handle: Any, indexes: List[IndexSpec]) -> List[str]:
        """Create the given indexes in the store.

        Returns:
            Names of the indexes now present
        """
        ...


# ==================== in-memory runtime ====================


class ModelHandle:
    """Live in-memory model.

    Attributes:
        name: Model name
        tree: Compiled schema tree
        features: The handle's own feature set
        bindings: Extensions received through late binding
        synced_indexes: Indexes created by the last sync_indexes()
    """

    def __init__(self, name: str, tree: SchemaTree, features: FeatureSet) -> None:
        self.name = name
        self.tree = tree
        self.features = features
        self.bindings: List[tuple[ExtensionKind, Any]] = []
        self.synced_indexes: List[IndexSpec] = []
        self._documents: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"ModelHandle(name={self.name!r}, documents={len(self._documents)})"

    # -------------------- documents --------------------

    def new_document(self, data: Optional[Mapping[str, Any]] = None) -> Document:
        """Create an unsaved document with schema defaults applied."""
        values = dict(data or {})
        for name, node in self.tree.fields.items():
            if name not in values:
                default = _default_for(node)
                if default is not None:
                    values[name] = default
        return Document(values, is_new=True)

    def computed_values(self, doc: Mapping[str, Any]) -> Dict[str, Any]:
        return {
            spec.name: spec.getter(doc)
            for spec in self.features.computed_fields
            if spec.getter is not None
        }

    def set_computed(self, doc: Document, name: str, value: Any) -> None:
        """Assign through a computed field's setter.

        Raises:
            KeyError: If no computed field has this name
            AttributeError: If the computed field has no setter
        """
        spec = self.features.computed(name)
        if spec is None:
            raise KeyError(f"{self.name} has no computed field '{name}'")
        if spec.setter is None:
            raise AttributeError(f"Computed field '{name}' is read-only")
        spec.setter(doc, value)

    def to_output(self, doc: Mapping[str, Any]) -> Dict[str, Any]:
        """Serialize a document for callers."""
        return self.tree.transform.apply(doc, self.computed_values(doc))

    def validate(self, doc: Mapping[str, Any]) -> Dict[str, str]:
        """Validate a document.

        Returns:
            Mapping of path to the first failing message (empty if valid)
        """
        errors: Dict[str, str] = {}
        for path, node in self.tree.paths():
            value = get_path(doc, path)
            messages: List[str] = []
            if isinstance(node, FieldDescriptor):
                messages = node.validate_value(value, path)
            elif value is None and node.required:
                messages = [f"{path} is required"]
            elif isinstance(node.element, FieldDescriptor):
                for i, item in enumerate(value or []):
                    messages.extend(node.element.validate_value(item, f"{path}.{i}"))
            if value is not None:
                messages.extend(
                    v.render(path, value) for v in self.features.validators_for(path) if not v.check(value)
                )
            if messages:
                errors[path] = messages[0]
        return errors

    def run_hooks(self, phase: HookPhase, operation: str, subject: Any) -> Any:
        """Run the hooks attached to an operation in order.

        Returns:
            The subject, or the value returned by the last hook that returned one
        """
        for hook in self.features.hooks_for(phase, operation):
            result = hook.handler(subject)
            if result is not None:
                subject = result
        return subject

    def _normalize_text(self, doc: MutableMapping[str, Any]) -> None:
        for path, node in self.tree.paths():
            value = get_path(doc, path)
            if not isinstance(node, FieldDescriptor) or not isinstance(value, str):
                continue
            normalized = value
            if node.trim:
                normalized = normalized.strip()
            if node.lowercase:
                normalized = normalized.lower()
            if normalized != value:
                _set_path(doc, path, normalized)

    def _check_unique(self, identity: str, values: Mapping[str, Any]) -> None:
        for index in self.features.indexes:
            if not index.unique:
                continue
            key = {field: get_path(values, field) for field in index.fields}
            if index.sparse and all(v is None for v in key.values()):
                continue
            for other_id, other in self._documents.items():
                if other_id == identity:
                    continue
                if all(get_path(other, field) == value for field, value in key.items()):
                    raise WriteConflict(index.name, key)

    @staticmethod
    def _check_identity(identifier: Any) -> str:
        value = str(identifier)
        if not _IDENTITY_RE.match(value):
            raise InvalidId(f"'{identifier}' is not a valid identifier")
        return value

    def save(self, doc: Document) -> Document:
        """Validate a document, run its save hooks and store it.

        Validation runs before the pre-save hooks, so hooks see valid input.

        Raises:
            DocumentError: Normalized store failure
        """
        operation = f"{'create' if doc.is_new else 'save'} {self.name}"
        with translate_errors(operation, model=self.name):
            self._normalize_text(doc)
            errors = self.validate(doc)
            if errors:
                raise ValidationError(errors)
            self.run_hooks(HookPhase.PRE, "save", doc)
            with self._lock:
                identity = doc.get(IDENTITY_FIELD) or secrets.token_hex(12)
                self._check_unique(identity, doc)
                doc[IDENTITY_FIELD] = identity
                self._documents[identity] = doc.to_dict()
            doc.mark_clean()
            self.run_hooks(HookPhase.POST, "save", doc)
        logger.debug(f"Saved {self.name} {identity}")
        return doc

    def create(self, data: Optional[Mapping[str, Any]] = None) -> Document:
        return self.save(self.new_document(data))

    def find_by_id(self, identifier: Any) -> Optional[Document]:
        with translate_errors(f"find {self.name}", model=self.name, identifier=identifier):
            identity = self._check_identity(identifier)
            with self._lock:
                stored = self._documents.get(identity)
        return None if stored is None else Document(copy.deepcopy(stored), is_new=False)

    def find_by_id_or_fail(self, identifier: Any) -> Document:
        with translate_errors(f"find {self.name}", model=self.name, identifier=identifier):
            return ensure_found(self.find_by_id(identifier), self.name, identifier)

    def find(self, query: Optional[Mapping[str, Any]] = None) -> List[Document]:
        """Documents matching a filter; see matches() for the operators."""
        with self._lock:
            stored = [copy.deepcopy(d) for d in self._documents.values()]
        return [Document(d, is_new=False) for d in stored if matches(d, query or {})]

    def update_by_id(self, identifier: Any, update: Mapping[str, Any]) -> Optional[Document]:
        """Apply an update document ($set or plain fields) to one document."""
        with translate_errors(f"update {self.name}", model=self.name, identifier=identifier):
            identity = self._check_identity(identifier)
            update = self.run_hooks(HookPhase.PRE, "findOneAndUpdate", copy.deepcopy(dict(update)))
            changes = dict(update.get("$set", {}))
            unsupported = [key for key in update if key.startswith("$") and key != "$set"]
            if unsupported:
                raise ValueError(f"Unsupported update operators: {unsupported}")
            changes.update({k: v for k, v in update.items() if not k.startswith("$")})
            with self._lock:
                stored = self._documents.get(identity)
                if stored is None:
                    return None
                doc = Document(copy.deepcopy(stored), is_new=False)
                for key, value in changes.items():
                    doc[key] = value
                self._normalize_text(doc)
                errors = self.validate(doc)
                if errors:
                    raise ValidationError(errors)
                self._check_unique(identity, doc)
                self._documents[identity] = doc.to_dict()
            doc.mark_clean()
            self.run_hooks(HookPhase.POST, "findOneAndUpdate", doc)
        return doc

    def delete_by_id(self, identifier: Any) -> Optional[Document]:
        with translate_errors(f"delete {self.name}", model=self.name, identifier=identifier):
            identity = self._check_identity(identifier)
            with self._lock:
                stored = self._documents.pop(identity, None)
            if stored is None:
                return None
            doc = Document(stored, is_new=False)
            self.run_hooks(HookPhase.POST, "findOneAndDelete", doc)
        return doc

    def count(self) -> int:
        with self._lock:
            return len(self._documents)

    # -------------------- helpers --------------------

    def prepare_pipeline(self, pipeline: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Run aggregate pre hooks over a copy of a pipeline."""
        return self.run_hooks(HookPhase.PRE, "aggregate", copy.deepcopy(pipeline))

    def query(self, helper: str, *args: Any, **kwargs: Any) -> Dict[str, Any]:
        """Build a filter with a named query helper.

        Raises:
            KeyError: If no query helper has this name
        """
        spec = self.features.query_helper(helper)
        if spec is None:
            raise KeyError(f"{self.name} has no query helper '{helper}'")
        return spec.builder(*args, **kwargs)

    def call_method(self, method: str, doc: Document, *args: Any, **kwargs: Any) -> Any:
        return self.features.methods[method](doc, *args, **kwargs)

    def call_static(self, static: str, *args: Any, **kwargs: Any) -> Any:
        return self.features.statics[static](self, *args, **kwargs)


_OPERATORS = {
    "$eq": lambda value, arg: value == arg,
    "$ne": lambda value, arg: value != arg,
    "$gt": lambda value, arg: value is not None and value > arg,
    "$gte": lambda value, arg: value is not None and value >= arg,
    "$lt": lambda value, arg: value is not None and value < arg,
    "$lte": lambda value, arg: value is not None and value <= arg,
    "$in": lambda value, arg: value in arg,
}


def matches(document: Mapping[str, Any], query: Mapping[str, Any]) -> bool:
    """Evaluate a filter with equality and $eq/$ne/$gt/$gte/$lt/$lte/$in.

    Raises:
        ValueError: On an unsupported operator
    """
    for path, condition in query.items():
        value = get_path(document, path)
        if isinstance(condition, Mapping) and condition and all(k.startswith("$") for k in condition):
            for op, arg in condition.items():
                if op not in _OPERATORS:
                    raise ValueError(f"Unsupported query operator '{op}'")
                if not _OPERATORS[op](value, arg):
                    return False
        elif value != condition:
            return False
    return True


class InMemoryRuntime:
    """In-memory implementation of ModelRuntime.

    Attributes:
        handles: Materialized handles by model name
        materializations: Model names in materialization order

    Example:
        >>> runtime = InMemoryRuntime()
        >>> registry = ModelRegistry(runtime)
        >>> users = registry.register_or_get("User", {"name": "string!"}).handle
        >>> users.create({"name": "Ada"})["name"]
        'Ada'
    """

    def __init__(self, *, late_binding: bool = True) -> None:
        self._late_binding = late_binding
        self.handles: Dict[str, ModelHandle] = {}
        self.materializations: List[str] = []
        self._lock = threading.Lock()

    @property
    def supports_late_binding(self) -> bool:
        return self._late_binding

    def materialize(self, name: str, tree: SchemaTree, features: FeatureSet) -> ModelHandle:
        handle = ModelHandle(name, tree, features.copy())
        with self._lock:
            self.handles[name] = handle
            self.materializations.append(name)
        logger.debug(f"Materialized in-memory model {name}")
        return handle

    def bind(self, handle: ModelHandle, kind: ExtensionKind, payload: Any) -> None:
        if not self._late_binding:
            raise RuntimeError("InMemoryRuntime was created without late binding")
        handle.features.apply_extension(kind, payload)
        handle.bindings.append((kind, payload))

    def sync_indexes(self, handle: ModelHandle, indexes: List[IndexSpec]) -> List[str]:
        handle.synced_indexes = list(indexes)
        return [index.name for index in indexes]
