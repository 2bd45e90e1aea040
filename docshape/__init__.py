"""
docshape - Schema compiler and auto-augmentation engine for document stores.

This package turns terse shorthand schema descriptors into fully specified
document schemas:
- Shorthand tokens ("string!", "email!!", "userRef") and partial descriptors
- Compiled schema trees with constraints, defaults and serialization rules
- Synthesized computed fields, indexes, lifecycle hooks and query helpers
- A model registry with first-registration-wins semantics and extensions
- Normalization of store failures into a small closed error taxonomy

Example:
    >>> from docshape import ModelRegistry
    >>>
    >>> registry = ModelRegistry()
    >>> users = registry.register_or_get(
    ...     "User",
    ...     {"firstName": "string!", "lastName": "string!", "email": "email!!"},
    ... ).handle
    >>> doc = users.create({"firstName": "Ada", "lastName": "Lovelace", "email": "ADA@x.io"})
    >>> users.to_output(doc)["fullName"]
    'Ada Lovelace'

Invariants:
    - Compilation and synthesis are pure; malformed descriptors fail at compile time
    - First registration of a model name wins
    - No raw store failure reaches callers of a model handle

Version: 1.0.0
"""

__version__ = "1.0.0"

from .config import Settings, get_settings, reset_settings, setup_logging
from .errors import (
    DocshapeError,
    DocumentError,
    DocumentNotFound,
    DuplicateKeyError,
    ErrorKind,
    ErrorRecord,
    InvalidIdentifierError,
    ModelNotFoundError,
    NotFoundError,
    SchemaDefinitionError,
    UnknownDocumentError,
    ValidationFailedError,
    ensure_found,
    normalize_error,
    translate_errors,
)
from .features import FeatureSet, synthesize
from .registry import ExtensionKind, ModelRegistry, RegistryEntry
from .runtime import Document, InMemoryRuntime, ModelRuntime
from .schema import SchemaOptions, SchemaTree, compile_schema, normalize, resolve
from .templates import TEMPLATES, get_template

__all__ = [
    "__version__",
    # Config
    "Settings",
    "get_settings",
    "reset_settings",
    "setup_logging",
    # Schema
    "compile_schema",
    "normalize",
    "resolve",
    "SchemaOptions",
    "SchemaTree",
    # Features
    "FeatureSet",
    "synthesize",
    # Registry
    "ModelRegistry",
    "RegistryEntry",
    "ExtensionKind",
    "ModelRuntime",
    "InMemoryRuntime",
    "Document",
    # Templates
    "TEMPLATES",
    "get_template",
    # Errors
    "DocshapeError",
    "SchemaDefinitionError",
    "ModelNotFoundError",
    "DocumentNotFound",
    "DocumentError",
    "DuplicateKeyError",
    "ValidationFailedError",
    "InvalidIdentifierError",
    "NotFoundError",
    "UnknownDocumentError",
    "ErrorKind",
    "ErrorRecord",
    "normalize_error",
    "translate_errors",
    "ensure_found",
]
