"""
Model Registry for docshape.

The ModelRegistry is the table from model name to compiled state. It
provides:
- Register-or-get with at-most-one compilation per name
- Lookup by name
- Schema extensions (computed fields, methods, statics, query helpers,
  hooks, plugins, indexes, validators) on registered models
- Hand-off to the mapping runtime that materializes live models

Invariants:
    - First registration wins: a later register_or_get() for the same name
      returns the existing entry without recompiling, even when its
      descriptor differs
    - Extensions require a registered model (ModelNotFoundError otherwise)
    - Extensions always apply to the stored entry; they reach the live
      handle only when the runtime supports late binding
    - A failed materialization leaves no entry behind

Thread-safety:
    - A global lock guards the entry table and the per-name lock table
    - Each name has its own lock, serializing its first registration,
      its materialization and its extensions
    - Different names register and extend independently

How to change safely:
    - Apply extensions before the handle is first used to read or write
      data; runtimes without late binding never see later extensions
    - Use reset() only in tests or at shutdown

Example:
    >>> registry = ModelRegistry()
    >>> entry = registry.register_or_get("User", {"name": "string!", "email": "email!!"})
    >>> registry.add_method("User", "greet", lambda doc: f"Hi {doc['name']}")
    >>> sorted(registry.get("User").features.methods)
    ['greet']
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from .config import Settings, get_settings
from .errors import ModelNotFoundError
from .features.specs import (
    ComputedFieldSpec,
    ExtensionKind,
    FeatureSet,
    FieldValidatorSpec,
    HookPhase,
    HookSpec,
    IndexDirection,
    IndexSpec,
    NamedCallable,
    PluginRecord,
    QueryHelperSpec,
)
from .features.synthesizer import synthesize
from .runtime import InMemoryRuntime, ModelRuntime
from .schema.compiler import OptionsLike, compile_schema
from .schema.types import SchemaTree, Validator, ValidatorKind

logger = logging.getLogger(__name__)

Descriptor = Union[Mapping[str, Any], SchemaTree]

PluginFn = Callable[[SchemaTree, FeatureSet, Dict[str, Any]], None]


@dataclass
class RegistryEntry:
    """Stored compiled state for one named model.

    Attributes:
        name: Model name (unique key)
        tree: Compiled schema tree
        features: Synthesized features plus every extension applied since
        handle: Live model returned by the runtime
    """

    name: str
    tree: SchemaTree
    features: FeatureSet
    handle: Any

    @property
    def fingerprint(self) -> str:
        return self.tree.fingerprint()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "fingerprint": self.fingerprint,
            "schema": self.tree.to_dict(),
            "features": self.features.to_dict(),
        }


class ModelRegistry:
    """Registry of compiled models.

    Attributes:
        runtime: Mapping runtime that materializes registered models
        settings: Settings used for compilation and synthesis

    Example:
        >>> registry = ModelRegistry(InMemoryRuntime())
        >>> registry.register_or_get("Post", {"title": "string!", "views": "number+"})
        >>> registry.has("Post")
        True
    """

    def __init__(
        self,
        runtime: Optional[ModelRuntime] = None,
        *,
        settings: Optional[Settings] = None,
    ) -> None:
        self.runtime: ModelRuntime = runtime if runtime is not None else InMemoryRuntime()
        self.settings = settings or get_settings()
        self._entries: Dict[str, RegistryEntry] = {}
        self._descriptors: Dict[str, Descriptor] = {}
        self._name_locks: Dict[str, threading.Lock] = {}
        self._lock = threading.Lock()

    def _name_lock(self, name: str) -> threading.Lock:
        with self._lock:
            lock = self._name_locks.get(name)
            if lock is None:
                lock = self._name_locks[name] = threading.Lock()
            return lock

    # ==================== registration ====================

    def register_or_get(
        self,
        name: str,
        descriptor: Descriptor,
        options: OptionsLike = None,
    ) -> RegistryEntry:
        """Compile, synthesize and materialize a model once per name.

        Args:
            name: Model name
            descriptor: Raw schema descriptor or an already compiled tree
            options: Schema options (ignored for compiled trees)

        Returns:
            The entry for this name; the first registration's entry when
            the name is already registered

        Raises:
            SchemaDefinitionError: If the descriptor is malformed
            Exception: Whatever the runtime raises during materialization
        """
        if not name:
            raise ValueError("Model name cannot be empty")

        with self._name_lock(name):
            with self._lock:
                existing = self._entries.get(name)
            if existing is not None:
                if descriptor is not self._descriptors[name] and descriptor != self._descriptors[name]:
                    logger.info(
                        f"Model '{name}' is already registered; the new descriptor was ignored "
                        f"(fingerprint={existing.fingerprint})"
                    )
                return existing

            if isinstance(descriptor, SchemaTree):
                tree = descriptor
            else:
                tree = compile_schema(descriptor, options, settings=self.settings)
            features = synthesize(tree, model_name=name, settings=self.settings)
            handle = self.runtime.materialize(name, tree, features)

            entry = RegistryEntry(name=name, tree=tree, features=features, handle=handle)
            with self._lock:
                self._entries[name] = entry
                self._descriptors[name] = descriptor
            logger.info(f"Registered model {name} ({len(tree.fields)} fields, fingerprint={entry.fingerprint})")
            return entry

    def get(self, name: str) -> RegistryEntry:
        """Get a registered model.

        Raises:
            ModelNotFoundError: If the name is not registered
        """
        with self._lock:
            entry = self._entries.get(name)
        if entry is None:
            raise ModelNotFoundError(name)
        return entry

    def has(self, name: str) -> bool:
        with self._lock:
            return name in self._entries

    def names(self) -> List[str]:
        """Registered model names in registration order."""
        with self._lock:
            return list(self._entries)

    def entries(self) -> List[RegistryEntry]:
        with self._lock:
            return list(self._entries.values())

    def reset(self) -> None:
        """Drop all entries (for testing or shutdown).

        Per-name locks are kept, so a registration still running when the
        registry is reset and one started after it stay serialized.
        """
        with self._lock:
            self._entries.clear()
            self._descriptors.clear()
        logger.debug("Model registry reset")

    # ==================== extensions ====================

    def extend(self, name: str, kind: ExtensionKind, payload: Any) -> None:
        """Apply one extension to a registered model.

        Args:
            name: Model name
            kind: Extension kind
            payload: Spec object matching the kind (see EXTENSION_PAYLOADS);
                a PLUGIN payload may also be the plugin callable itself

        Raises:
            ModelNotFoundError: If the name is not registered
            TypeError: If the payload does not match the kind
        """
        self.get(name)
        if kind == ExtensionKind.PLUGIN and callable(payload):
            self.apply_plugin(name, payload)
            return
        with self._name_lock(name):
            entry = self.get(name)
            self._apply(entry, kind, payload)

    def _apply(self, entry: RegistryEntry, kind: ExtensionKind, payload: Any) -> None:
        entry.features.apply_extension(kind, payload)
        label = getattr(payload, "name", None) or getattr(payload, "path", "")
        if self.runtime.supports_late_binding:
            self.runtime.bind(entry.handle, kind, payload)
            logger.debug(f"Extended {entry.name} with {kind.value} '{label}'")
        else:
            logger.warning(
                f"Extended {entry.name} with {kind.value} '{label}' after materialization; "
                f"the runtime does not support late binding, so the live model is unchanged"
            )

    def add_computed_field(
        self,
        name: str,
        field: str,
        getter: Optional[Callable[..., Any]] = None,
        setter: Optional[Callable[..., None]] = None,
    ) -> None:
        """Add a computed field; replaces a synthesized one of the same name."""
        if getter is None and setter is None:
            raise ValueError(f"Computed field '{field}' needs a getter or a setter")
        self.extend(name, ExtensionKind.COMPUTED_FIELD, ComputedFieldSpec(field, getter, setter))

    def add_method(self, name: str, method: str, fn: Callable[..., Any]) -> None:
        """Add an instance method; fn receives the document first."""
        self.extend(name, ExtensionKind.METHOD, NamedCallable(method, fn))

    def add_static(self, name: str, static: str, fn: Callable[..., Any]) -> None:
        """Add a static method; fn receives the model handle first."""
        self.extend(name, ExtensionKind.STATIC, NamedCallable(static, fn))

    def add_query_helper(self, name: str, helper: str, builder: Callable[..., Any]) -> None:
        self.extend(name, ExtensionKind.QUERY_HELPER, QueryHelperSpec(helper, builder))

    def add_hook(
        self,
        name: str,
        phase: Union[HookPhase, str],
        operation: Union[str, tuple[str, ...]],
        handler: Callable[..., Any],
        hook_name: Optional[str] = None,
    ) -> None:
        """Attach a lifecycle hook.

        Args:
            name: Model name
            phase: "pre" or "post"
            operation: Operation name or tuple of names, e.g. "save"
            handler: Callable receiving the operation's subject
            hook_name: Hook name; a synthesized hook with this name is replaced
        """
        phase = HookPhase(phase) if isinstance(phase, str) else phase
        operations = (operation,) if isinstance(operation, str) else tuple(operation)
        hook_name = hook_name or getattr(handler, "__name__", None) or type(handler).__name__
        self.extend(name, ExtensionKind.HOOK, HookSpec(hook_name, phase, operations, handler))

    def pre(self, name: str, operation: Union[str, tuple[str, ...]], handler: Callable[..., Any]) -> None:
        self.add_hook(name, HookPhase.PRE, operation, handler)

    def post(self, name: str, operation: Union[str, tuple[str, ...]], handler: Callable[..., Any]) -> None:
        self.add_hook(name, HookPhase.POST, operation, handler)

    def add_validator(
        self,
        name: str,
        path: str,
        validator: Callable[[Any], bool],
        message: str = "Validation failed for {PATH}",
    ) -> None:
        """Attach a custom validator to a field path.

        Raises:
            ModelNotFoundError: If the name is not registered
            ValueError: If the path does not exist in the schema
        """
        if self.get(name).tree.get(path) is None:
            raise ValueError(f"Model '{name}' has no field '{path}'")
        spec = FieldValidatorSpec(path, Validator(ValidatorKind.CUSTOM, message, validator))
        self.extend(name, ExtensionKind.VALIDATOR, spec)

    def apply_plugin(
        self,
        name: str,
        plugin: PluginFn,
        options: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Run a plugin against a registered model.

        The plugin receives the schema tree, an empty FeatureSet to add to
        and its options. Everything it adds is applied like an individual
        extension.

        Raises:
            ModelNotFoundError: If the name is not registered
        """
        options = dict(options or {})
        self.get(name)
        with self._name_lock(name):
            entry = self.get(name)
            additions = FeatureSet()
            plugin(entry.tree, additions, options)
            for kind, payload in additions.extensions():
                if kind != ExtensionKind.PLUGIN:
                    self._apply(entry, kind, payload)
            plugin_name = getattr(plugin, "__name__", None) or type(plugin).__name__
            self._apply(entry, ExtensionKind.PLUGIN, PluginRecord(plugin_name, options))

    def create_index(
        self,
        name: str,
        keys: Union[Mapping[str, IndexDirection], List[tuple[str, IndexDirection]]],
        **options: Any,
    ) -> IndexSpec:
        """Declare an index; call sync_indexes() to create it in the store."""
        spec = IndexSpec.from_keys(keys, **options)
        self.extend(name, ExtensionKind.INDEX, spec)
        logger.info(f"Index {spec.name} declared for {name}")
        return spec

    def sync_indexes(self, name: str) -> List[str]:
        """Create every declared index of a model in the store.

        Returns:
            Names of the indexes now present
        """
        self.get(name)
        with self._name_lock(name):
            entry = self.get(name)
            created = self.runtime.sync_indexes(entry.handle, list(entry.features.indexes))
        logger.info(f"Synced {len(created)} indexes for {name}")
        return created
