"""
Feature synthesis for docshape.

Derives computed fields, indexes, lifecycle hooks and query helpers from a
compiled schema tree, and defines the feature specs the registry extends.
"""

from .specs import (
    ComputedFieldSpec,
    ExtensionKind,
    FeatureSet,
    FieldValidatorSpec,
    HookPhase,
    HookSpec,
    IndexSpec,
    NamedCallable,
    PluginRecord,
    QueryHelperSpec,
)
from .synthesizer import SYNTHESIS_RULES, SynthesisContext, SynthesisRule, synthesize

__all__ = [
    "ComputedFieldSpec",
    "ExtensionKind",
    "FeatureSet",
    "FieldValidatorSpec",
    "HookPhase",
    "HookSpec",
    "IndexSpec",
    "NamedCallable",
    "PluginRecord",
    "QueryHelperSpec",
    "SYNTHESIS_RULES",
    "SynthesisContext",
    "SynthesisRule",
    "synthesize",
]
