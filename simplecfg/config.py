"""
simplecfg.config
================

Analyzer and service settings.

The service exposes a single setting, the listen port.  The remaining
fields tune the checkers and are normally left at their defaults; the CLI
fills them from command-line options.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import FrozenSet, Iterable, Optional

DEFAULT_PORT = 10008
CATEGORY = "SimpleCFG"

DEFAULT_NULLABLE_ANNOTATIONS: FrozenSet[str] = frozenset({
    "Nullable",
    "CheckForNull",
})


@dataclass(frozen=True)
class AnalyzerConfig:
    """Immutable configuration shared by the front end, service and checkers.

    Attributes
    ----------
    port : int
        TCP port the RPC service listens on.
    host : str
        Interface the RPC service binds to.
    nullable_annotations : frozenset of str
        Simple annotation names that mark a declaration as nullable.
        Qualified uses (``@javax.annotation.Nullable``) match on the last
        segment.
    extra_closeable_types : frozenset of str
        Additional simple type names treated as closeable resources.
    disabled_checkers : frozenset of str
        Checker names to skip.
    category : str
        Category reported on every finding.
    """

    port: int = DEFAULT_PORT
    host: str = "0.0.0.0"
    nullable_annotations: FrozenSet[str] = DEFAULT_NULLABLE_ANNOTATIONS
    extra_closeable_types: FrozenSet[str] = field(default_factory=frozenset)
    disabled_checkers: FrozenSet[str] = field(default_factory=frozenset)
    category: str = CATEGORY

    def with_options(
        self,
        *,
        port: Optional[int] = None,
        host: Optional[str] = None,
        nullable_annotations: Optional[Iterable[str]] = None,
        extra_closeable_types: Optional[Iterable[str]] = None,
        disabled_checkers: Optional[Iterable[str]] = None,
    ) -> "AnalyzerConfig":
        """Return a copy with the given (non-``None``) options applied.

        Annotation and type names are added to the defaults, not substituted.
        """
        changes = {}
        if port is not None:
            changes["port"] = port
        if host is not None:
            changes["host"] = host
        if nullable_annotations:
            changes["nullable_annotations"] = (
                self.nullable_annotations | frozenset(nullable_annotations)
            )
        if extra_closeable_types:
            changes["extra_closeable_types"] = (
                self.extra_closeable_types | frozenset(extra_closeable_types)
            )
        if disabled_checkers:
            changes["disabled_checkers"] = (
                self.disabled_checkers | frozenset(disabled_checkers)
            )
        return replace(self, **changes)


DEFAULT_CONFIG = AnalyzerConfig()
