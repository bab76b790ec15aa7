"""
Declaration Data — what a definition search is looking for.

A search session starts from one function *declaration* (usually the callee
of a call site) and looks for the one *definition* that belongs to it:

  • DeclarationData — canonical parameter types + expected scope chain
  • Query           — the session: declaration, result slot, overwrite policy

The scope chain is stored innermost first: for

    namespace A { struct B { void f(); }; }

the expected scopes of ``f`` are ``[TypeScope("B"), Namespace("A")]``.
"""

import logging
from enum import Enum
from typing import Optional, Tuple
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════
#  Errors
# ═══════════════════════════════════════════════════════════════════════

class DefinitionSearchError(Exception):
    """Base class for definition search failures."""


class MalformedCandidateError(DefinitionSearchError):
    """The traversal handed the match handler something that is not a function."""


class AmbiguousDefinitionError(DefinitionSearchError):
    """Two different definitions matched under ERROR_ON_CONFLICT."""


# ═══════════════════════════════════════════════════════════════════════
#  Scopes
# ═══════════════════════════════════════════════════════════════════════

class ScopeKind(Enum):
    NAMESPACE = "namespace"
    TYPE_SCOPE = "type"     # class / struct / union
    OTHER = "other"         # translation unit, extern "C", function bodies


@dataclass(frozen=True)
class ExpectedScope:
    """One link of the enclosing-scope chain of a declaration."""
    kind: ScopeKind
    name: str

    @classmethod
    def namespace(cls, name: str) -> "ExpectedScope":
        return cls(ScopeKind.NAMESPACE, name)

    @classmethod
    def type_scope(cls, name: str) -> "ExpectedScope":
        return cls(ScopeKind.TYPE_SCOPE, name)

    def __str__(self):
        return f"{self.kind.value} {self.name or '<anonymous>'}"


@dataclass(frozen=True)
class ScopeNode:
    """An enclosing scope of a candidate function, as produced by the traversal."""
    kind: ScopeKind
    name: str = ""

    def __str__(self):
        return f"{self.kind.value} {self.name or '<anonymous>'}"


# ═══════════════════════════════════════════════════════════════════════
#  Declaration
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class DeclarationData:
    """The declaration whose definition is being searched for."""
    name: str
    parameter_types: Tuple[str, ...] = ()         # canonical spellings, positional
    expected_scopes: Tuple[ExpectedScope, ...] = ()  # innermost first
    file_path: str = ""
    line: int = 0                                 # 1-indexed, 0 if unknown

    def __post_init__(self):
        # Accept lists from callers but keep the record immutable.
        object.__setattr__(self, "parameter_types", tuple(self.parameter_types))
        object.__setattr__(self, "expected_scopes", tuple(self.expected_scopes))

    @property
    def qualified_name(self) -> str:
        parts = [s.name or "(anonymous namespace)" for s in reversed(self.expected_scopes)]
        parts.append(self.name)
        return "::".join(parts)


# ═══════════════════════════════════════════════════════════════════════
#  Query (search session + result slot)
# ═══════════════════════════════════════════════════════════════════════

class OverwritePolicy(Enum):
    LAST_WINS = "last_wins"
    FIRST_WINS = "first_wins"
    ERROR_ON_CONFLICT = "error_on_conflict"


@dataclass
class Query:
    """
    A search session for one declaration.

    ``definition`` is the result slot: it stays ``None`` until a candidate
    matches.  What happens when a second candidate matches is decided by
    ``policy``; ``LAST_WINS`` overwrites unconditionally.

    ``strict_scopes`` rejects candidates whose scope chain runs out before
    the expected chain does.  It is off by default, in which case only the
    scopes a candidate actually has are compared.
    """
    declaration: DeclarationData
    policy: OverwritePolicy = OverwritePolicy.LAST_WINS
    strict_scopes: bool = False
    definition: Optional[object] = field(default=None, init=False)
    match_count: int = field(default=0, init=False)

    @property
    def has_match(self) -> bool:
        return self.definition is not None

    def store(self, definition) -> None:
        """Write a matched definition into the result slot.

        ``match_count`` counts accepted matches, including ones FIRST_WINS
        keeps out of the slot; a conflict rejected under ERROR_ON_CONFLICT
        leaves both the slot and the count unchanged.
        """
        if (self.definition is not None
                and self.policy is OverwritePolicy.ERROR_ON_CONFLICT
                and definition != self.definition):
            raise AmbiguousDefinitionError(
                f"{self.declaration.qualified_name} matched more than one definition"
            )

        self.match_count += 1
        if self.definition is None or self.policy is OverwritePolicy.LAST_WINS:
            self.definition = definition
            return

        if self.policy is OverwritePolicy.FIRST_WINS:
            logger.warning(
                "Ignoring additional definition of %s (match #%d)",
                self.declaration.qualified_name, self.match_count,
            )
