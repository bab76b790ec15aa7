"""
Match Handler — decides whether one candidate function is the definition
a Query is looking for.

The traversal calls ``run()`` once per candidate that already has the right
name.  A candidate matches when:

  1. it has as many parameters as the declaration
  2. every parameter's canonical type, rendered under the context's
     printing policy, equals the expected spelling at the same position
  3. its namespace / class scopes, innermost first, match the declaration's
     expected scopes in kind and name

On a match the collector extracts a DefinitionData, which is stored in the
query's result slot.  A non-match is not an error: ``run()`` just returns
False and changes nothing.
"""

import logging
from typing import Callable

from .declaration_data import MalformedCandidateError, Query, ScopeKind
from .definition_data import collect_definition
from .type_system import DEFAULT_POLICY

logger = logging.getLogger(__name__)

_CANDIDATE_INTERFACE = ("parameter_count", "canonical_parameter_types", "enclosing_scopes")


def _context_matches(scope, expected) -> bool:
    """A scope matches when both its kind and its name match."""
    if scope.kind is not expected.kind:
        return False
    if scope.name != expected.name:
        return False
    return True


class MatchHandler:
    """Evaluates candidates against one Query."""

    def __init__(self, query: Query, collector: Callable = collect_definition):
        self.query = query
        self.collector = collector

    def run(self, candidate, context) -> bool:
        """Evaluate one candidate; on a full match store its definition and return True."""
        if candidate is None or not all(hasattr(candidate, a) for a in _CANDIDATE_INTERFACE):
            raise MalformedCandidateError(f"Got a malformed function candidate: {candidate!r}")

        parameter_types = self.query.declaration.parameter_types
        if candidate.parameter_count != len(parameter_types):
            logger.debug("%r: %d parameters, expected %d",
                         candidate, candidate.parameter_count, len(parameter_types))
            return False

        if not self._match_parameters(context, candidate):
            return False
        if not self._match_contexts(candidate):
            return False

        definition = self.collector(candidate, context, self.query)
        self.query.store(definition)
        logger.debug("%r matches %s", candidate, self.query.declaration.qualified_name)
        return True

    def _match_parameters(self, context, candidate) -> bool:
        policy = getattr(context, "printing_policy", None) or DEFAULT_POLICY
        expected_types = self.query.declaration.parameter_types
        for expected, actual in zip(expected_types, candidate.canonical_parameter_types(policy)):
            if expected != actual:
                logger.debug("%r: parameter type %r != %r", candidate, actual, expected)
                return False
        return True

    def _match_contexts(self, candidate) -> bool:
        expected_scopes = self.query.declaration.expected_scopes
        position = 0

        for scope in candidate.enclosing_scopes():
            if scope.kind is ScopeKind.OTHER:
                continue
            if position >= len(expected_scopes):
                logger.debug("%r: nested deeper than %d expected scopes",
                             candidate, len(expected_scopes))
                return False
            if not _context_matches(scope, expected_scopes[position]):
                logger.debug("%r: scope %s != %s", candidate, scope, expected_scopes[position])
                return False
            position += 1

        # A candidate with fewer scopes than expected still matches unless strict.
        if self.query.strict_scopes and position < len(expected_scopes):
            logger.debug("%r: only %d of %d expected scopes present",
                         candidate, position, len(expected_scopes))
            return False
        return True
