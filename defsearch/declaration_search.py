"""
Declaration Search — builds the DeclarationData a definition search starts from.

Two entry points:

  • collect_declaration(unit, name, line)   — from a named declaration
  • collect_call_site(unit, line, column)   — from a call expression; the
    callee is picked among same-named declarations by argument count

Parameter types go through the same canonicalisation as the candidates the
query is later matched against, so ``uint32`` declared via a typedef and
``unsigned int`` written in the definition compare equal.
"""

import logging
from typing import Iterable, List, Optional, Tuple

from .declaration_data import DeclarationData, ExpectedScope, ScopeKind
from .translation_unit import FunctionCandidate, TranslationUnit, normalise_name

logger = logging.getLogger(__name__)


def declaration_from_candidate(candidate: FunctionCandidate) -> DeclarationData:
    """Describe a function declaration (or definition) as a DeclarationData."""
    scopes = tuple(
        ExpectedScope(scope.kind, scope.name)
        for scope in candidate.enclosing_scopes()
        if scope.kind is not ScopeKind.OTHER
    )
    return DeclarationData(
        name=candidate.name,
        parameter_types=tuple(candidate.canonical_parameter_types()),
        expected_scopes=scopes,
        file_path=candidate.context.file_path,
        line=candidate.start_line,
    )


def collect_declaration(unit: TranslationUnit, name: str,
                        line: Optional[int] = None) -> Optional[DeclarationData]:
    """First declaration of ``name`` in the unit (on ``line``, if given)."""
    for candidate in unit.functions(name, definitions_only=False):
        declarator_line = candidate.declarator.start_point[0] + 1
        if line is None or line in (candidate.start_line, declarator_line):
            return declaration_from_candidate(candidate)
    logger.info("No declaration of %s found in %s", name, unit.file_path)
    return None


# ═══════════════════════════════════════════════════════════════════════
#  Call sites
# ═══════════════════════════════════════════════════════════════════════

def _callee(function, unit: TranslationUnit) -> Tuple[List[str], Optional[str]]:
    """Split the callee expression of a call into (qualifiers, name)."""
    if function is None:
        return [], None
    if function.type == "field_expression":
        function = function.child_by_field_name("field")
    if function.type == "template_function":
        function = function.child_by_field_name("name")

    qualifiers: List[str] = []
    while function is not None and function.type == "qualified_identifier":
        scope = function.child_by_field_name("scope")
        if scope is not None:
            if scope.type == "template_type":
                scope = scope.child_by_field_name("name")
            qualifiers.append(unit.node_text(scope))
        function = function.child_by_field_name("name")
    if function is not None and function.type == "template_function":
        function = function.child_by_field_name("name")

    if function is None or function.type not in (
        "identifier", "field_identifier", "destructor_name", "operator_name",
    ):
        return qualifiers, None
    return qualifiers, normalise_name(unit.node_text(function))


def _accepts(candidate: FunctionCandidate, arg_count: int) -> bool:
    if arg_count < candidate.required_parameter_count:
        return False
    return candidate.is_variadic or arg_count <= candidate.parameter_count


def _qualified_as(declaration: DeclarationData, qualifiers: List[str]) -> bool:
    """True when the declaration's scopes end with the call's explicit qualifiers."""
    if not qualifiers:
        return True
    names = [s.name for s in reversed(declaration.expected_scopes)]
    return names[len(names) - len(qualifiers):] == qualifiers


def collect_call_site(unit: TranslationUnit, line: int, column: int,
                      search_units: Iterable[TranslationUnit] = ()) -> Optional[DeclarationData]:
    """Declaration of the function called at a 1-indexed (line, column).

    Declarations are looked up in ``unit`` first, then in ``search_units``
    (typically the headers of a workspace).
    """
    if unit.tree is None:
        return None

    point = (line - 1, max(column - 1, 0))
    node = unit.tree.root_node.descendant_for_point_range(point, point)
    while node is not None and node.type != "call_expression":
        node = node.parent
    if node is None:
        logger.warning("No call expression at %s:%d:%d", unit.file_path, line, column)
        return None

    qualifiers, name = _callee(node.child_by_field_name("function"), unit)
    if name is None:
        logger.warning("Cannot resolve callee of %s at %s:%d",
                       unit.node_text(node), unit.file_path, line)
        return None

    arguments = node.child_by_field_name("arguments")
    arg_count = len([c for c in arguments.named_children if c.type != "comment"]) \
        if arguments is not None else 0

    matches: List[DeclarationData] = []
    for source_unit in [unit, *search_units]:
        for candidate in source_unit.functions(name, definitions_only=False):
            if not _accepts(candidate, arg_count):
                continue
            declaration = declaration_from_candidate(candidate)
            if not _qualified_as(declaration, qualifiers):
                continue
            if any(d.parameter_types == declaration.parameter_types
                   and d.expected_scopes == declaration.expected_scopes for d in matches):
                continue
            matches.append(declaration)

    if not matches:
        logger.warning("No declaration of %s taking %d argument(s) found", name, arg_count)
        return None
    if len(matches) > 1:
        logger.warning(
            "Call to %s at %s:%d is ambiguous by argument count (%d overloads); using %s",
            name, unit.file_path, line, len(matches), matches[0].qualified_name,
        )
    return matches[0]
