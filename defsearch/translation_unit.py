"""
Translation Unit — tree-sitter C++ adapter for definition search.

Parses one C/C++ source file with tree-sitter-cpp and exposes what the
match handler needs:

  • TypeRegistry      — typedefs, using-aliases, records and namespaces
  • FunctionCandidate — a function node with canonical parameter types and
                        its semantic enclosing-scope chain
  • functions()       — traversal yielding candidates in source order

The scope chain of a function is *semantic*, not lexical: an out-of-line
definition ``void A::B::f() {}`` at file scope is enclosed by ``B`` and
then ``A``, exactly as if it had been written inside their bodies.
"""

import os
import re
import logging
from typing import Iterable, Iterator, List, Optional, Set, Tuple, Union
from dataclasses import dataclass

import tree_sitter_cpp as tscpp
from tree_sitter import Language, Parser, Node

from .declaration_data import ScopeKind, ScopeNode
from .type_system import (
    DEFAULT_POLICY, PrintingPolicy, TypeAlias, TypeRegistry, render_type,
)

logger = logging.getLogger(__name__)

CPP_LANGUAGE = Language(tscpp.language())
_parser = Parser(CPP_LANGUAGE)

_RECORD_NODES = {"class_specifier", "struct_specifier", "union_specifier"}
_FUNCTION_NAME_NODES = {
    "identifier", "field_identifier", "qualified_identifier", "destructor_name",
    "operator_name", "template_function", "operator_cast",
}
_DECLARATION_NODES = {"declaration", "field_declaration"}
_PARAMETER_NODES = {
    "parameter_declaration", "optional_parameter_declaration",
    "variadic_parameter_declaration",
}


# ═══════════════════════════════════════════════════════════════════════
#  Tree helpers
# ═══════════════════════════════════════════════════════════════════════

def _node_text(node: Node, source: bytes) -> str:
    return source[node.start_byte:node.end_byte].decode("utf-8", errors="replace")


def normalise_name(name: str) -> str:
    name = re.sub(r"\s+", " ", name).strip()
    return re.sub(r"operator\s+(?=[^\w\s])", "operator", name)


def _walk_types(node: Node, type_names: Set[str]):
    """Yield all descendant nodes of the given types, in source order."""
    cursor = node.walk()
    visited = False
    while True:
        if not visited and cursor.node.type in type_names:
            yield cursor.node
        if not visited and cursor.goto_first_child():
            visited = False
            continue
        if cursor.goto_next_sibling():
            visited = False
            continue
        if cursor.goto_parent():
            visited = True
            continue
        break


def _inner_declarator(node: Node) -> Optional[Node]:
    """Step one level into a declarator (pointer, reference, parenthesized...)."""
    inner = node.child_by_field_name("declarator")
    if inner is not None:
        return inner
    for child in node.named_children:
        if child.type.endswith("declarator") or child.type in _FUNCTION_NAME_NODES \
                or child.type == "type_identifier":
            return child
    return None


def _declarator_name(node: Optional[Node], name_types: Set[str]) -> Optional[Node]:
    """Find the declared name inside a (possibly nested) declarator."""
    while node is not None:
        if node.type in name_types:
            return node
        node = _inner_declarator(node)
    return None


def _operator_cast(node: Node) -> Optional[Node]:
    """The operator_cast of ``operator int()`` or ``A::operator int()``, if any."""
    while node is not None and node.type == "qualified_identifier":
        node = node.child_by_field_name("name")
    if node is not None and node.type == "operator_cast":
        return node
    return None


def _function_declarator(node: Node) -> Optional[Tuple[Node, Node]]:
    """(parameter-carrying declarator, name node) of a function declaration / definition."""
    for decl in node.children_by_field_name("declarator"):
        if _operator_cast(decl) is not None:
            for found in _walk_types(decl, {"abstract_function_declarator"}):
                return found, decl
            continue
        while decl is not None and decl.type != "function_declarator":
            decl = _inner_declarator(decl)
        if decl is None:
            continue
        name = decl.child_by_field_name("declarator")
        if name is not None and name.type in _FUNCTION_NAME_NODES:
            return decl, name
    return None


def _record_path(node: Node, source: bytes) -> List[str]:
    """Name segments of a record, outermost first (``struct A::B`` gives ["A", "B"])."""
    name = node.child_by_field_name("name")
    segments = []
    while name is not None and name.type == "qualified_identifier":
        scope = name.child_by_field_name("scope")
        if scope is not None:
            if scope.type == "template_type":
                scope = scope.child_by_field_name("name")
            segments.append(_node_text(scope, source))
        name = name.child_by_field_name("name")
    if name is None:
        return []
    if name.type == "template_type":
        name = name.child_by_field_name("name")
    segments.append(_node_text(name, source))
    return segments


def _record_name(node: Node, source: bytes) -> Optional[str]:
    path = _record_path(node, source)
    return path[-1] if path else None


def _namespace_names(node: Node, source: bytes) -> List[str]:
    """Names introduced by a namespace definition, outermost first ([""] if anonymous)."""
    name = node.child_by_field_name("name")
    if name is None:
        return [""]
    names = []
    pending = [name]
    while pending:
        current = pending.pop(0)
        if current.type == "nested_namespace_specifier":
            pending[:0] = current.named_children
        elif current.type == "namespace_identifier":
            names.append(_node_text(current, source))
    return names or [_node_text(name, source)]


def _without(source: bytes, start: int, end: int, holes: List[Node]) -> str:
    """Text of source[start:end] with the byte ranges of ``holes`` removed."""
    pieces = []
    pos = start
    for hole in sorted(holes, key=lambda n: n.start_byte):
        pieces.append(source[pos:hole.start_byte])
        pos = hole.end_byte
    pieces.append(source[pos:end])
    return b" ".join(pieces).decode("utf-8", errors="replace").strip()


def _in_block(node: Node) -> bool:
    """True for a node inside a function body (block scope)."""
    current = node.parent
    while current is not None:
        if current.type == "compound_statement":
            return True
        current = current.parent
    return False


def _record_scopes(record: Node, source: bytes,
                   registry: Optional[TypeRegistry]) -> Iterator[ScopeNode]:
    """The record itself, then the qualifiers of an out-of-line name (``struct A::B {}``)."""
    path = _record_path(record, source)
    yield ScopeNode(ScopeKind.TYPE_SCOPE, path[-1] if path else "")
    if len(path) < 2:
        return
    lexical = _lookup_scope(record, source)
    for i in range(len(path) - 2, -1, -1):
        kind = registry.scope_kind("::".join(path[:i + 1]), lexical) if registry else None
        yield ScopeNode(kind or ScopeKind.NAMESPACE, path[i])


def _lexical_scopes(node: Node, source: bytes,
                    registry: Optional[TypeRegistry] = None) -> Iterator[ScopeNode]:
    """Enclosing scopes of a node, innermost first."""
    current = node.parent
    while current is not None:
        if current.type == "namespace_definition":
            for name in reversed(_namespace_names(current, source)):
                yield ScopeNode(ScopeKind.NAMESPACE, name)
        elif current.type in _RECORD_NODES and current.child_by_field_name("body") is not None:
            yield from _record_scopes(current, source, registry)
        elif current.type == "function_definition":
            yield ScopeNode(ScopeKind.OTHER, "function")
        elif current.type == "linkage_specification":
            yield ScopeNode(ScopeKind.OTHER, "linkage")
        elif current.type == "translation_unit":
            yield ScopeNode(ScopeKind.OTHER, "translation_unit")
        current = current.parent


def _lookup_scope(node: Node, source: bytes) -> Tuple[str, ...]:
    """Names usable as a lookup prefix for ``node`` (outermost first, anonymous namespaces dropped)."""
    names = [s.name for s in _lexical_scopes(node, source)
             if s.kind is not ScopeKind.OTHER and s.name]
    return tuple(reversed(names))


# ═══════════════════════════════════════════════════════════════════════
#  Context + candidates
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class AstContext:
    """Ambient state shared by every candidate of one translation unit."""
    file_path: str
    source: bytes
    registry: TypeRegistry
    printing_policy: PrintingPolicy = DEFAULT_POLICY


class FunctionCandidate:
    """A function declaration or definition found in a translation unit."""

    def __init__(self, node: Node, declarator: Node, context: AstContext,
                 name_node: Optional[Node] = None):
        self.node = node
        self.declarator = declarator
        self.context = context
        if name_node is None:
            name_node = declarator.child_by_field_name("declarator")
        self.qualifiers, self.name = self._split_name(name_node)
        params = declarator.child_by_field_name("parameters")
        self.parameters: List[Node] = self._real_parameters(params)
        self.is_variadic = params is not None and any(
            c.type in ("...", "variadic_parameter", "variadic_parameter_declaration")
            for c in params.children
        )

    def __repr__(self):
        return f"FunctionCandidate({'::'.join(self.qualifiers + [self.name])} @ {self.context.file_path}:{self.start_line})"

    # ── Identity ──

    @property
    def is_definition(self) -> bool:
        return self.node.type == "function_definition"

    @property
    def start_line(self) -> int:
        return self.node.start_point[0] + 1

    @property
    def end_line(self) -> int:
        return self.node.end_point[0] + 1

    def _text(self, node: Node) -> str:
        return _node_text(node, self.context.source)

    def _split_name(self, node: Node) -> Tuple[List[str], str]:
        segments: List[str] = []
        while node.type == "qualified_identifier":
            scope = node.child_by_field_name("scope")
            if scope is not None:
                if scope.type == "template_type":
                    scope = scope.child_by_field_name("name")
                segments.append(self._text(scope))
            node = node.child_by_field_name("name")
        if node.type == "template_function":
            node = node.child_by_field_name("name")
        if node.type == "operator_cast":
            # "operator const char *": everything up to the parameter list
            params = self.declarator.child_by_field_name("parameters")
            end = params.start_byte if params is not None else node.end_byte
            return segments, normalise_name(_without(self.context.source, node.start_byte, end, []))
        return segments, normalise_name(self._text(node))

    def _real_parameters(self, params: Optional[Node]) -> List[Node]:
        if params is None:
            return []
        result = [c for c in params.named_children if c.type in _PARAMETER_NODES]
        # f(void) declares no parameters
        if len(result) == 1 and result[0].child_by_field_name("declarator") is None:
            type_node = result[0].child_by_field_name("type")
            if type_node is not None and self._text(type_node) == "void" \
                    and self._text(result[0]).strip() == "void":
                return []
        return result

    # ── Parameters ──

    @property
    def parameter_count(self) -> int:
        return len(self.parameters)

    @property
    def required_parameter_count(self) -> int:
        """Parameters without a default argument."""
        return len([p for p in self.parameters if p.type == "parameter_declaration"])

    @property
    def parameter_names(self) -> List[str]:
        names = []
        for param in self.parameters:
            ident = _declarator_name(param.child_by_field_name("declarator"), {"identifier"})
            names.append(self._text(ident) if ident is not None else "")
        return names

    def parameter_type_text(self, param: Node) -> str:
        """The parameter as written, minus its name and default argument."""
        end = param.end_byte
        if param.type == "optional_parameter_declaration":
            for child in param.children:
                if child.type == "=":
                    end = child.start_byte
                    break
        holes = []
        ident = _declarator_name(param.child_by_field_name("declarator"), {"identifier"})
        if ident is not None:
            holes.append(ident)
        return _without(self.context.source, param.start_byte, end, holes)

    def canonical_parameter_types(self, policy: Optional[PrintingPolicy] = None) -> Iterator[str]:
        """Canonical spelling of each parameter type, in order."""
        policy = policy or self.context.printing_policy
        scope = self.semantic_scope()
        for param in self.parameters:
            yield render_type(self.parameter_type_text(param), self.context.registry, scope, policy)

    # ── Scopes ──

    def semantic_scope(self) -> Tuple[str, ...]:
        """Lookup prefix for names used in the signature, outermost first."""
        return _lookup_scope(self.node, self.context.source) + tuple(self.qualifiers)

    def _qualifier_kinds(self) -> List[ScopeKind]:
        lexical = _lookup_scope(self.node, self.context.source)
        kinds = []
        for i, _ in enumerate(self.qualifiers):
            kind = self.context.registry.scope_kind("::".join(self.qualifiers[:i + 1]), lexical)
            if kind is None:
                # Unknown qualifier: the innermost one is usually the class of a method.
                kind = ScopeKind.TYPE_SCOPE if i == len(self.qualifiers) - 1 else ScopeKind.NAMESPACE
            kinds.append(kind)
        return kinds

    def enclosing_scopes(self) -> Iterator[ScopeNode]:
        """Semantic enclosing scopes, innermost first."""
        if self.qualifiers:
            kinds = self._qualifier_kinds()
            for name, kind in reversed(list(zip(self.qualifiers, kinds))):
                yield ScopeNode(kind, name)
        yield from _lexical_scopes(self.node, self.context.source, self.context.registry)

    # ── Definition parts ──

    @property
    def body(self) -> Optional[Node]:
        return self.node.child_by_field_name("body")

    @property
    def signature(self) -> str:
        end = self.body.start_byte if self.body is not None else self.node.end_byte
        text = self.context.source[self.node.start_byte:end].decode("utf-8", errors="replace")
        return re.sub(r"\s+", " ", text).strip().rstrip(";").strip()

    @property
    def is_inline(self) -> bool:
        if self.node.parent is not None and self.node.parent.type == "field_declaration_list":
            return True
        return any(
            c.type == "storage_class_specifier" and self._text(c) == "inline"
            for c in self.node.children
        )

    @property
    def is_method(self) -> bool:
        return any(s.kind is ScopeKind.TYPE_SCOPE for s in self.enclosing_scopes())


# ═══════════════════════════════════════════════════════════════════════
#  TranslationUnit
# ═══════════════════════════════════════════════════════════════════════

class TranslationUnit:
    """
    One parsed source file.

    Usage:
        unit = TranslationUnit.from_file("src/widget.cpp")
        for fn in unit.functions("draw"):
            print(fn.signature)

    Pass a shared ``registry`` to make typedefs from other files (headers)
    visible when canonicalising parameter types.
    """

    def __init__(self, file_path: str, source: bytes,
                 registry: Optional[TypeRegistry] = None,
                 policy: PrintingPolicy = DEFAULT_POLICY):
        self.file_path = file_path
        self.source = source
        self.tree = _parser.parse(source) if source else None
        self.registry = registry if registry is not None else TypeRegistry()
        self.context = AstContext(file_path, source, self.registry, policy)
        if self.tree is not None:
            self._index_types()

    @classmethod
    def from_source(cls, source: Union[str, bytes], file_path: str = "<memory>",
                    registry: Optional[TypeRegistry] = None,
                    policy: PrintingPolicy = DEFAULT_POLICY) -> "TranslationUnit":
        if isinstance(source, str):
            source = source.encode("utf-8")
        return cls(file_path, source, registry, policy)

    @classmethod
    def from_file(cls, path: str, registry: Optional[TypeRegistry] = None,
                  policy: PrintingPolicy = DEFAULT_POLICY,
                  display_path: Optional[str] = None) -> "TranslationUnit":
        """Parse a file.  Unreadable or binary files give an empty unit."""
        if not os.path.isfile(path):
            raise FileNotFoundError(f"File not found: {path}")
        shown = display_path or path
        try:
            with open(path, "rb") as f:
                source = f.read()
        except OSError as e:
            logger.error("Cannot read %s: %s", path, e)
            return cls(shown, b"", registry, policy)

        if b"\x00" in source[:8192]:
            logger.warning("Skipping binary file: %s", path)
            return cls(shown, b"", registry, policy)
        return cls(shown, source, registry, policy)

    @property
    def is_empty(self) -> bool:
        return self.tree is None

    def restrict_types(self, visible_files: Iterable[str]):
        """See only types declared in this file and ``visible_files`` (its includes)."""
        self.context.registry = self.registry.view({self.file_path, *visible_files})

    def node_text(self, node: Node) -> str:
        return _node_text(node, self.source)

    # ────────────────────────────────────────────────────────────────
    #  Type indexing
    # ────────────────────────────────────────────────────────────────

    def _index_types(self):
        wanted = {"namespace_definition", "type_definition", "alias_declaration",
                  "enum_specifier"} | _RECORD_NODES
        for node in _walk_types(self.tree.root_node, wanted):
            # Block-scope typedefs and local classes are invisible outside their block.
            if _in_block(node):
                continue
            scope = _lookup_scope(node, self.source)
            if node.type == "namespace_definition":
                names = [n for n in _namespace_names(node, self.source) if n]
                for i in range(len(names)):
                    self.registry.add_namespace("::".join(scope + tuple(names[:i + 1])))
            elif node.type in _RECORD_NODES or node.type == "enum_specifier":
                path = _record_path(node, self.source)
                if path and self._declares_record(node):
                    self.registry.add_record("::".join(scope + tuple(path)), self.file_path)
            elif node.type == "type_definition":
                self._index_typedef(node, scope)
            else:
                self._index_alias(node, scope)

    @staticmethod
    def _declares_record(node: Node) -> bool:
        """True for a record with a body or a forward declaration (``struct S;``)."""
        if node.child_by_field_name("body") is not None:
            return True
        if node.next_sibling is not None and node.next_sibling.type == ";":
            return True
        parent = node.parent
        return (parent is not None and parent.type in _DECLARATION_NODES
                and parent.child_by_field_name("declarator") is None)

    def _index_typedef(self, node: Node, scope: Tuple[str, ...]):
        declarators = node.children_by_field_name("declarator")
        type_node = node.child_by_field_name("type")
        if not declarators or type_node is None:
            return

        # typedef struct { ... } T;  T names the record itself.
        is_record = type_node.type in _RECORD_NODES or type_node.type == "enum_specifier"
        record_name = _record_name(type_node, self.source) if is_record else None
        if is_record and record_name is None:
            for decl in declarators:
                if decl.type == "type_identifier":
                    self.registry.add_record("::".join(scope + (self.node_text(decl),)), self.file_path)
            return

        spec_start = node.children[0].end_byte if node.children[0].type == "typedef" \
            else node.start_byte
        if record_name is not None:
            # Keep "struct Foo", drop the body.
            type_text = f"{type_node.children[0].type} {record_name}"
        else:
            type_text = self.node_text(type_node)
        specifiers = " ".join([
            self.source[spec_start:type_node.start_byte].decode("utf-8", errors="replace"),
            type_text,
            self.source[type_node.end_byte:declarators[0].start_byte].decode("utf-8", errors="replace"),
        ])
        specifiers = re.sub(r"\s+", " ", specifiers).strip()

        for decl in declarators:
            name = _declarator_name(decl, {"type_identifier", "primitive_type"})
            if name is None:
                continue
            rest = _without(self.source, decl.start_byte, decl.end_byte, [name])
            alias = self.node_text(name)
            self.registry.add(TypeAlias(
                alias="::".join(scope + (alias,)),
                resolved=f"{specifiers} {rest}".strip(),
                scope=scope, file=self.file_path, line=node.start_point[0] + 1,
            ))

    def _index_alias(self, node: Node, scope: Tuple[str, ...]):
        name = node.child_by_field_name("name")
        target = node.child_by_field_name("type")
        if name is None or target is None:
            return
        self.registry.add(TypeAlias(
            alias="::".join(scope + (self.node_text(name),)),
            resolved=self.node_text(target),
            scope=scope, file=self.file_path, line=node.start_point[0] + 1,
        ))

    # ────────────────────────────────────────────────────────────────
    #  Function traversal
    # ────────────────────────────────────────────────────────────────

    def functions(self, name: Optional[str] = None,
                  definitions_only: bool = True) -> Iterator[FunctionCandidate]:
        """Yield function candidates in source order, optionally filtered by name."""
        if self.tree is None:
            return
        wanted = {"function_definition"}
        if not definitions_only:
            wanted |= _DECLARATION_NODES
        for node in _walk_types(self.tree.root_node, wanted):
            if node.parent is not None and node.parent.type == "friend_declaration":
                continue
            parts = _function_declarator(node)
            if parts is None:
                continue
            candidate = FunctionCandidate(node, parts[0], self.context, parts[1])
            if name is None or candidate.name == normalise_name(name):
                yield candidate
