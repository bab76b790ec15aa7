"""
Type System — canonical C++ types and the printing convention.

Two spellings of the same parameter type must compare equal, so parameter
types are never compared as written.  Instead each spelling is:

  1. parsed into qualifiers, a base type, template arguments and a list of
     declarator operators (``*``, ``&``, ``&&``, ``[N]``)
  2. canonicalised: builtin spellings normalised (``unsigned`` →
     ``unsigned int``), typedef / using aliases followed through the
     TypeRegistry, record names fully qualified
  3. rendered under a PrintingPolicy into a clang-like string
     (``const int &``, ``int *const *``, ``A::B``)

Spellings this module cannot parse (function pointers, decltype, ...) fall
back to their whitespace-normalised text, which still compares equal when
both sides are spelled the same way.
"""

import re
import copy
import logging
from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Tuple, Union
from dataclasses import dataclass, replace

from .declaration_data import ScopeKind

logger = logging.getLogger(__name__)

_MAX_ALIAS_DEPTH = 32

_QUALIFIERS = ("const", "volatile")
_IGNORED_WORDS = {
    "register", "static", "extern", "inline", "mutable", "typename",
    "constexpr", "thread_local", "restrict", "__restrict", "__restrict__",
}
_TAG_KEYWORDS = {"struct", "class", "union", "enum"}
_BUILTIN_WORDS = {
    "void", "bool", "_Bool", "char", "wchar_t", "char8_t", "char16_t",
    "char32_t", "short", "int", "long", "signed", "unsigned", "float",
    "double", "auto",
}
_DECLARATOR_START = {"*", "&", "&&", "[", "("}

_TOKEN_RE = re.compile(r"\s*(\.\.\.|&&|::|[*&\[\]()<>,]|[A-Za-z_]\w*|\d+|\S)")


# ═══════════════════════════════════════════════════════════════════════
#  Printing convention
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class PrintingPolicy:
    """How a canonical type is rendered to a string."""
    suppress_tag_keyword: bool = True    # "S" instead of "struct S"
    bool_name: str = "bool"
    suppress_scope: bool = False         # "B" instead of "A::B"

    @classmethod
    def for_language(cls, language: str) -> "PrintingPolicy":
        if language == "c":
            return cls(suppress_tag_keyword=False, bool_name="_Bool")
        return cls()


DEFAULT_POLICY = PrintingPolicy()


# ═══════════════════════════════════════════════════════════════════════
#  Type registry (aliases, records, namespaces)
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class TypeAlias:
    """A typedef or alias-declaration."""
    alias: str                 # fully qualified alias name
    resolved: str              # aliased type as spelled
    scope: Tuple[str, ...] = ()  # scope the alias was declared in, outermost first
    file: str = ""
    line: int = 0


def _qualify(scope: Tuple[str, ...], name: str) -> str:
    return "::".join(scope + (name,)) if scope else name


def _lookup_names(name: str, scope: Tuple[str, ...]):
    """Qualified names to try for ``name`` seen from ``scope``, innermost first."""
    if name.startswith("::"):
        yield name[2:]
        return
    for depth in range(len(scope), -1, -1):
        yield _qualify(scope[:depth], name)


class TypeRegistry:
    """Tracks aliases, record types and namespaces by qualified name.

    Aliases and records remember the file that declared them.  A registry
    shared by a whole workspace hands each translation unit a ``view()``
    that only sees entries from the unit's own file and the headers it
    includes, so two sources may typedef the same name differently.
    Namespaces are open across files and are always visible.
    """

    def __init__(self):
        self._aliases: Dict[str, List[TypeAlias]] = {}
        self._records: Dict[str, Set[str]] = {}
        self._namespaces: Set[str] = set()
        self._visible: Optional[FrozenSet[str]] = None

    def view(self, files: Iterable[str]) -> "TypeRegistry":
        """A registry sharing these entries but seeing only those declared in ``files``."""
        scoped = copy.copy(self)
        scoped._visible = frozenset(files)
        return scoped

    def _is_visible(self, file: str) -> bool:
        return self._visible is None or not file or file in self._visible

    def add(self, alias: TypeAlias):
        entries = self._aliases.setdefault(alias.alias, [])
        entries[:] = [e for e in entries if e.file != alias.file]
        entries.append(alias)

    def add_record(self, qualified_name: str, file: str = ""):
        self._records.setdefault(qualified_name, set()).add(file)

    def add_namespace(self, qualified_name: str):
        self._namespaces.add(qualified_name)

    def get(self, alias: str) -> Optional[TypeAlias]:
        visible = [e for e in self._aliases.get(alias, ()) if self._is_visible(e.file)]
        return visible[-1] if visible else None

    def has_record(self, qualified_name: str) -> bool:
        return any(self._is_visible(f) for f in self._records.get(qualified_name, ()))

    def lookup(self, name: str, scope: Tuple[str, ...] = ()) -> Union[TypeAlias, str, None]:
        """Find what ``name`` refers to from inside ``scope``.

        Returns the TypeAlias for an alias, the qualified name for a record,
        or None when the name is unknown.
        """
        for qualified in _lookup_names(name, scope):
            alias = self.get(qualified)
            if alias is not None:
                return alias
            if self.has_record(qualified):
                return qualified
        return None

    def resolve(self, type_name: str, scope: Tuple[str, ...] = ()) -> str:
        """Follow alias chains to get the underlying spelling."""
        visited: Set[str] = set()
        current, current_scope = type_name, scope
        while True:
            found = self.lookup(current, current_scope)
            if not isinstance(found, TypeAlias) or found.alias in visited:
                return current
            visited.add(found.alias)
            current, current_scope = found.resolved.strip(), found.scope

    def scope_kind(self, name: str, scope: Tuple[str, ...] = ()) -> Optional[ScopeKind]:
        """Classify a scope qualifier such as the ``B`` in ``B::f``."""
        for qualified in _lookup_names(name, scope):
            if self.has_record(qualified):
                return ScopeKind.TYPE_SCOPE
            if qualified in self._namespaces:
                return ScopeKind.NAMESPACE
        return None

    @property
    def total_aliases(self) -> int:
        return sum(len(entries) for entries in self._aliases.values())

    @property
    def total_records(self) -> int:
        return len(self._records)


# ═══════════════════════════════════════════════════════════════════════
#  Canonical type
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class CanonicalType:
    name: str                                   # builtin spelling or qualified name
    qualifiers: frozenset = frozenset()
    declarators: Tuple[Tuple[str, Tuple[str, ...]], ...] = ()  # outermost last
    args: Optional[Tuple[Union["CanonicalType", str], ...]] = None
    tag: str = ""
    builtin: bool = False
    raw: bool = False                           # unparsed fallback spelling

    def render(self, policy: PrintingPolicy = DEFAULT_POLICY) -> str:
        if self.raw:
            return self.name

        base = self.name
        if self.builtin and base == "bool":
            base = policy.bool_name
        elif not self.builtin:
            if policy.suppress_scope:
                base = base.rsplit("::", 1)[-1]
            if self.args is not None:
                rendered = [a.render(policy) if isinstance(a, CanonicalType) else a
                            for a in self.args]
                base = f"{base}<{', '.join(rendered)}>"
            if self.tag and not policy.suppress_tag_keyword:
                base = f"{self.tag} {base}"

        text = " ".join([q for q in _QUALIFIERS if q in self.qualifiers] + [base])
        for op, quals in self.declarators:
            if text[-1] in "*&]":
                text += op
            else:
                text += " " + op
            if quals:
                text += " ".join(q for q in _QUALIFIERS if q in quals)
        return text


class _Unparseable(Exception):
    pass


def _builtin_spelling(words: List[str]) -> str:
    unsigned = "unsigned" in words
    signed = "signed" in words
    longs = words.count("long")
    core = [w for w in words if w not in ("signed", "unsigned", "long", "short", "int")]

    if core:
        base = core[0]
        if base == "char":
            if unsigned:
                return "unsigned char"
            return "signed char" if signed else "char"
        if base == "double" and longs:
            return "long double"
        if base == "_Bool":
            return "bool"
        return base

    if "short" in words:
        base = "short"
    elif longs >= 2:
        base = "long long"
    elif longs == 1:
        base = "long"
    else:
        base = "int"
    return f"unsigned {base}" if unsigned else base


def _is_name_token(tok: Optional[str]) -> bool:
    return tok is not None and (tok == "::" or re.match(r"[A-Za-z_]", tok) is not None)


class _TypeParser:
    """Recursive-descent parser over the tokens of one type spelling."""

    def __init__(self, text: str):
        self.tokens = _TOKEN_RE.findall(text)
        self.pos = 0

    def peek(self) -> Optional[str]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def next(self) -> str:
        tok = self.peek()
        if tok is None:
            raise _Unparseable("unexpected end of type")
        self.pos += 1
        return tok

    def at_end(self) -> bool:
        return self.pos >= len(self.tokens)

    def parse_type(self) -> CanonicalType:
        qualifiers: Set[str] = set()
        builtin: List[str] = []
        name: Optional[str] = None
        args = None
        tag = ""

        while self.peek() is not None and self.peek() not in _DECLARATOR_START | {",", ">"}:
            tok = self.next()
            if tok in _QUALIFIERS:
                qualifiers.add(tok)
            elif tok in _IGNORED_WORDS:
                continue
            elif tok in _TAG_KEYWORDS:
                tag = tag or tok
            elif tok in _BUILTIN_WORDS:
                if name is not None:
                    raise _Unparseable(tok)
                builtin.append(tok)
            elif _is_name_token(tok):
                if name is not None or builtin:
                    raise _Unparseable(tok)
                name, args = self._parse_name(tok)
            else:
                raise _Unparseable(tok)

        if name is None and not builtin:
            raise _Unparseable("missing base type")

        return CanonicalType(
            name=_builtin_spelling(builtin) if builtin else name,
            qualifiers=frozenset(qualifiers),
            declarators=self._parse_declarators(),
            args=args,
            tag="" if builtin else tag,
            builtin=bool(builtin),
        )

    def _parse_name(self, first: str):
        parts = []
        args = None
        leading = first == "::"
        tok = self.next() if leading else first
        while True:
            if not re.match(r"[A-Za-z_]", tok):
                raise _Unparseable(tok)
            segment = tok
            args = None
            if self.peek() == "<":
                self.next()
                args = self._parse_template_args()
            if self.peek() != "::":
                parts.append(segment)
                break
            # Template arguments in the middle of a qualified name are kept verbatim.
            if args is not None:
                segment += "<" + ", ".join(
                    a.render() if isinstance(a, CanonicalType) else a for a in args
                ) + ">"
            parts.append(segment)
            self.next()
            tok = self.next()
        name = "::".join(parts)
        return ("::" + name if leading else name), args

    def _parse_template_args(self):
        args = []
        if self.peek() == ">":
            self.next()
            return tuple(args)
        while True:
            if _is_name_token(self.peek()):
                args.append(self.parse_type())
            else:
                args.append(self._collect_expression())
            tok = self.next()
            if tok == ">":
                return tuple(args)
            if tok != ",":
                raise _Unparseable(tok)

    def _collect_expression(self) -> str:
        parts = []
        depth = 0
        while self.peek() is not None:
            tok = self.peek()
            if depth == 0 and tok in (",", ">"):
                break
            if tok == "(":
                depth += 1
            elif tok == ")":
                depth -= 1
            parts.append(self.next())
        if not parts:
            raise _Unparseable("empty template argument")
        return "".join(parts)

    def _parse_declarators(self):
        declarators = []
        while self.peek() is not None:
            tok = self.peek()
            if tok == "*":
                self.next()
                quals = set()
                while self.peek() in _QUALIFIERS or self.peek() in _IGNORED_WORDS:
                    word = self.next()
                    if word in _QUALIFIERS:
                        quals.add(word)
                declarators.append(("*", tuple(q for q in _QUALIFIERS if q in quals)))
            elif tok in ("&", "&&"):
                self.next()
                declarators.append((tok, ()))
            elif tok == "[":
                self.next()
                size = []
                while self.peek() != "]":
                    size.append(self.next())
                self.next()
                declarators.append((f"[{''.join(size)}]", ()))
            else:
                break
        return tuple(declarators)


def _normalise_space(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def _collapse_references(declarators: List[Tuple[str, Tuple[str, ...]]]):
    """Apply C++ reference collapsing to adjacent reference operators."""
    result: List[Tuple[str, Tuple[str, ...]]] = []
    for op, quals in declarators:
        if result and op in ("&", "&&") and result[-1][0] in ("&", "&&"):
            if op == "&" or result[-1][0] == "&":
                result[-1] = ("&", ())
            continue
        result.append((op, quals))
    return result


def _substitute(target: CanonicalType, use: CanonicalType) -> CanonicalType:
    """Put the canonical ``target`` of an alias where ``use`` named the alias."""
    if target.raw:
        rendered = CanonicalType(name="_", declarators=use.declarators).render()[1:]
        quals = " ".join(q for q in _QUALIFIERS if q in use.qualifiers)
        return CanonicalType(name=_normalise_space(f"{quals} {target.name} {rendered}"), raw=True)

    declarators = list(target.declarators)
    qualifiers = set(target.qualifiers)
    if declarators and declarators[-1][0] == "*":
        op, quals = declarators[-1]
        merged = set(quals) | set(use.qualifiers)
        declarators[-1] = (op, tuple(q for q in _QUALIFIERS if q in merged))
    elif declarators and declarators[-1][0] in ("&", "&&"):
        pass  # cv-qualifiers on a reference are ignored
    else:
        qualifiers |= set(use.qualifiers)

    declarators.extend(use.declarators)
    return replace(
        target,
        qualifiers=frozenset(qualifiers),
        declarators=tuple(_collapse_references(declarators)),
    )


def _canonicalise(ctype: CanonicalType, registry: Optional[TypeRegistry],
                  scope: Tuple[str, ...], depth: int,
                  seen: frozenset = frozenset()) -> CanonicalType:
    if ctype.raw or ctype.builtin:
        return ctype
    if depth > _MAX_ALIAS_DEPTH:
        logger.warning("Alias chain too deep while resolving %s", ctype.name)
        return ctype

    if ctype.args is not None:
        ctype = replace(ctype, args=tuple(
            _canonicalise(a, registry, scope, depth + 1) if isinstance(a, CanonicalType) else a
            for a in ctype.args
        ))

    if registry is None:
        return replace(ctype, name=ctype.name.lstrip(":"))

    found = registry.lookup(ctype.name, scope)
    if found is None:
        return replace(ctype, name=ctype.name.lstrip(":"))
    if isinstance(found, str):
        return replace(ctype, name=found)
    if found.alias in seen:
        # typedef struct S S;  the alias names its own record.
        return replace(ctype, name=found.alias)
    if ctype.args is not None:
        # Alias templates are not expanded.
        return replace(ctype, name=found.alias)

    target = _canonicalise(_parse(found.resolved), registry, found.scope, depth + 1,
                           seen | {found.alias})
    return _substitute(target, ctype)


def _parse(type_text: str) -> CanonicalType:
    parser = _TypeParser(type_text)
    try:
        ctype = parser.parse_type()
        if not parser.at_end():
            raise _Unparseable(parser.peek())
        return ctype
    except _Unparseable as e:
        logger.debug("Cannot parse type %r (%s), comparing as text", type_text, e)
        return CanonicalType(name=_normalise_space(type_text), raw=True)


def canonical_type(type_text: str, registry: Optional[TypeRegistry] = None,
                   scope: Tuple[str, ...] = ()) -> CanonicalType:
    """Parse and canonicalise a type spelling seen from ``scope``."""
    return _canonicalise(_parse(type_text), registry, tuple(scope), 0)


def render_type(type_text: str, registry: Optional[TypeRegistry] = None,
                scope: Tuple[str, ...] = (),
                policy: PrintingPolicy = DEFAULT_POLICY) -> str:
    return canonical_type(type_text, registry, scope).render(policy)
