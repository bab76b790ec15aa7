"""
Definition Search — drives the MatchHandler over parsed source files.

Usage:
    search = DefinitionSearch()
    definition = search.find_definition("/path/to/project", "src/main.cpp", 42, 9)
    if definition is not None:
        print(definition.location, definition.body)

The search feeds every function definition with the declaration's name to
the MatchHandler, in sorted file order and source order within a file.
With ``stop_on_first_match`` (the default) it stops at the first match;
otherwise every candidate is evaluated and the query's overwrite policy
decides which definition ends up in the result slot.
"""

import os
import logging
from typing import Dict, List, Optional

from .config import SearchConfig
from .declaration_data import DeclarationData, Query
from .declaration_search import collect_call_site
from .include_graph import IncludeGraph, norm_path
from .definition_data import DefinitionData
from .match_handler import MatchHandler
from .translation_unit import TranslationUnit
from .type_system import PrintingPolicy, TypeRegistry

logger = logging.getLogger(__name__)

_HEADER_EXTENSIONS = {".h", ".hh", ".hpp", ".hxx", ".inl"}


class DefinitionSearch:
    """Finds the definition matching a declaration in one file or a workspace."""

    def __init__(self, config: Optional[SearchConfig] = None):
        self.config = config or SearchConfig()
        self.policy = PrintingPolicy.for_language(self.config.language)

    def new_query(self, declaration: DeclarationData) -> Query:
        return Query(
            declaration=declaration,
            policy=self.config.overwrite_policy,
            strict_scopes=self.config.strict_scopes,
        )

    # ────────────────────────────────────────────────────────────────
    #  Single unit
    # ────────────────────────────────────────────────────────────────

    def search_unit(self, query: Query, unit: TranslationUnit) -> Optional[DefinitionData]:
        """Run every same-named definition in ``unit`` through the match handler."""
        handler = MatchHandler(query)
        for candidate in unit.functions(query.declaration.name):
            if handler.run(candidate, unit.context) and self.config.stop_on_first_match:
                break
        return query.definition

    # ────────────────────────────────────────────────────────────────
    #  Workspace
    # ────────────────────────────────────────────────────────────────

    def discover_files(self, root: str) -> List[str]:
        """All C/C++ files under ``root``, relative and sorted."""
        files = []
        skip = set(self.config.skip_dirs)
        for dirpath, dirs, filenames in os.walk(root):
            dirs[:] = [d for d in dirs if d not in skip]
            for fname in filenames:
                if os.path.splitext(fname)[1].lower() in self.config.extensions:
                    files.append(norm_path(os.path.relpath(os.path.join(dirpath, fname), root)))
        return sorted(files)

    def include_dirs(self, files: List[str]) -> List[str]:
        if self.config.include_dirs:
            return list(self.config.include_dirs)
        headers = [f for f in files if os.path.splitext(f)[1].lower() in _HEADER_EXTENSIONS]
        return sorted({os.path.dirname(f) or "." for f in headers})

    def load_workspace(self, root: str) -> Dict[str, TranslationUnit]:
        """Parse every file under ``root`` into units sharing one TypeRegistry.

        Each unit sees only the types declared in itself and in the
        workspace files it includes, directly or transitively.
        """
        files = self.discover_files(root)
        registry = TypeRegistry()
        units: Dict[str, TranslationUnit] = {}
        for rel_path in files:
            native = os.path.join(root, rel_path.replace("/", os.sep))
            units[rel_path] = TranslationUnit.from_file(
                native, registry=registry, policy=self.policy, display_path=rel_path,
            )

        includes = IncludeGraph(root, self.include_dirs(files))
        includes.build(files)
        for rel_path, unit in units.items():
            unit.restrict_types(includes.get_transitive_includes(rel_path))
        logger.info(
            "Loaded %d files from %s (%d type aliases, %d records)",
            len(units), root, registry.total_aliases, registry.total_records,
        )
        return units

    def search_workspace(self, query: Query, root: str,
                         units: Optional[Dict[str, TranslationUnit]] = None) -> Optional[DefinitionData]:
        units = units if units is not None else self.load_workspace(root)
        for rel_path in sorted(units):
            self.search_unit(query, units[rel_path])
            if query.has_match and self.config.stop_on_first_match:
                break

        if query.has_match:
            logger.info("Definition of %s found at %s",
                        query.declaration.qualified_name, query.definition.location)
        else:
            logger.info("No definition of %s found under %s",
                        query.declaration.qualified_name, root)
        return query.definition

    def find_definition(self, root: str, file_path: str, line: int,
                        column: int) -> Optional[DefinitionData]:
        """Find the definition of the function called at ``file_path:line:column``."""
        units = self.load_workspace(root)
        rel_path = norm_path(os.path.relpath(os.path.join(root, file_path), root))
        unit = units.get(rel_path)
        if unit is None:
            unit = TranslationUnit.from_file(os.path.join(root, file_path), policy=self.policy,
                                             display_path=rel_path)
        others = [u for path, u in sorted(units.items()) if path != rel_path]

        declaration = collect_call_site(unit, line, column, search_units=others)
        if declaration is None:
            return None
        return self.search_workspace(self.new_query(declaration), root, units)
