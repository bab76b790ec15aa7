"""
Include Graph — which workspace files each file can see.

A typedef is only in effect in the file that declares it and in the files
that (transitively) include that file.  The graph resolves ``#include``
directives against the workspace so a DefinitionSearch can give every
translation unit a TypeRegistry view limited to those files.
"""

import os
import re
import logging
from typing import Dict, List, Optional, Set

logger = logging.getLogger(__name__)

_QUOTED = re.compile(r'#\s*include\s*"([^"]+)"')
_ANGLED = re.compile(r'#\s*include\s*<([^>]+)>')


def norm_path(p: str) -> str:
    """Normalise a path to forward slashes for cross-platform consistency."""
    return p.replace("\\", "/")


class IncludeGraph:
    """Resolves #include directives and builds a file dependency DAG."""

    def __init__(self, workspace_root: str, include_dirs: Optional[List[str]] = None):
        self.workspace_root = workspace_root
        self.include_dirs = include_dirs or []
        # file -> directly included files (all relative to workspace)
        self._direct: Dict[str, List[str]] = {}
        self._transitive_cache: Dict[str, Set[str]] = {}

    def build(self, files: List[str]):
        """Parse all files and resolve their #include directives."""
        for fpath in files:
            self._direct[fpath] = self._parse_includes(fpath)
        self._transitive_cache.clear()

    def get_transitive_includes(self, file_path: str) -> Set[str]:
        """All files transitively included (BFS)."""
        if file_path in self._transitive_cache:
            return self._transitive_cache[file_path]

        visited: Set[str] = set()
        queue = list(self._direct.get(file_path, []))
        while queue:
            inc = queue.pop(0)
            if inc in visited:
                continue
            visited.add(inc)
            queue.extend(self._direct.get(inc, []))

        self._transitive_cache[file_path] = visited
        return visited

    def _parse_includes(self, file_path: str) -> List[str]:
        full_path = os.path.join(self.workspace_root, file_path)
        if not os.path.isfile(full_path):
            return []

        includes = []
        try:
            with open(full_path, "r", encoding="utf-8", errors="replace") as f:
                for line in f:
                    stripped = line.strip()
                    if not stripped.startswith("#"):
                        continue
                    m = _QUOTED.match(stripped)
                    if m:
                        resolved = self._resolve_quoted(m.group(1), file_path)
                    else:
                        m = _ANGLED.match(stripped)
                        resolved = self._resolve_angled(m.group(1)) if m else None
                    if resolved:
                        includes.append(resolved)
        except OSError as e:
            logger.error("Error reading includes from %s: %s", file_path, e)
        return includes

    def _in_workspace(self, candidate: str) -> Optional[str]:
        if os.path.isfile(candidate):
            return norm_path(os.path.relpath(candidate, self.workspace_root))
        return None

    def _search_dirs(self, include_name: str) -> Optional[str]:
        for inc_dir in self.include_dirs:
            full_dir = inc_dir if os.path.isabs(inc_dir) else os.path.join(
                self.workspace_root, inc_dir
            )
            found = self._in_workspace(os.path.join(full_dir, include_name))
            if found:
                return found
        return self._in_workspace(os.path.join(self.workspace_root, include_name))

    def _resolve_quoted(self, include_name: str, current_file: str) -> Optional[str]:
        """#include "file.h": relative to the current file, then include dirs, then the root."""
        current_dir = os.path.dirname(os.path.join(self.workspace_root, current_file))
        found = self._in_workspace(os.path.join(current_dir, include_name))
        return found or self._search_dirs(include_name)

    def _resolve_angled(self, include_name: str) -> Optional[str]:
        """#include <file.h>: include dirs, then the root.  System headers give None."""
        return self._search_dirs(include_name)
