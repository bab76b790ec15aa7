"""
Search configuration.

All knobs of a definition search in one validated model, passed to
DefinitionSearch the way the rest of the package takes its workspace root.
"""

from typing import List

from pydantic import BaseModel, field_validator

from .declaration_data import OverwritePolicy

# File extensions searched in a workspace
DEFAULT_EXTENSIONS = [".c", ".h", ".cc", ".cpp", ".cxx", ".hh", ".hpp", ".hxx", ".inl"]

# Directories never descended into
DEFAULT_SKIP_DIRS = [
    ".git", "build", "cmake-build-debug", "cmake-build-release",
    "__pycache__", "node_modules", ".vscode", ".idea", "venv",
]


class SearchConfig(BaseModel):
    extensions: List[str] = DEFAULT_EXTENSIONS
    skip_dirs: List[str] = DEFAULT_SKIP_DIRS
    # Searched for #include targets; empty means every directory holding a header
    include_dirs: List[str] = []
    stop_on_first_match: bool = True
    overwrite_policy: OverwritePolicy = OverwritePolicy.LAST_WINS
    strict_scopes: bool = False
    language: str = "cpp"

    @field_validator("extensions")
    @classmethod
    def _dotted_lowercase(cls, value: List[str]) -> List[str]:
        return [(e if e.startswith(".") else "." + e).lower() for e in value]

    @field_validator("language")
    @classmethod
    def _known_language(cls, value: str) -> str:
        if value not in ("c", "cpp"):
            raise ValueError(f"language must be 'c' or 'cpp', got {value!r}")
        return value
