"""
Definition Data — the payload captured when a candidate matches.

DefinitionData is a plain record (location, signature, body text and
parameter names) so that whoever consumes a match (an expander, an editor
integration or a report) can do so without holding on to the syntax tree.
"""

import logging
from typing import List

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class DefinitionData(BaseModel):
    name: str
    qualified_name: str
    file_path: str
    start_line: int
    end_line: int
    start_byte: int = 0
    end_byte: int = 0
    signature: str = ""
    body: str = ""
    parameter_names: List[str] = []
    is_inline: bool = False
    is_method: bool = False

    @property
    def location(self) -> str:
        return f"{self.file_path}:{self.start_line}"


def collect_definition(candidate, context, query) -> DefinitionData:
    """Build the DefinitionData of a matched FunctionCandidate.

    The qualified name is taken from the query's declaration, which is the
    name the caller asked for; the candidate may spell it differently
    (``B::f`` inside ``namespace A``).
    """
    body = candidate.body
    definition = DefinitionData(
        name=candidate.name,
        qualified_name=query.declaration.qualified_name,
        file_path=context.file_path,
        start_line=candidate.start_line,
        end_line=candidate.end_line,
        start_byte=candidate.node.start_byte,
        end_byte=candidate.node.end_byte,
        signature=candidate.signature,
        body=context.source[body.start_byte:body.end_byte].decode("utf-8", errors="replace")
        if body is not None else "",
        parameter_names=candidate.parameter_names,
        is_inline=candidate.is_inline,
        is_method=candidate.is_method,
    )
    logger.debug("Collected definition of %s at %s", definition.qualified_name, definition.location)
    return definition
