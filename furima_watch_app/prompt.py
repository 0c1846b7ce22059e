"""
Named-placeholder prompt templating for the market analysis.

Templates use ``{{name}}`` placeholders.  Names found in the supplied
values are replaced; any other ``{{...}}`` text is left exactly as written
so that prompt authors can keep literal braces or placeholders meant for a
later stage.
"""

from __future__ import annotations

import re
from typing import Any, Mapping

PLACEHOLDERS = (
    "total_items",
    "sold_items",
    "on_sale_items",
    "categories_count",
    "categories",
    "sample_data",
    "sample_size",
    "chunk_index",
    "chunk_count",
    "chunk_start",
    "chunk_end",
)

_PLACEHOLDER_RE = re.compile(r"\{\{(\w+)\}\}")

CHUNK_NOTE = (
    "\n\n[Note] This request covers items {chunk_start} to {chunk_end} of "
    "{sample_total} (chunk {chunk_index}/{chunk_count})."
)

REDUCE_PROMPT = """The following are the results of analysing the same data set in {chunk_count} separate parts. Merge them into a single, comprehensive analysis report.

Instructions:
- Merge duplicated information.
- Reconcile any contradictions between the parts.
- Conclude with the final top 10 best sellers, recommended items to stock, and items to avoid.
- Format the report as readable Markdown.

Results:
{combined}"""


def render_prompt(template: str, values: Mapping[str, Any]) -> str:
    """Substitute ``{{name}}`` placeholders present in ``values``."""

    def _replace(match: "re.Match[str]") -> str:
        name = match.group(1)
        if name in values:
            return str(values[name])
        return match.group(0)

    return _PLACEHOLDER_RE.sub(_replace, template)


def placeholder_hint() -> str:
    return "prompt placeholders: " + ", ".join("{{%s}}" % name for name in PLACEHOLDERS)
