"""Lexical helpers for Cypher text.

These work on the query string only (no parser, no I/O). String literals and
comments are blanked out first so that a name such as 'Set-up Costs' is never
mistaken for a clause keyword.
"""

import re

_STRING_LITERAL = re.compile(r"'(?:[^'\\]|\\.)*'|\"(?:[^\"\\]|\\.)*\"")
_LINE_COMMENT = re.compile(r"//[^\n]*")
_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)

WRITE_CLAUSE = re.compile(
    r"\b(CREATE|MERGE|DELETE|DETACH\s+DELETE|SET|REMOVE|DROP|FOREACH|LOAD\s+CSV)\b",
    re.IGNORECASE,
)

# Clause keywords that end a RETURN projection.
_PROJECTION_END = re.compile(r"\b(ORDER\s+BY|SKIP|LIMIT|UNION)\b", re.IGNORECASE)


def strip_literals(query: str) -> str:
    """Blank out comments and quoted strings, keeping the query length stable."""
    text = _BLOCK_COMMENT.sub(lambda m: " " * len(m.group(0)), query or "")
    text = _LINE_COMMENT.sub(lambda m: " " * len(m.group(0)), text)
    return _STRING_LITERAL.sub(lambda m: "''" + " " * (len(m.group(0)) - 2), text)


def string_literals(query: str) -> list[str]:
    """Quoted string values that appear in the query, in order of appearance."""
    values = []
    for match in _STRING_LITERAL.finditer(query or ""):
        value = match.group(0)[1:-1].strip()
        if value and value not in values:
            values.append(value)
    return values


def has_clause(query: str, keyword: str) -> bool:
    pattern = r"\b" + r"\s+".join(keyword.split()) + r"\b"
    return re.search(pattern, strip_literals(query), re.IGNORECASE) is not None


def has_write_clause(query: str) -> bool:
    return WRITE_CLAUSE.search(strip_literals(query)) is not None


def final_projection(query: str) -> str:
    """Text of the last RETURN projection, without ORDER BY / SKIP / LIMIT."""
    text = strip_literals(query)
    matches = list(re.finditer(r"\bRETURN\b", text, re.IGNORECASE))
    if not matches:
        return ""
    tail = text[matches[-1].end():]
    end = _PROJECTION_END.search(tail)
    if end:
        tail = tail[:end.start()]
    tail = tail.strip()
    if tail[:8].upper() == "DISTINCT":
        tail = tail[8:]
    return tail.strip().rstrip(";").strip()


def split_top_level(text: str, sep: str = ",") -> list[str]:
    """Split on ``sep`` outside parentheses, brackets and braces."""
    items, depth, current = [], 0, []
    for char in text:
        if char in "([{":
            depth += 1
        elif char in ")]}":
            depth = max(depth - 1, 0)
        if char == sep and depth == 0:
            items.append("".join(current).strip())
            current = []
        else:
            current.append(char)
    tail = "".join(current).strip()
    if tail:
        items.append(tail)
    return items


def node_labels(query: str) -> list[str]:
    """Labels used in node patterns, e.g. ``(s:Sector)`` -> ``Sector``."""
    text = strip_literals(query)
    labels = []
    for match in re.finditer(r"\(\s*\w*\s*((?::\s*`?\w+`?\s*)+)", text):
        for label in re.findall(r":\s*`?(\w+)`?", match.group(1)):
            if label not in labels:
                labels.append(label)
    return labels


def relationship_types(query: str) -> list[str]:
    """Relationship types used in patterns, e.g. ``-[:HAS_SECTOR|EXPERIENCES]->``."""
    text = strip_literals(query)
    types = []
    for match in re.finditer(r"\[\s*\w*\s*:\s*([\w|:`\s]+?)\s*(?:\*|\{|\])", text):
        for rel in re.split(r"[|:]", match.group(1)):
            rel = rel.strip().strip("`")
            if rel and rel not in types:
                types.append(rel)
    return types
