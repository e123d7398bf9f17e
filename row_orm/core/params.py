"""SQL parameter normalization.

Query builders emit `:name` parameters. Before execution, `:...name`
references are expanded into one placeholder per list item, every referenced
parameter is checked for a bound value, and the SQL is converted to the
driver's parameter style. String literals and PostgreSQL `::typecast`
syntax are left untouched.
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Any

from row_orm.core.exceptions import ParameterMissingError

# Matches :name and :...name but not ::typecast and not inside words
_PARAM_PATTERN = re.compile(r"(?<![:\w]):(\.\.\.)?([a-zA-Z_]\w*)")

# Matches single-quoted string literals (with escaped quotes handled)
_STRING_LITERAL_PATTERN = re.compile(r"'(?:[^'\\]|\\.)*'")


def split_literals(sql: str) -> list[tuple[bool, str]]:
    """Split SQL into (is_literal, text) segments."""
    parts: list[tuple[bool, str]] = []
    last_end = 0
    for match in _STRING_LITERAL_PATTERN.finditer(sql):
        start, end = match.span()
        if start > last_end:
            parts.append((False, sql[last_end:start]))
        parts.append((True, match.group()))
        last_end = end
    if last_end < len(sql):
        parts.append((False, sql[last_end:]))
    return parts


def referenced_params(sql: str) -> list[str]:
    """Names of all parameters referenced outside string literals."""
    names: list[str] = []
    for is_literal, text in split_literals(sql):
        if not is_literal:
            names.extend(m.group(2) for m in _PARAM_PATTERN.finditer(text))
    return names


def expand_params(sql: str, params: dict[str, Any] | None) -> tuple[str, dict[str, Any]]:
    """Expand `:...name` list parameters and check that every parameter is bound.

    Raises:
        ParameterMissingError: If a referenced parameter has no value.
    """
    params = dict(params or {})
    expanded: dict[str, Any] = {}

    def replace(match: re.Match[str]) -> str:
        spread, name = match.group(1), match.group(2)
        if name not in params:
            raise ParameterMissingError(name)
        if not spread:
            expanded[name] = params[name]
            return match.group(0)
        values = list(params[name])
        if not values:
            # an empty IN list matches nothing
            return "NULL"
        placeholders = []
        for i, value in enumerate(values):
            key = f"{name}_{i}"
            expanded[key] = value
            placeholders.append(f":{key}")
        return ", ".join(placeholders)

    parts = [
        text if is_literal else _PARAM_PATTERN.sub(replace, text)
        for is_literal, text in split_literals(sql)
    ]
    return "".join(parts), expanded


def normalize_params(sql: str, paramstyle: str) -> str:
    """Convert :name parameters to the target param style.

    Args:
        sql: SQL string with :name parameters.
        paramstyle: Target style - 'named' (no conversion) or 'pyformat' (%(name)s).

    Returns:
        SQL with parameters converted to the target style.
    """
    if paramstyle == "named":
        return sql
    return _convert_to_pyformat(sql)


@lru_cache(maxsize=256)
def _convert_to_pyformat(sql: str) -> str:
    """Convert :name params to %(name)s, preserving string literals.

    Literal percent signs are doubled since pyformat drivers parse the whole
    statement once parameters are passed.
    """
    return "".join(
        text.replace("%", "%%")
        if is_literal
        else _PARAM_PATTERN.sub(r"%(\2)s", text.replace("%", "%%"))
        for is_literal, text in split_literals(sql)
    )
