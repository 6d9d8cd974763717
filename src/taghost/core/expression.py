"""Built-in tag expression evaluator.

A deliberately small language so the CLI works without a full boolean
grammar: whitespace separated terms, all of which must match.

    role:web            hosts tagged role:web
    role:web-*          glob on the value
    env                 hosts with any "env" tag, or a host named "env"
    *                   every host

Anything implementing ExpressionEvaluator can replace it.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol

from ..utils.tags import split_tag
from .projection import QueryContext

GLOB_CHARS = frozenset("*?[]")


def is_glob(text: str) -> bool:
    return any(c in GLOB_CHARS for c in text)


class ExpressionEvaluator(Protocol):
    """Parses expression text and evaluates it to host ids."""

    def parse(self, text: str) -> Any: ...

    def evaluate(self, tree: Any, context: QueryContext) -> tuple[list[int], list[str]]: ...


@dataclass(frozen=True)
class Term:
    """One "name[:value]" term of an expression."""

    name: str
    value: str | None = None

    @property
    def matches_all(self) -> bool:
        return self.name == "*" and self.value is None

    def _match(self, column: str, pattern: str) -> tuple[str, str]:
        # GLOB is case sensitive, so compare lowered text on both sides
        if is_glob(pattern):
            return f"LOWER({column}) GLOB LOWER(?)", pattern
        return f"{column} = ?", pattern

    def host_ids(self, context: QueryContext) -> set[int]:
        """Ids of hosts matching this term."""
        if self.matches_all:
            return {row[0] for row in context.execute("SELECT id FROM hosts;")}

        name_sql, name_arg = self._match("tags.name", self.name)
        if self.value is None:
            q = (
                "SELECT hosts_tags.host_id FROM hosts_tags "
                "INNER JOIN tags ON hosts_tags.tag_id = tags.id "
                f"WHERE {name_sql};"
            )
            ids = {row[0] for row in context.execute(q, [name_arg])}
            host_sql, host_arg = self._match("name", self.name)
            q = f"SELECT id FROM hosts WHERE {host_sql};"
            return ids | {row[0] for row in context.execute(q, [host_arg])}

        value_sql, value_arg = self._match("tags.value", self.value)
        q = (
            "SELECT hosts_tags.host_id FROM hosts_tags "
            "INNER JOIN tags ON hosts_tags.tag_id = tags.id "
            f"WHERE {name_sql} AND {value_sql};"
        )
        ids = {row[0] for row in context.execute(q, [name_arg, value_arg])}
        if self.name.lower() == "host":
            host_sql, host_arg = self._match("name", self.value)
            q = f"SELECT id FROM hosts WHERE {host_sql};"
            ids |= {row[0] for row in context.execute(q, [host_arg])}
        return ids


class SimpleExpressionEvaluator:
    """Intersection of glob-capable name[:value] terms."""

    def parse(self, text: str) -> list[Term]:
        """Split expression text into terms; empty text matches every host."""
        terms = []
        for token in text.split():
            name, value = split_tag(token)
            terms.append(Term(name, value if ":" in token else None))
        return terms or [Term("*")]

    def evaluate(
        self, tree: Sequence[Term], context: QueryContext
    ) -> tuple[list[int], list[str]]:
        """Evaluate parsed terms.

        Returns:
            Tuple of (host ids in ascending order, referenced tag names)
        """
        result: set[int] | None = None
        for term in tree:
            ids = term.host_ids(context)
            result = ids if result is None else result & ids
        fields = list(
            dict.fromkeys(
                term.name
                for term in tree
                if not term.matches_all and not is_glob(term.name) and term.name.lower() != "host"
            )
        )
        return sorted(result or ()), fields
