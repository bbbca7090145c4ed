"""Contextual reference resolution.

Rewrites pronouns in an instruction ("update it") into the concrete thing
they refer to, using recent memory entries.  The default resolver knows one
grammar: a pronoun points at the most recently quoted literal.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from dataclasses import field
from typing import Protocol
from typing import runtime_checkable

from mnemoloop.engine.selection import last_quoted_literal
from mnemoloop.memory.schemas import MemoryEntry
from mnemoloop.memory.schemas import MemoryRole


@dataclass(frozen=True)
class Resolution:
    """Outcome of resolving one instruction.

    ``matches`` holds the referents substituted into ``rewritten``.  When
    nothing was resolved ``rewritten`` equals the input and ``matches`` is
    empty.
    """

    rewritten: str
    matches: list[str] = field(default_factory=list)
    source_entry_ids: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.matches)


@runtime_checkable
class ReferenceResolver(Protocol):
    """Protocol for pronoun-to-referent rewriting."""

    def resolve(
        self, instruction: str, recent_entries: Sequence[MemoryEntry]
    ) -> Resolution: ...


class QuotedLiteralResolver:
    """Replaces pronouns with the last quoted literal seen in memory.

    Entries are scanned newest first; the first one that quotes something
    supplies the referent (its last quoted literal).  Entries whose role is
    in *skip_roles* are ignored; by default that is ``tool`` entries, whose
    content is serialized tool output rather than something a user named.  Every whole-word,
    case-insensitive pronoun occurrence is replaced with the literal in
    double quotes.
    """

    def __init__(
        self,
        pronouns: Sequence[str] = ("it", "that", "this"),
        *,
        skip_roles: Sequence[MemoryRole] = (MemoryRole.tool,),
    ) -> None:
        self._pronouns = tuple(pronouns)
        self._skip_roles = frozenset(MemoryRole(r) for r in skip_roles)
        alternatives = "|".join(re.escape(p) for p in self._pronouns)
        self._pattern = re.compile(rf"\b(?:{alternatives})\b", re.IGNORECASE)

    @property
    def pronouns(self) -> tuple[str, ...]:
        return self._pronouns

    def resolve(
        self, instruction: str, recent_entries: Sequence[MemoryEntry]
    ) -> Resolution:
        if not self._pronouns or not self._pattern.search(instruction):
            return Resolution(rewritten=instruction)

        for entry in reversed(recent_entries):
            if entry.role in self._skip_roles:
                continue
            literal = last_quoted_literal(entry.content)
            if literal is None:
                continue
            quoted = f'"{literal}"'
            rewritten = self._pattern.sub(lambda _m: quoted, instruction)
            return Resolution(
                rewritten=rewritten,
                matches=[quoted],
                source_entry_ids=[entry.id],
            )
        return Resolution(rewritten=instruction)
