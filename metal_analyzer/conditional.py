"""
metal_analyzer/conditional.py
═════════════════════════════

Conditional-compilation stack for ``#if`` chains.

    #if A          push   ──► frame(active=A,          taken=A)
    #elif B        elif   ──► frame(active=!taken&&B,  taken|=B)
    #else          else   ──► frame(active=!taken,     else_seen)
    #endif         pop

A branch is only active when every enclosing frame is active, so the
conditions of ``#elif`` chains nested in an inactive region are never
evaluated: the caller asks ``needs_evaluation()`` first.

License: MIT — same as metal-analyzer.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from .diagnostics import SourceLocation
from .errors import MalformedDirectiveError


@dataclass(slots=True)
class ConditionalFrame:
    """
    One open ``#if`` chain.

    Attributes
    ----------
    active : bool
        The current branch of this chain is being compiled.
    taken : bool
        Some branch of the chain has already been active.
    else_seen : bool
        ``#else`` has been met; further ``#elif``/``#else`` are errors.
    parent_active : bool
        The region enclosing the chain is active.
    opened_at : SourceLocation
        The opening ``#if``/``#ifdef``/``#ifndef``.
    """
    active: bool
    taken: bool
    else_seen: bool
    parent_active: bool
    opened_at: SourceLocation


class ConditionalStack:
    """Nesting state of conditional chains for a single file."""

    def __init__(self) -> None:
        self._frames: List[ConditionalFrame] = []

    @property
    def depth(self) -> int:
        return len(self._frames)

    @property
    def active(self) -> bool:
        """True when code at the current position is compiled."""
        return not self._frames or self._frames[-1].active

    def needs_evaluation(self) -> bool:
        """
        Whether the condition of the *next* ``#if`` should be evaluated.

        False inside an inactive region: nested conditions there may refer
        to macros that do not exist and must not raise.
        """
        return self.active

    def needs_elif_evaluation(self) -> bool:
        """Whether the condition of an ``#elif`` at this point matters."""
        if not self._frames:
            return False
        top = self._frames[-1]
        return top.parent_active and not top.taken and not top.else_seen

    def push_if(self, condition: bool, location: SourceLocation) -> None:
        parent = self.active
        taken = parent and condition
        self._frames.append(
            ConditionalFrame(taken, taken, False, parent, location)
        )

    def elif_(self, condition: bool, location: SourceLocation) -> None:
        top = self._top("#elif", location)
        if top.else_seen:
            raise MalformedDirectiveError(
                "#elif after #else", location.line, location.column
            )
        enter = top.parent_active and not top.taken and condition
        top.active = enter
        top.taken = top.taken or enter

    def else_(self, location: SourceLocation) -> None:
        top = self._top("#else", location)
        if top.else_seen:
            raise MalformedDirectiveError(
                "#else after #else", location.line, location.column
            )
        top.else_seen = True
        top.active = top.parent_active and not top.taken
        top.taken = True

    def endif(self, location: SourceLocation) -> ConditionalFrame:
        self._top("#endif", location)
        return self._frames.pop()

    def check_terminated(self) -> None:
        """Raise if a chain is still open at end of file."""
        if self._frames:
            opened = self._frames[-1].opened_at
            raise MalformedDirectiveError(
                f"unterminated conditional opened at line {opened.line}",
                opened.line,
                opened.column,
            )

    def innermost(self) -> Optional[ConditionalFrame]:
        return self._frames[-1] if self._frames else None

    def _top(self, directive: str, location: SourceLocation) -> ConditionalFrame:
        if not self._frames:
            raise MalformedDirectiveError(
                f"{directive} without matching #if", location.line, location.column
            )
        return self._frames[-1]


__all__ = ["ConditionalFrame", "ConditionalStack"]
