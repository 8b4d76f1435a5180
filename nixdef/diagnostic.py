"""Diagnostics reported by lowering, name resolution and liveness checks."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum

from .base import FileRange, TextRange


class DiagnosticKind(Enum):
    SYNTAX_ERROR = "syntax_error"
    INVALID_DYNAMIC = "invalid_dynamic"
    DUPLICATED_KEY = "duplicated_key"
    DUPLICATED_PARAM = "duplicated_param"
    EMPTY_INHERIT = "empty_inherit"
    EMPTY_LET_IN = "empty_let_in"
    LET_ATTRSET = "let_attrset"
    URI_LITERAL = "uri_literal"
    MERGE_PLAIN_REC_ATTRSET = "merge_plain_rec_attrset"
    MERGE_REC_ATTRSET = "merge_rec_attrset"
    UNDEFINED_NAME = "undefined_name"
    UNUSED_BINDING = "unused_binding"
    UNUSED_WITH = "unused_with"
    UNUSED_REC = "unused_rec"

    @property
    def title(self) -> str:
        """The kind's name in CamelCase, as used in debug output."""
        return "".join(part.capitalize() for part in self.value.split("_"))


class Severity(Enum):
    ERROR = "error"
    WARNING = "warning"
    INCOMPLETE_SYNTAX = "incomplete_syntax"


_ERRORS = frozenset(
    {
        DiagnosticKind.SYNTAX_ERROR,
        DiagnosticKind.INVALID_DYNAMIC,
        DiagnosticKind.DUPLICATED_KEY,
        DiagnosticKind.DUPLICATED_PARAM,
        DiagnosticKind.UNDEFINED_NAME,
    }
)

_UNNECESSARY = frozenset(
    {
        DiagnosticKind.EMPTY_INHERIT,
        DiagnosticKind.UNUSED_BINDING,
        DiagnosticKind.UNUSED_WITH,
        DiagnosticKind.UNUSED_REC,
    }
)

_DEPRECATED = frozenset({DiagnosticKind.LET_ATTRSET, DiagnosticKind.URI_LITERAL})

_MESSAGES = {
    DiagnosticKind.INVALID_DYNAMIC: "Invalid location of dynamic attribute",
    DiagnosticKind.DUPLICATED_KEY: "Duplicated name definition",
    DiagnosticKind.DUPLICATED_PARAM: "Duplicated parameter",
    DiagnosticKind.EMPTY_INHERIT: "Nothing inherited",
    DiagnosticKind.EMPTY_LET_IN: "Empty let-in",
    DiagnosticKind.LET_ATTRSET: "`let { ... }` is deprecated. Use `let ... in ...` instead",
    DiagnosticKind.URI_LITERAL: "URL literal is confusing and deprecated. Use strings instead",
    DiagnosticKind.MERGE_PLAIN_REC_ATTRSET: (
        "Merging non-rec-attrset with rec-attrset, the latter `rec` is implicitly ignored"
    ),
    DiagnosticKind.MERGE_REC_ATTRSET: (
        "Merging rec-attrset with other attrsets or attrpath. Merged values can "
        "unexpectedly reference each other remotely as in a single `rec { ... }`"
    ),
    DiagnosticKind.UNDEFINED_NAME: "Undefined name",
    DiagnosticKind.UNUSED_BINDING: "Unused binding",
    DiagnosticKind.UNUSED_WITH: "Unused `with`",
    DiagnosticKind.UNUSED_REC: "Unused `rec`",
}


@dataclass
class Diagnostic:
    """A problem located at a text range, with optional related notes."""

    range: TextRange
    kind: DiagnosticKind
    notes: list[tuple[FileRange, str]] = field(default_factory=list)
    detail: str | None = None

    @classmethod
    def from_syntax_error(cls, range: TextRange, message: str) -> Diagnostic:
        return cls(range, DiagnosticKind.SYNTAX_ERROR, detail=message)

    def with_note(self, frange: FileRange, message: str) -> Diagnostic:
        """A copy of this diagnostic with one more note appended."""
        return replace(self, notes=[*self.notes, (frange, str(message))])

    def code(self) -> str:
        return self.kind.value

    def severity(self) -> Severity:
        return Severity.ERROR if self.kind in _ERRORS else Severity.WARNING

    def message(self) -> str:
        if self.kind is DiagnosticKind.SYNTAX_ERROR:
            return self.detail or ""
        return _MESSAGES[self.kind]

    def is_unnecessary(self) -> bool:
        return self.kind in _UNNECESSARY

    def is_deprecated(self) -> bool:
        return self.kind in _DEPRECATED

    def debug_display(self) -> str:
        """A compact text form: the range and kind, then one line per note."""
        kind = self.kind.title
        if self.kind is DiagnosticKind.SYNTAX_ERROR:
            kind = f"{kind}({self.detail})"
        # All notes are in the same file as the diagnostic, so the file is omitted.
        lines = [f"{self.range}: {kind}"]
        lines.extend(f"    {frange.range}: {msg}" for frange, msg in self.notes)
        return "\n".join(lines)