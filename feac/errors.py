# feac/errors.py
"""
feac Diagnostics and Error Types

This module is the single diagnostic model shared by every stage of the
feature-file compiler.  User mistakes never raise: each stage records
:class:`Diagnostic` values into a :class:`DiagnosticCollector` and returns
its result alongside them.  Exceptions are reserved for conditions that are
not the user's fault (a broken compiler invariant, invalid configuration)
and for the include-resolver callback protocol.

Architecture Overview:
─────────────────────
┌─────────────────────────────────────────────────────────────────────────────┐
│                          Diagnostic Model                                   │
├─────────────────────────────────────────────────────────────────────────────┤
│  ErrorCode      - stable FEA-NNNN identifier, phase, default severity       │
│  Span           - (file id, start, end) character offsets                   │
│  Label          - secondary span with a message ("previous definition")     │
│  Diagnostic     - immutable finding: code, severity, message, spans         │
│  Collector      - append-only, ordered, answers has_fatal()                 │
├─────────────────────────────────────────────────────────────────────────────┤
│  FeacError (base exception)                                                 │
│  ├── CompilerBug      - internal invariant violated (never a user error)    │
│  ├── ConfigError      - invalid CompileOptions                              │
│  └── IncludeNotFound  - raised by include resolvers                         │
└─────────────────────────────────────────────────────────────────────────────┘

Error Codes:
────────────
Codes follow the pattern FEA-NNNN:
  - 0001-0999: Lexical errors
  - 1000-1499: Syntax errors
  - 1500-1999: Include errors
  - 3000-3999: Resolution errors (names, classes, glyphs)
  - 4000-4999: Validation errors
  - 5000-5999: Backend errors
  - 9000-9999: Internal compiler errors

Example Usage:
──────────────
    from feac.errors import DiagnosticCollector, E, Span

    diagnostics = DiagnosticCollector()
    diagnostics.report(
        E.UNDEFINED_CLASS,
        "undefined glyph class '@LC'",
        Span(0, 120, 123),
    )
    if diagnostics.has_fatal():
        ...
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, unique
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    Iterator,
    List,
    Optional,
    Protocol,
    Sequence,
    Tuple,
)


# ═══════════════════════════════════════════════════════════════════════════════
# SEVERITY AND PHASE
# ═══════════════════════════════════════════════════════════════════════════════

@unique
class Severity(Enum):
    """
    Severity of a diagnostic.

    ERROR is fatal: the pipeline stops after the stage that recorded it and
    the compilation is unsuccessful.  WARNING never blocks anything.
    """

    ERROR = "error"
    WARNING = "warning"

    def is_fatal(self) -> bool:
        return self is Severity.ERROR


@unique
class ErrorPhase(Enum):
    """Pipeline stage a diagnostic originates from."""

    LEXICAL = "lexical"
    SYNTAX = "syntax"
    INCLUDE = "include"
    RESOLUTION = "resolution"
    VALIDATION = "validation"
    BACKEND = "backend"
    INTERNAL = "internal"


# ═══════════════════════════════════════════════════════════════════════════════
# ERROR CODES
# ═══════════════════════════════════════════════════════════════════════════════

class ErrorCode:
    """
    Structured error code.

    Codes compare equal to each other by number and to their string form,
    so tests can write ``diag.code == "FEA-3001"``.
    """

    __slots__ = ("number", "name", "phase", "default_severity")

    def __init__(
        self,
        number: int,
        name: str,
        phase: ErrorPhase,
        default_severity: Severity = Severity.ERROR,
    ) -> None:
        self.number = number
        self.name = name
        self.phase = phase
        self.default_severity = default_severity

    @property
    def code(self) -> str:
        """Get the full error code string."""
        return f"FEA-{self.number:04d}"

    def __str__(self) -> str:
        return self.code

    def __repr__(self) -> str:
        return f"ErrorCode({self.code!r}, {self.name})"

    def __hash__(self) -> int:
        return hash(self.number)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ErrorCode):
            return self.number == other.number
        if isinstance(other, str):
            return self.code == other
        return False


def _code(
    number: int,
    name: str,
    phase: ErrorPhase,
    severity: Severity = Severity.ERROR,
) -> ErrorCode:
    return ErrorCode(number, name, phase, severity)


class FeaErrorCodes:
    """Predefined error codes."""

    # ═══════════════════════════════════════════════════════════════════════════
    # LEXICAL ERRORS (0001-0999)
    # ═══════════════════════════════════════════════════════════════════════════

    INVALID_CHARACTER = _code(1, "invalid-character", ErrorPhase.LEXICAL)
    UNTERMINATED_STRING = _code(2, "unterminated-string", ErrorPhase.LEXICAL)
    EMPTY_HEX_NUMBER = _code(3, "empty-hex-number", ErrorPhase.LEXICAL)

    # ═══════════════════════════════════════════════════════════════════════════
    # SYNTAX ERRORS (1000-1499)
    # ═══════════════════════════════════════════════════════════════════════════

    UNEXPECTED_TOKEN = _code(1000, "unexpected-token", ErrorPhase.SYNTAX)
    MISSING_TOKEN = _code(1001, "missing-token", ErrorPhase.SYNTAX)
    UNBALANCED_DELIMITER = _code(1002, "unbalanced-delimiter", ErrorPhase.SYNTAX)
    MISMATCHED_TAG = _code(1003, "mismatched-closing-tag", ErrorPhase.SYNTAX)
    INVALID_STATEMENT = _code(1004, "invalid-statement", ErrorPhase.SYNTAX)
    INVALID_NUMBER = _code(1005, "invalid-number", ErrorPhase.SYNTAX)
    INVALID_TAG = _code(1006, "invalid-tag", ErrorPhase.SYNTAX)
    UNSUPPORTED_TABLE = _code(
        1007, "unsupported-table", ErrorPhase.SYNTAX, Severity.WARNING
    )
    INVALID_RULE_SYNTAX = _code(1008, "invalid-rule", ErrorPhase.SYNTAX)

    # ═══════════════════════════════════════════════════════════════════════════
    # INCLUDE ERRORS (1500-1999)
    # ═══════════════════════════════════════════════════════════════════════════

    INCLUDE_NOT_FOUND = _code(1500, "include-not-found", ErrorPhase.INCLUDE)
    INCLUDE_CYCLE = _code(1501, "include-cycle", ErrorPhase.INCLUDE)
    INCLUDE_TOO_DEEP = _code(1502, "include-too-deep", ErrorPhase.INCLUDE)

    # ═══════════════════════════════════════════════════════════════════════════
    # RESOLUTION ERRORS (3000-3999)
    # ═══════════════════════════════════════════════════════════════════════════

    UNDEFINED_GLYPH = _code(3000, "undefined-glyph", ErrorPhase.RESOLUTION)
    UNDEFINED_CLASS = _code(3001, "undefined-class", ErrorPhase.RESOLUTION)
    UNDEFINED_LOOKUP = _code(3002, "undefined-lookup", ErrorPhase.RESOLUTION)
    UNDEFINED_MARK_CLASS = _code(3003, "undefined-mark-class", ErrorPhase.RESOLUTION)
    UNDEFINED_ANCHOR = _code(3004, "undefined-anchor", ErrorPhase.RESOLUTION)
    UNDEFINED_VALUE_RECORD = _code(
        3005, "undefined-value-record", ErrorPhase.RESOLUTION
    )
    UNDEFINED_CONDITION_SET = _code(
        3006, "undefined-condition-set", ErrorPhase.RESOLUTION
    )
    UNDEFINED_FEATURE = _code(3007, "undefined-feature", ErrorPhase.RESOLUTION)
    DUPLICATE_DEFINITION = _code(
        3010, "duplicate-definition", ErrorPhase.RESOLUTION, Severity.WARNING
    )
    DUPLICATE_LOOKUP = _code(3011, "duplicate-lookup", ErrorPhase.RESOLUTION)
    CLASS_CYCLE = _code(3012, "class-cycle", ErrorPhase.RESOLUTION)
    CLASS_TOO_DEEP = _code(3013, "class-too-deep", ErrorPhase.RESOLUTION)
    INVALID_RANGE = _code(3014, "invalid-range", ErrorPhase.RESOLUTION)
    AMBIGUOUS_RANGE = _code(3015, "ambiguous-range", ErrorPhase.RESOLUTION)
    DUPLICATE_LANGUAGE_SYSTEM = _code(
        3016, "duplicate-languagesystem", ErrorPhase.RESOLUTION, Severity.WARNING
    )
    EMPTY_CLASS = _code(
        3017, "empty-class", ErrorPhase.RESOLUTION, Severity.WARNING
    )

    # ═══════════════════════════════════════════════════════════════════════════
    # VALIDATION ERRORS (4000-4999)
    # ═══════════════════════════════════════════════════════════════════════════

    MIXED_LOOKUP_TYPES = _code(4000, "mixed-lookup-types", ErrorPhase.VALIDATION)
    INVALID_RULE = _code(4001, "invalid-rule", ErrorPhase.VALIDATION)
    MARK_CLASS_CONFLICT = _code(4002, "mark-class-conflict", ErrorPhase.VALIDATION)
    BASE_IS_MARK = _code(
        4003, "base-is-mark", ErrorPhase.VALIDATION, Severity.WARNING
    )
    LOOKUP_NOT_YET_DEFINED = _code(4004, "lookup-order", ErrorPhase.VALIDATION)
    MISPLACED_STATEMENT = _code(4005, "misplaced-statement", ErrorPhase.VALIDATION)
    SUBTABLE_IGNORED = _code(
        4006, "subtable-ignored", ErrorPhase.VALIDATION, Severity.WARNING
    )
    DUPLICATE_RULE = _code(
        4007, "duplicate-rule", ErrorPhase.VALIDATION, Severity.WARNING
    )
    CONFLICTING_RULE = _code(4008, "conflicting-rule", ErrorPhase.VALIDATION)
    UNREACHABLE_RULE = _code(
        4009, "unreachable-rule", ErrorPhase.VALIDATION, Severity.WARNING
    )
    UNKNOWN_AXIS = _code(4010, "unknown-axis", ErrorPhase.VALIDATION)
    GDEF_CLASS_CONFLICT = _code(4011, "gdef-class-conflict", ErrorPhase.VALIDATION)
    INVALID_CONDITION = _code(4012, "invalid-condition", ErrorPhase.VALIDATION)
    DUPLICATE_REQUIRED_FEATURE = _code(
        4013, "duplicate-required-feature", ErrorPhase.VALIDATION
    )
    MARK_CLASS_NOT_YET_DEFINED = _code(4014, "mark-class-order", ErrorPhase.VALIDATION)

    # ═══════════════════════════════════════════════════════════════════════════
    # BACKEND ERRORS (5000-5999)
    # ═══════════════════════════════════════════════════════════════════════════

    UNSUPPORTED_RULE = _code(5000, "unsupported-rule", ErrorPhase.BACKEND)
    VALUE_OUT_OF_RANGE = _code(5001, "value-out-of-range", ErrorPhase.BACKEND)
    ANCHOR_CONFLICT = _code(
        5002, "anchor-conflict", ErrorPhase.BACKEND, Severity.WARNING
    )

    # ═══════════════════════════════════════════════════════════════════════════
    # INTERNAL ERRORS (9000-9999)
    # ═══════════════════════════════════════════════════════════════════════════

    INTERNAL_ERROR = _code(9000, "internal-error", ErrorPhase.INTERNAL)


# Convenient access to error codes
E = FeaErrorCodes


# ═══════════════════════════════════════════════════════════════════════════════
# SOURCE LOCATION TYPES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True, order=True)
class Span:
    """
    A half-open range of character offsets in one source file.

    ``file_id`` indexes the :class:`feac.sources.SourceMap` of the
    compilation; ordering is (file id, start, end), which is the order
    diagnostics are reported in within a stage.
    """

    file_id: int
    start: int
    end: int

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise CompilerBug(f"span ends before it starts: {self.start}..{self.end}")

    def __len__(self) -> int:
        return self.end - self.start

    def __str__(self) -> str:
        return f"#{self.file_id}:{self.start}..{self.end}"


@dataclass(frozen=True, slots=True)
class Label:
    """A secondary location with a short message."""

    span: Span
    message: str


class LocationResolver(Protocol):
    """Anything that can turn spans into human positions (see SourceMap)."""

    def path(self, file_id: int) -> str: ...

    def line_col(self, span: Span) -> Tuple[int, int]: ...

    def line_text(self, span: Span) -> str: ...


# ═══════════════════════════════════════════════════════════════════════════════
# DIAGNOSTICS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True)
class Diagnostic:
    """
    One finding produced by a compiler stage.

    Attributes:
        code: Stable error code (``FEA-NNNN``)
        message: Human-readable description
        span: Primary location
        severity: ERROR (fatal) or WARNING
        labels: Secondary locations, e.g. the previous definition
        hint: Optional suggestion
    """

    code: ErrorCode
    message: str
    span: Span
    severity: Severity = Severity.ERROR
    labels: Tuple[Label, ...] = ()
    hint: str = ""

    @property
    def phase(self) -> ErrorPhase:
        return self.code.phase

    def is_fatal(self) -> bool:
        return self.severity.is_fatal()

    def to_dict(self, sources: Optional[LocationResolver] = None) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""

        def loc(span: Span) -> Dict[str, Any]:
            result: Dict[str, Any] = {
                "file_id": span.file_id,
                "start": span.start,
                "end": span.end,
            }
            if sources is not None:
                line, col = sources.line_col(span)
                result.update(file=sources.path(span.file_id), line=line, column=col)
            return result

        result: Dict[str, Any] = {
            "code": self.code.code,
            "name": self.code.name,
            "phase": self.phase.value,
            "severity": self.severity.value,
            "message": self.message,
            "location": loc(self.span),
        }
        if self.labels:
            result["labels"] = [
                {"message": label.message, "location": loc(label.span)}
                for label in self.labels
            ]
        if self.hint:
            result["hint"] = self.hint
        return result

    def to_gcc_format(self, sources: Optional[LocationResolver] = None) -> str:
        """Format as a GCC-style message, with source excerpt when possible."""
        if sources is None:
            return f"{self.span}: {self.severity.value}: {self.message} [{self.code}]"

        def where(span: Span) -> str:
            line, col = sources.line_col(span)
            return f"{sources.path(span.file_id)}:{line}:{col}"

        lines = [f"{where(self.span)}: {self.severity.value}: {self.message} [{self.code}]"]
        text = sources.line_text(self.span)
        if text:
            _, col = sources.line_col(self.span)
            width = max(1, min(len(self.span), len(text) - col + 1))
            lines.append(f"    {text}")
            lines.append(f"    {' ' * (col - 1)}{'^' * width}")
        for label in self.labels:
            lines.append(f"{where(label.span)}: note: {label.message}")
        if self.hint:
            lines.append(f"hint: {self.hint}")
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.to_gcc_format()


class DiagnosticCollector:
    """
    Append-only, ordered sink of diagnostics for one compilation.

    Stages report into their own collector; the driver then merges each
    finished stage into the compilation-wide collector with
    :meth:`extend_in_source_order`, which gives the documented ordering:
    stage order first, source order within a stage.
    """

    def __init__(self) -> None:
        self._diagnostics: List[Diagnostic] = []

    def report(
        self,
        code: ErrorCode,
        message: str,
        span: Span,
        *,
        severity: Optional[Severity] = None,
        labels: Sequence[Label] = (),
        hint: str = "",
    ) -> Diagnostic:
        """Record a diagnostic; severity defaults to the code's default."""
        diag = Diagnostic(
            code=code,
            message=message,
            span=span,
            severity=severity or code.default_severity,
            labels=tuple(labels),
            hint=hint,
        )
        self._diagnostics.append(diag)
        return diag

    def add(self, diagnostic: Diagnostic) -> None:
        self._diagnostics.append(diagnostic)

    def extend(self, diagnostics: Iterable[Diagnostic]) -> None:
        self._diagnostics.extend(diagnostics)

    def extend_in_source_order(
        self,
        diagnostics: Iterable[Diagnostic],
        key: Optional[Callable[[Span], Any]] = None,
    ) -> None:
        """Append a finished stage's diagnostics sorted by primary span.

        *key* maps a span to its sort key; the driver passes
        :meth:`SourceMap.order_key` so included files sort in place.
        """
        order = key or (lambda span: span)
        self._diagnostics.extend(sorted(diagnostics, key=lambda d: order(d.span)))

    def has_fatal(self) -> bool:
        return any(d.is_fatal() for d in self._diagnostics)

    @property
    def diagnostics(self) -> Tuple[Diagnostic, ...]:
        return tuple(self._diagnostics)

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self._diagnostics if d.severity is Severity.ERROR]

    @property
    def warnings(self) -> List[Diagnostic]:
        return [d for d in self._diagnostics if d.severity is Severity.WARNING]

    def __iter__(self) -> Iterator[Diagnostic]:
        return iter(self._diagnostics)

    def __len__(self) -> int:
        return len(self._diagnostics)

    def __bool__(self) -> bool:
        return bool(self._diagnostics)


def format_diagnostics(
    diagnostics: Iterable[Diagnostic],
    sources: Optional[LocationResolver] = None,
) -> str:
    """Render diagnostics one after the other in GCC style."""
    return "\n".join(d.to_gcc_format(sources) for d in diagnostics)


# ═══════════════════════════════════════════════════════════════════════════════
# EXCEPTION CLASSES
# ═══════════════════════════════════════════════════════════════════════════════

class FeacError(Exception):
    """Base exception for feac."""


class CompilerBug(FeacError):
    """
    An internal invariant was violated.

    This always indicates a defect in feac itself (for example an arena
    index out of range), never a problem with the input.
    """


class ConfigError(FeacError):
    """Invalid :class:`feac.config.CompileOptions`."""

    def __init__(self, problems: Sequence[str]) -> None:
        super().__init__("; ".join(problems))
        self.problems = list(problems)


class IncludeNotFound(FeacError):
    """Raised by an include resolver when a referenced file does not exist."""

    def __init__(self, name: str, reason: str = "") -> None:
        message = f"cannot resolve include '{name}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.name = name
        self.reason = reason
