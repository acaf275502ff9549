# src/hecship/filter/record_filter.py
"""Record admission filter.

A RecordFilter decides whether a processed record is retained in the
pending buffer. It is either compiled from a filter expression (see
hecship.filter.expression) or wraps an already-compiled predicate supplied
by the enclosing application.
"""

from __future__ import annotations

from collections.abc import Callable

import structlog

from hecship.contracts import Record
from hecship.errors import FilterCompileError
from hecship.filter.expression import (
    ExpressionEvaluationError,
    ExpressionSecurityError,
    ExpressionSyntaxError,
    FilterExpression,
)

logger = structlog.get_logger(__name__)

RecordPredicate = Callable[[Record], bool]


class RecordFilter:
    """Pure admission predicate over records.

    Use the constructors rather than __init__:
    - RecordFilter.compile(text): from an expression; blank text admits all
    - RecordFilter.from_predicate(fn): from a compiled predicate
    - RecordFilter.admit_all(): the pass-all filter
    """

    def __init__(self, predicate: RecordPredicate | None, description: str | None = None) -> None:
        self._predicate = predicate
        self._description = description

    @classmethod
    def admit_all(cls) -> RecordFilter:
        return cls(None)

    @classmethod
    def from_predicate(cls, predicate: RecordPredicate, description: str | None = None) -> RecordFilter:
        return cls(predicate, description or getattr(predicate, "__name__", None))

    @classmethod
    def compile(cls, text: str | None) -> RecordFilter:
        """Compile a filter expression.

        Args:
            text: Expression text. None or blank yields the pass-all filter.

        Raises:
            FilterCompileError: If the expression has invalid syntax or uses
                forbidden constructs.
        """
        if text is None or not text.strip():
            return cls.admit_all()
        try:
            expression = FilterExpression(text)
        except (ExpressionSyntaxError, ExpressionSecurityError) as e:
            raise FilterCompileError(text, str(e)) from e

        def matches(record: Record) -> bool:
            try:
                return bool(expression.evaluate(record.filter_view()))
            except ExpressionEvaluationError as e:
                # A record the expression can't be applied to is not admitted
                logger.debug(
                    "Filter evaluation failed, record not admitted",
                    expression=text,
                    record_id=record.identifier,
                    error=str(e),
                )
                return False

        return cls(matches, text)

    @property
    def admits_all(self) -> bool:
        """True if this filter never rejects a record."""
        return self._predicate is None

    @property
    def description(self) -> str | None:
        """Expression text or predicate name, None for the pass-all filter."""
        return self._description

    def should_admit(self, record: Record) -> bool:
        """Decide whether record is retained for export."""
        if self._predicate is None:
            return True
        return self._predicate(record)

    def __repr__(self) -> str:
        if self._predicate is None:
            return "RecordFilter(<admit all>)"
        return f"RecordFilter({self._description!r})"
