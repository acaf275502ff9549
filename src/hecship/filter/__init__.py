"""Record admission filtering.

Usage:
    from hecship.filter import RecordFilter

    record_filter = RecordFilter.compile("record['hostname'] == 'api.example.com'")
    record_filter.should_admit(record)
"""

from hecship.filter.expression import (
    ExpressionEvaluationError,
    ExpressionSecurityError,
    ExpressionSyntaxError,
    FilterExpression,
)
from hecship.filter.record_filter import RecordFilter, RecordPredicate

__all__ = [
    "ExpressionEvaluationError",
    "ExpressionSecurityError",
    "ExpressionSyntaxError",
    "FilterExpression",
    "RecordFilter",
    "RecordPredicate",
]
