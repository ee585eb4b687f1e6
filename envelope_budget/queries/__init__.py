"""Report query package."""

from envelope_budget.queries.reports import ReportQueries

__all__ = ["ReportQueries"]
