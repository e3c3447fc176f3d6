"""
Reporting for ShelfDesk

Derived views over the transaction log:
- Defaulter classification and reconciliation
- Usage breakdowns, monthly usage and the desk dashboard
"""

from shelfdesk.reporting.defaulters import (
    DefaulterClassifier,
    bind_defaulter_reconciliation,
    late_counts,
)
from shelfdesk.reporting.aggregator import (
    ReportAggregator,
    LibraryReports,
    UsageCount,
    DIMENSIONS,
)

__all__ = [
    # Defaulters
    "DefaulterClassifier",
    "bind_defaulter_reconciliation",
    "late_counts",
    # Aggregates
    "ReportAggregator",
    "LibraryReports",
    "UsageCount",
    "DIMENSIONS",
]
