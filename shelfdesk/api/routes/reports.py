"""
Report API Routes

Read-only circulation statistics:
- Usage by author, publisher and category
- Monthly usage by borrower role
- Defaulters
- Desk dashboard
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from loguru import logger

from shelfdesk.api.dependencies import get_classifier, get_notifier, get_reports
from shelfdesk.api.schemas import DashboardResponse, ReconcileResponse, ReportsResponse
from shelfdesk.notifications.notifier import ChangeNotifier
from shelfdesk.reporting.aggregator import LibraryReports
from shelfdesk.reporting.defaulters import DefaulterClassifier

router = APIRouter(prefix="/reports", tags=["reports"])


@router.get("", response_model=ReportsResponse)
def get_all_reports(
    top: Optional[int] = Query(None, ge=1, description="Rows kept per usage breakdown"),
    reports: LibraryReports = Depends(get_reports),
):
    """
    Get every circulation report.

    Transactions that reference a deleted book or user are left out of
    the breakdowns they cannot contribute to.
    """
    logger.info(f"Building reports (top={top})")
    return reports.get_reports(top=top)


@router.get("/dashboard", response_model=DashboardResponse)
def get_dashboard(reports: LibraryReports = Depends(get_reports)):
    """Get front-desk totals: copies, loans, overdue count, fines and users."""
    return reports.dashboard()


@router.post("/defaulters/reconcile", response_model=ReconcileResponse)
def reconcile_defaulters(
    classifier: DefaulterClassifier = Depends(get_classifier),
    notifier: ChangeNotifier = Depends(get_notifier),
):
    """Run a defaulter reconciliation pass now."""
    changed = classifier.reconcile()
    if changed:
        notifier.publish("users")

    logger.info(f"Manual defaulter reconciliation changed {len(changed)} user(s)")
    return ReconcileResponse(changed_user_ids=changed, changed=len(changed))
