"""
ShelfDesk Test Suite

Tests are organized into:
- unit/: Engine components (fines, ledger, circulation, reports, notifier)
- integration/: HTTP API tests against a temporary database
"""
