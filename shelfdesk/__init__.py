"""
ShelfDesk - library circulation service.

Keeps book inventory, borrowers and the borrow/return log consistent
under concurrent use, and derives fines, defaulter status and reports.
"""

__version__ = "1.0.0"
