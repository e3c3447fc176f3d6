"""
Defaulter Classifier

A borrower is a defaulter once their count of late returns (closed
transactions that carried a fine) reaches the threshold. The flag is
derived state: reconcile() computes the full desired set from the
transaction log and writes only the users whose stored flag differs,
so running it twice in a row changes nothing the second time.
"""

from collections import Counter
from decimal import Decimal
from typing import Iterable, Optional

from loguru import logger

from shelfdesk.circulation.errors import InvalidInputError
from shelfdesk.storage.repository import (
    LibraryRepository,
    StoredTransaction,
    StoredUser,
)

DEFAULT_LATE_RETURN_THRESHOLD = 2


def late_counts(transactions: Iterable[StoredTransaction]) -> dict[str, int]:
    """Late returns per user: closed transactions with a positive fine."""
    counts: Counter = Counter()
    for txn in transactions:
        if not txn.user_id or txn.is_open:
            continue
        if txn.fine_amount is not None and Decimal(txn.fine_amount) > 0:
            counts[txn.user_id] += 1
    return dict(counts)


class DefaulterClassifier:
    """Reconciles every user's is_defaulter flag with the transaction log."""

    def __init__(
        self,
        repository: LibraryRepository,
        late_return_threshold: int = DEFAULT_LATE_RETURN_THRESHOLD,
    ):
        if late_return_threshold < 1:
            raise InvalidInputError(
                "Late return threshold must be at least 1",
                detail=str(late_return_threshold),
            )
        self.repository = repository
        self.late_return_threshold = late_return_threshold

    def late_counts(self, transactions: Iterable[StoredTransaction]) -> dict[str, int]:
        return late_counts(transactions)

    def is_defaulter(self, late_count: int) -> bool:
        return late_count >= self.late_return_threshold

    def desired_flags(
        self,
        users: Iterable[StoredUser],
        transactions: Iterable[StoredTransaction],
    ) -> dict[str, bool]:
        """Flag each user should carry according to the log."""
        counts = late_counts(transactions)
        return {user.id: self.is_defaulter(counts.get(user.id, 0)) for user in users}

    def reconcile(
        self,
        transactions: Optional[list[StoredTransaction]] = None,
    ) -> list[str]:
        """
        Bring stored flags in line with the transaction log.

        A failed write is logged and left for the next pass; the other
        users are still reconciled.

        Args:
            transactions: Log to classify from; read from storage when None

        Returns:
            IDs of users whose flag changed
        """
        users = self.repository.list_users()
        if transactions is None:
            transactions = self.repository.list_transactions()

        desired = self.desired_flags(users, transactions)
        changed = []

        for user in users:
            flag = desired[user.id]
            if user.is_defaulter == flag:
                continue

            try:
                if self.repository.set_defaulter_flag(user.id, flag):
                    changed.append(user.id)
            except Exception as e:
                logger.error(f"Failed to set defaulter={flag} for user {user.id}: {e}")

        if changed:
            logger.info(f"Defaulter flags changed for {len(changed)} user(s)")
        return changed


def bind_defaulter_reconciliation(notifier, classifier: DefaulterClassifier):
    """
    Reconcile defaulters whenever the transaction log is published.

    Users are republished only when at least one flag changed.

    Returns:
        The registered listener
    """

    def on_transactions(snapshot) -> None:
        changed = classifier.reconcile()
        if changed:
            notifier.publish("users")

    notifier.add_listener("transactions", on_transactions)
    return on_transactions
