"""
Subscription Reconciler
=======================

PURPOSE:
    Enforces "at most one live subscription per customer" on the billing
    provider. For every customer (paged, 100 per page) all subscriptions
    are listed; when more than one is active or trialing, the oldest by
    creation time is kept and every other one is canceled, one call at a
    time.

AUDIT FILE:
    One line per decision, written once at the end of the run and only if
    at least one duplicate was found (overwrites any previous file):

        Mantida: sub_keeper
        Cancelada: sub_duplicate
        Falha ao cancelar sub_duplicate: <error message>

FAILURE SEMANTICS:
    A failed cancel is recorded and the run moves on to the next duplicate.
    A failed listing (customers or subscriptions) raises ReconciliationError;
    the audit file is not written and the lines gathered so far are dropped.
    A failed audit write also raises ReconciliationError, after logging every
    line at ERROR. Cancels already issued stay issued.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional, Union

from backlinkhub.core.errors import ReconciliationError

logger = logging.getLogger(__name__)

LIVE_STATUSES = ("active", "trialing")
DEFAULT_PAGE_SIZE = 100
# billing list endpoints reject a larger limit
MAX_PAGE_SIZE = 100


@dataclass
class ReconciliationReport:
    customers_scanned: int = 0
    customers_with_duplicates: int = 0
    kept: List[str] = field(default_factory=list)
    canceled: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    lines: List[str] = field(default_factory=list)
    log_written: bool = False

    @property
    def duplicates_found(self) -> int:
        return len(self.canceled) + len(self.failed)


def select_keeper(subscriptions: List[Any]) -> tuple[Optional[Any], List[Any]]:
    """Split subscriptions into (keeper, duplicates) among active/trialing ones.

    The keeper is the earliest created; ties keep listing order.
    """
    live = [sub for sub in subscriptions if sub.status in LIVE_STATUSES]
    if len(live) <= 1:
        return (live[0] if live else None), []
    live.sort(key=lambda sub: sub.created)
    return live[0], live[1:]


class SubscriptionReconciler:
    def __init__(
        self,
        billing,
        log_path: Union[str, Path] = "cleanup_log.txt",
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        # billing: the stripe module, or anything exposing Customer.list,
        # Subscription.list and Subscription.cancel with the same shapes
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValueError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")
        self._billing = billing
        self.log_path = Path(log_path)
        self.page_size = page_size

    def _list_subscriptions(self, customer_id: str) -> List[Any]:
        page = self._billing.Subscription.list(customer=customer_id, status="all", limit=self.page_size)
        return list(page.auto_paging_iter())

    def run(self) -> ReconciliationReport:
        report = ReconciliationReport()
        logger.info("Starting duplicate subscription cleanup")

        try:
            customers = self._billing.Customer.list(limit=self.page_size).auto_paging_iter()
            for customer in customers:
                report.customers_scanned += 1
                logger.info("Checking customer %s (%s)", customer.email, customer.id)
                subscriptions = self._list_subscriptions(customer.id)
                self._reconcile_customer(customer, subscriptions, report)
        except Exception as exc:
            logger.error("Fatal error during subscription cleanup: %s", exc)
            raise ReconciliationError(
                detail=f"Subscription cleanup aborted: {exc}",
                context={"customers_scanned": report.customers_scanned},
            ) from exc

        if report.lines:
            try:
                self.log_path.write_text("\n".join(report.lines), encoding="utf-8")
            except OSError as exc:
                # cancels already issued; keep the decisions in the log stream
                logger.error("Could not write audit file %s: %s", self.log_path, exc)
                for line in report.lines:
                    logger.error("Audit: %s", line)
                raise ReconciliationError(
                    detail=f"Cleanup finished but audit file {self.log_path} could not be written: {exc}",
                    context={"log_path": str(self.log_path), "lines": len(report.lines)},
                ) from exc
            report.log_written = True
            logger.info(
                "Cleanup complete: %d duplicates across %d customers, log saved to %s",
                report.duplicates_found, report.customers_with_duplicates, self.log_path,
            )
        else:
            logger.info("No duplicate subscriptions found")
        return report

    def _reconcile_customer(self, customer: Any, subscriptions: List[Any], report: ReconciliationReport) -> None:
        keeper, duplicates = select_keeper(subscriptions)
        if not duplicates:
            return

        report.customers_with_duplicates += 1
        logger.warning(
            "Customer %s (%s) has %d active/trialing subscriptions",
            customer.email, customer.id, len(duplicates) + 1,
        )
        report.kept.append(keeper.id)
        report.lines.append(f"Mantida: {keeper.id}")

        for sub in duplicates:
            try:
                self._billing.Subscription.cancel(sub.id)
            except Exception as exc:
                # one failed cancel must not stop the others
                logger.error("Failed to cancel subscription %s: %s", sub.id, exc)
                report.failed.append(sub.id)
                report.lines.append(f"Falha ao cancelar {sub.id}: {exc}")
                continue
            logger.info("Canceled duplicate subscription %s", sub.id)
            report.canceled.append(sub.id)
            report.lines.append(f"Cancelada: {sub.id}")
