"""
Duplicate Subscription Cleanup
==============================

CLI entry for the subscription reconciler. Cancels every active/trialing
subscription but the oldest for each billing customer and writes the
audit log.

Usage:
    python -m backlinkhub.scripts.reconcile_subscriptions
    python -m backlinkhub.scripts.reconcile_subscriptions --log-path /tmp/cleanup_log.txt

Exit codes: 0 completed, 1 run aborted or audit file not written,
2 missing configuration or bad arguments.
"""

import argparse
import logging
import sys
import uuid
from typing import Optional, Sequence

import stripe

from backlinkhub.config import settings
from backlinkhub.core.errors import ConfigurationError, ReconciliationError
from backlinkhub.core.structured_logging import run_id_var, setup_logging
from backlinkhub.services.subscription_reconciler import MAX_PAGE_SIZE, SubscriptionReconciler

logger = logging.getLogger(__name__)


def _page_size(value: str) -> int:
    size = int(value)
    if not 1 <= size <= MAX_PAGE_SIZE:
        raise argparse.ArgumentTypeError(f"must be between 1 and {MAX_PAGE_SIZE}, got {size}")
    return size


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Cancel duplicate active/trialing subscriptions per customer")
    parser.add_argument("--log-path", default=settings.reconcile_log_path, help="Audit file to (over)write")
    parser.add_argument("--page-size", type=_page_size, default=settings.reconcile_page_size,
                        help=f"Customers and subscriptions per page (1-{MAX_PAGE_SIZE})")
    args = parser.parse_args(argv)

    setup_logging(log_dir=settings.log_dir, log_level=settings.log_level)
    run_id_var.set(uuid.uuid4().hex[:12])

    try:
        settings.require("stripe_secret_key")
    except ConfigurationError as exc:
        logger.critical(str(exc))
        print(exc.detail, file=sys.stderr)
        return 2

    stripe.api_key = settings.stripe_secret_key
    try:
        # BACKLINKHUB_RECONCILE_PAGE_SIZE bypasses the argparse check
        reconciler = SubscriptionReconciler(stripe, log_path=args.log_path, page_size=args.page_size)
    except ValueError as exc:
        print(f"Invalid page size: {exc}", file=sys.stderr)
        return 2

    try:
        report = reconciler.run()
    except ReconciliationError as exc:
        print(f"Cleanup aborted: {exc.detail}", file=sys.stderr)
        return 1

    if report.log_written:
        print(
            f"Cleanup complete: {len(report.canceled)} canceled, {len(report.failed)} failed. "
            f"Log saved to {args.log_path}. Check the billing dashboard to confirm."
        )
    else:
        print("No duplicate subscriptions found.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
