"""
Backlink Review Queue
=====================

Drains ``backlinks_to_review`` rows in 'pending_review' (up to
``review_batch_size`` per run). Before a row is handed to the review
worker its network site is resolved by domain; rows whose site is
unknown or has incomplete WordPress credentials go straight to a
terminal error status with a descriptive ``error_log`` and no worker
is invoked for them.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from backlinkhub.config import settings
from backlinkhub.models.backlinks import BacklinkReview, NetworkSite, ReviewStatus
from backlinkhub.services.work_queue import WorkQueue

logger = logging.getLogger(__name__)


def resolve_network_site(engine: Engine, domain: str) -> Tuple[Optional[NetworkSite], Optional[str], Optional[str]]:
    """Return (site, error_status, error_message) for a review row's domain."""
    try:
        with Session(engine) as session:
            site = session.exec(select(NetworkSite).where(NetworkSite.domain == domain)).first()
    except SQLAlchemyError as exc:
        return None, ReviewStatus.ERROR_NETWORK_SITE_NOT_FOUND, f"Network site {domain} lookup failed: {exc}"

    if site is None:
        return None, ReviewStatus.ERROR_NETWORK_SITE_NOT_FOUND, f"Network site {domain} not found."
    if not site.has_credentials():
        return None, ReviewStatus.ERROR_MISSING_CREDENTIALS, (
            f"Missing WordPress API credentials for network site {site.id}."
        )
    return site, None, None


def mark_review(engine: Engine, review_id: int, status: str, message: Optional[str]) -> None:
    """Set a review row's status and error_log; a failed write is logged, not raised."""
    t = BacklinkReview.__table__
    try:
        with engine.begin() as conn:
            conn.execute(update(t).where(t.c.id == review_id).values(status=status, error_log=message))
    except SQLAlchemyError as exc:
        logger.error("Failed to record %s for review item %s: %s", status, review_id, exc)


class ReviewQueue(WorkQueue):
    name = "process-backlinks-to-review"

    def __init__(self, engine: Engine, invoker, batch_size: Optional[int] = None,
                 atomic_claim: Optional[bool] = None) -> None:
        super().__init__(
            engine,
            BacklinkReview,
            pending_status=ReviewStatus.PENDING_REVIEW,
            batch_size=batch_size or settings.review_batch_size,
            worker_name=settings.review_worker_name,
            invoker=invoker,
            atomic_claim=settings.atomic_claim if atomic_claim is None else atomic_claim,
        )

    def prepare(self, rows: List[Dict[str, Any]]) -> Tuple[List[Dict[str, Any]], int]:
        ready: List[Dict[str, Any]] = []
        skipped = 0
        for row in rows:
            site, error_status, message = resolve_network_site(self._engine, row["network_site_domain"])
            if site is None:
                logger.error("Error for review item %s: %s", row["id"], message)
                mark_review(self._engine, row["id"], error_status, message)
                skipped += 1
                continue
            ready.append({**row, "network_site_id": site.id})
        return ready, skipped

    def payload_for(self, row: Dict[str, Any]) -> Dict[str, Any]:
        return {"review_id": row["id"], "network_site_id": row["network_site_id"]}
