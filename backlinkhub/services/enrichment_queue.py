"""
Enrichment Queue
================

Backlinks that were sold without a known WordPress post are enriched in
two steps:

1. ``enqueue_backlinks_for_enrichment()`` marks every eligible backlink
   (no wp_post_id, not completed, network site not excluded) as 'queued',
   updating in chunks of ``enqueue_batch_size``.
2. ``EnrichmentQueue`` drains up to ``enrichment_batch_size`` queued rows
   per scheduled run and fires one enrichment worker per backlink.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from backlinkhub.config import settings
from backlinkhub.core.errors import QueueError
from backlinkhub.models.backlinks import Backlink, BacklinkStatus
from backlinkhub.services.work_queue import WorkQueue

logger = logging.getLogger(__name__)


class EnrichmentQueue(WorkQueue):
    name = "process-enrichment-queue"

    def __init__(self, engine: Engine, invoker, batch_size: Optional[int] = None,
                 atomic_claim: Optional[bool] = None) -> None:
        super().__init__(
            engine,
            Backlink,
            pending_status=BacklinkStatus.QUEUED,
            batch_size=batch_size or settings.enrichment_batch_size,
            worker_name=settings.enrichment_worker_name,
            invoker=invoker,
            atomic_claim=settings.atomic_claim if atomic_claim is None else atomic_claim,
        )

    def payload_for(self, row: Dict[str, Any]) -> Dict[str, Any]:
        return {"backlink_id": row["id"]}


def enqueue_backlinks_for_enrichment(engine: Engine, chunk_size: Optional[int] = None) -> int:
    """Mark every backlink still missing its WordPress post as queued.

    Returns the number of rows updated.
    """
    chunk_size = chunk_size or settings.enqueue_batch_size
    t = Backlink.__table__

    stmt = select(t.c.id).where(
        t.c.wp_post_id.is_(None),
        t.c.status != BacklinkStatus.COMPLETED,
    )
    excluded = settings.excluded_network_site_ids
    if excluded:
        stmt = stmt.where(t.c.network_site_id.notin_(excluded))

    try:
        with engine.connect() as conn:
            ids = [row[0] for row in conn.execute(stmt)]
    except SQLAlchemyError as exc:
        raise QueueError(detail=f"Failed to fetch backlink IDs: {exc}") from exc

    logger.info("Found %d backlinks to queue", len(ids))
    if not ids:
        return 0

    total = 0
    for start in range(0, len(ids), chunk_size):
        chunk = ids[start:start + chunk_size]
        try:
            with engine.begin() as conn:
                result = conn.execute(
                    update(t).where(t.c.id.in_(chunk)).values(status=BacklinkStatus.QUEUED)
                )
        except SQLAlchemyError as exc:
            raise QueueError(detail=f"Failed to update batch {start // chunk_size + 1}: {exc}") from exc
        logger.info("Batch %d: queued %d backlinks", start // chunk_size + 1, result.rowcount)
        total += result.rowcount

    logger.info("%d backlinks queued for enrichment", total)
    return total
