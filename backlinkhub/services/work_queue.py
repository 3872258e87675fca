"""
Status-Driven Work Queue
========================

PURPOSE:
    One scheduled run drains at most one page of rows from a table whose
    ``status`` column says they are pending:

        pending --claim--> processing --worker--> terminal (done / error_*)

    1. select   up to ``batch_size`` rows with status == pending_status
                (no ORDER BY; the store decides which rows come back)
    2. claim    one bulk UPDATE setting status = 'processing' for the
                selected ids
    3. prepare  per-row hook; subclasses may move rows straight to a
                terminal status instead of dispatching them
    4. dispatch invoke the per-row worker for every remaining row
                concurrently and collect every outcome

CLAIM MODES:
    atomic_claim=False  the claim updates exactly the selected ids, with no
                        status guard. Two overlapping runs can select the
                        same pending rows before either claims them, and
                        both will dispatch them.
    atomic_claim=True   the claim is one conditional
                        UPDATE ... WHERE id IN (...) AND status = pending
                        RETURNING id; only returned ids are dispatched, so a
                        row is dispatched by at most one run.

FAILURE SEMANTICS:
    Select and claim failures raise QueueError and end the run. A failed
    worker invocation is recorded as that row's outcome and never stops the
    others. Nothing here reverts a claimed row to pending: rows claimed by
    a run that dies before dispatch stay in 'processing' until an operator
    resets them. The worker owns the move to a terminal status.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type

from sqlalchemy import select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import SQLModel

from backlinkhub.core.errors import QueueError

logger = logging.getLogger(__name__)

PROCESSING_STATUS = "processing"


@dataclass(frozen=True)
class DispatchOutcome:
    item_id: int
    ok: bool
    error: Optional[str] = None


@dataclass
class QueueRunResult:
    queue: str
    selected: int = 0
    claimed: int = 0
    dispatched: int = 0
    failed: int = 0
    skipped: int = 0
    outcomes: List[DispatchOutcome] = field(default_factory=list)

    @property
    def nothing_to_do(self) -> bool:
        return self.selected == 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["nothing_to_do"] = self.nothing_to_do
        return data


class WorkQueue:
    """Select, claim and fan out one batch of pending rows."""

    name: str = "work-queue"

    def __init__(
        self,
        engine: Engine,
        model: Type[SQLModel],
        pending_status: str,
        batch_size: int,
        worker_name: str,
        invoker,
        atomic_claim: bool = False,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._engine = engine
        self._table = model.__table__
        self.pending_status = pending_status
        self.batch_size = batch_size
        self.worker_name = worker_name
        self._invoker = invoker
        self.atomic_claim = atomic_claim

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def select_batch(self) -> List[Dict[str, Any]]:
        t = self._table
        stmt = select(t).where(t.c.status == self.pending_status).limit(self.batch_size)
        try:
            with self._engine.connect() as conn:
                rows = [dict(r._mapping) for r in conn.execute(stmt)]
        except SQLAlchemyError as exc:
            logger.error("[%s] select failed: %s", self.name, exc)
            raise QueueError(
                detail=f"Failed to fetch {self.pending_status} rows from {t.name}: {exc}",
                context={"queue": self.name},
            ) from exc
        logger.info("[%s] selected %d %s rows", self.name, len(rows), self.pending_status)
        return rows

    def claim(self, ids: Sequence[int]) -> List[int]:
        """Mark ``ids`` as processing; returns the ids this run now owns."""
        if not ids:
            return []
        t = self._table
        stmt = update(t).where(t.c.id.in_(list(ids))).values(status=PROCESSING_STATUS)
        try:
            with self._engine.begin() as conn:
                if self.atomic_claim:
                    stmt = stmt.where(t.c.status == self.pending_status).returning(t.c.id)
                    claimed = [row[0] for row in conn.execute(stmt)]
                else:
                    conn.execute(stmt)
                    claimed = list(ids)
        except SQLAlchemyError as exc:
            logger.error("[%s] claim failed: %s", self.name, exc)
            raise QueueError(
                detail=f"Failed to lock {t.name} rows for processing: {exc}",
                context={"queue": self.name, "ids": list(ids)},
            ) from exc

        lost = len(ids) - len(claimed)
        if lost:
            logger.warning("[%s] %d selected rows were claimed by another run", self.name, lost)
        logger.info("[%s] claimed %d rows (status=%s)", self.name, len(claimed), PROCESSING_STATUS)
        return claimed

    def prepare(self, rows: List[Dict[str, Any]]) -> Tuple[List[Dict[str, Any]], int]:
        """Return (rows to dispatch, rows moved to a terminal status here)."""
        return rows, 0

    def payload_for(self, row: Dict[str, Any]) -> Dict[str, Any]:
        return {"id": row["id"]}

    async def dispatch(self, rows: List[Dict[str, Any]]) -> List[DispatchOutcome]:
        """Invoke the worker for every row concurrently and settle all of them."""
        if not rows:
            return []
        logger.info("[%s] invoking '%s' for %d rows", self.name, self.worker_name, len(rows))
        results = await asyncio.gather(
            *(self._invoker.invoke(self.worker_name, self.payload_for(row)) for row in rows),
            return_exceptions=True,
        )

        outcomes: List[DispatchOutcome] = []
        for row, result in zip(rows, results):
            if isinstance(result, BaseException):
                logger.warning("[%s] worker invocation failed for row %s: %s", self.name, row["id"], result)
                outcomes.append(DispatchOutcome(item_id=row["id"], ok=False, error=str(result)))
            else:
                outcomes.append(DispatchOutcome(item_id=row["id"], ok=True))
        logger.info("[%s] all worker invocations settled", self.name)
        return outcomes

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(self) -> QueueRunResult:
        result = QueueRunResult(queue=self.name)

        rows = self.select_batch()
        result.selected = len(rows)
        if not rows:
            return result

        claimed_ids = set(self.claim([row["id"] for row in rows]))
        result.claimed = len(claimed_ids)
        owned = [row for row in rows if row["id"] in claimed_ids]

        ready, result.skipped = self.prepare(owned)
        result.outcomes = await self.dispatch(ready)
        result.dispatched = len(result.outcomes)
        result.failed = sum(1 for o in result.outcomes if not o.ok)

        logger.info(
            "[%s] run complete: selected=%d claimed=%d dispatched=%d failed=%d skipped=%d",
            self.name, result.selected, result.claimed, result.dispatched, result.failed, result.skipped,
        )
        return result
