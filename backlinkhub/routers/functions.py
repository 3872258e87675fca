"""
Background function endpoints, called by the scheduler and by the queues.

- POST /functions/process-enrichment-queue        drain one page of queued backlinks
- POST /functions/process-backlinks-to-review     drain one page of review rows
- POST /functions/batch-enrich-backlinks          mark eligible backlinks as queued
- POST /functions/enrich-backlinks-from-wordpress per-backlink enrichment worker
- POST /functions/process-backlink-review         per-row review worker

Queue and enqueue failures propagate to the error handlers, which answer
with a JSON ``error`` body.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.engine import Engine

from backlinkhub.core.database import get_engine
from backlinkhub.services.enrichment_queue import EnrichmentQueue, enqueue_backlinks_for_enrichment
from backlinkhub.services.enrichment_worker import EnrichmentWorker
from backlinkhub.services.review_queue import ReviewQueue
from backlinkhub.services.review_worker import ReviewWorker
from backlinkhub.services.worker_invoker import WorkerInvoker

logger = logging.getLogger(__name__)

router = APIRouter()


class EnrichBacklinkRequest(BaseModel):
    backlink_id: int


class ReviewItemRequest(BaseModel):
    review_id: int
    network_site_id: Optional[int] = None


def get_db_engine() -> Engine:
    return get_engine()


def get_worker_invoker() -> WorkerInvoker:
    return WorkerInvoker.from_settings()


@router.post("/process-enrichment-queue")
async def process_enrichment_queue(
    engine: Engine = Depends(get_db_engine),
    invoker: WorkerInvoker = Depends(get_worker_invoker),
):
    result = await EnrichmentQueue(engine, invoker).run()
    if result.nothing_to_do:
        return {"message": "No queued backlinks to process.", **result.to_dict()}
    return {"message": f"Started processing for {result.dispatched} backlinks.", **result.to_dict()}


@router.post("/process-backlinks-to-review")
async def process_backlinks_to_review(
    engine: Engine = Depends(get_db_engine),
    invoker: WorkerInvoker = Depends(get_worker_invoker),
):
    result = await ReviewQueue(engine, invoker).run()
    if result.nothing_to_do:
        return {"message": "No backlinks to review found.", **result.to_dict()}
    return {
        "message": (
            f"Processed {result.claimed} review items. "
            f"Dispatched: {result.dispatched}, Failed: {result.failed}, Skipped: {result.skipped}."
        ),
        **result.to_dict(),
    }


@router.post("/batch-enrich-backlinks")
async def batch_enrich_backlinks(engine: Engine = Depends(get_db_engine)):
    total = enqueue_backlinks_for_enrichment(engine)
    if total == 0:
        return {"message": "No backlinks to queue.", "queued": 0}
    return {"message": f"{total} backlinks have been successfully queued for enrichment.", "queued": total}


@router.post("/enrich-backlinks-from-wordpress")
async def enrich_backlink(body: EnrichBacklinkRequest, engine: Engine = Depends(get_db_engine)):
    result = await EnrichmentWorker(engine).enrich(body.backlink_id)
    if result.error:
        return JSONResponse(status_code=result.http_status, content={"error": result.error, "status": result.status})
    return {
        "message": f"Backlink {result.backlink_id} finished with status {result.status}",
        "status": result.status,
        "wp_post_id": result.post_id,
        "post_url": result.post_url,
    }


@router.post("/process-backlink-review")
async def process_backlink_review(body: ReviewItemRequest, engine: Engine = Depends(get_db_engine)):
    result = await ReviewWorker(engine).process(body.review_id, body.network_site_id)
    if not result.ok:
        return JSONResponse(status_code=result.http_status, content={"error": result.error, "status": result.status})
    return {
        "message": f"Review item {result.review_id} finished with status {result.status}",
        "status": result.status,
        "backlink_id": result.backlink_id,
    }
