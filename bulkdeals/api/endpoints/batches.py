from fastapi import APIRouter, BackgroundTasks, Depends, Query
from loguru import logger
from typing import List, Optional
from bulkdeals.api.deps import get_batch_processor, get_merchant_id, get_store
from bulkdeals.core.config import settings
from bulkdeals.core.exceptions import BatchNotFoundError, BatchStateError, DailyLimitExceededError
from bulkdeals.models.batch import Batch, BatchCreateRequest, BatchStatus
from bulkdeals.services.batch_processor import BatchProcessor
from bulkdeals.services.record_store import BATCHES_TABLE, RecordStore, utc_now

router = APIRouter()


@router.post("", response_model=Batch, status_code=201)
async def create_batch(
    request: BatchCreateRequest,
    merchant_id: str = Depends(get_merchant_id),
    store: RecordStore = Depends(get_store),
):
    """Registers a pending batch; processing starts through /process."""
    now = utc_now()
    start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
    batches = await store.select(BATCHES_TABLE, {"merchant_id": merchant_id})
    created_today = sum(1 for b in batches if b.get("created_at") and b["created_at"] >= start_of_day)
    if created_today >= settings.DAILY_BATCH_LIMIT:
        raise DailyLimitExceededError(settings.DAILY_BATCH_LIMIT)

    record = await store.insert(BATCHES_TABLE, {
        "merchant_id": merchant_id,
        "name": request.name or f"Batch {now:%Y-%m-%d %H:%M:%S}",
        "status": BatchStatus.PENDING.value,
        "source_urls": request.source_urls,
        "product_groups": [],
        "config": request.config.model_dump(),
        "total_images": len(request.source_urls),
        "processed_count": 0,
        "failed_count": 0,
        "current_product": None,
        "error_log": [],
        "created_at": now,
        "updated_at": now,
        "completed_at": None,
    })

    logger.info(f"📥 Batch {record['id']} created with {len(request.source_urls)} images")
    return record


@router.get("", response_model=List[Batch])
async def list_batches(
    status: Optional[BatchStatus] = None,
    limit: int = Query(20, ge=1, le=100),
    merchant_id: str = Depends(get_merchant_id),
    store: RecordStore = Depends(get_store),
):
    match = {"merchant_id": merchant_id}
    if status:
        match["status"] = status.value
    return await store.select(BATCHES_TABLE, match, order_by="created_at", descending=True, limit=limit)


@router.get("/{batch_id}", response_model=Batch)
async def get_batch(
    batch_id: str,
    merchant_id: str = Depends(get_merchant_id),
    store: RecordStore = Depends(get_store),
):
    batch = await store.get_by_id(BATCHES_TABLE, batch_id, merchant_id)
    if batch is None:
        raise BatchNotFoundError(batch_id)
    return batch


@router.post("/{batch_id}/process", status_code=202)
async def process_batch(
    batch_id: str,
    background_tasks: BackgroundTasks,
    merchant_id: str = Depends(get_merchant_id),
    store: RecordStore = Depends(get_store),
    processor: BatchProcessor = Depends(get_batch_processor),
):
    batch = await store.get_by_id(BATCHES_TABLE, batch_id, merchant_id)
    if batch is None:
        raise BatchNotFoundError(batch_id)
    if batch["status"] != BatchStatus.PENDING.value:
        raise BatchStateError(batch_id, batch["status"])

    async def run_and_track():
        try:
            result = await processor.process_batch(batch_id, merchant_id)
        except Exception as e:
            logger.exception(f"Batch {batch_id} could not be processed: {e}")
            return
        logger.info(f"Batch {batch_id} finished | success={result.success} products={result.products_created}")

    background_tasks.add_task(run_and_track)

    return {
        "batch_id": batch_id,
        "status": "processing_started",
        "items_count": len(batch.get("source_urls") or []),
    }
