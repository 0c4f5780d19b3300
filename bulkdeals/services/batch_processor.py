import asyncio
from loguru import logger
from typing import Any, Dict, List, Optional
from bulkdeals.core.exceptions import BatchNotFoundError, BatchStateError
from bulkdeals.models.batch import (
    BatchConfig,
    BatchStatus,
    ErrorEntry,
    ProcessingResult,
    ProductGroup,
)
from bulkdeals.services.image_enricher import ImageEnricher
from bulkdeals.services.image_grouper import ImageGrouper
from bulkdeals.services.product_creator import ProductCreator
from bulkdeals.services.record_store import BATCHES_TABLE, RecordStore, utc_now


class BatchProgress:
    """
    Single writer for the batch counters.

    Enricher hooks may fire from several tasks at once; every change is
    applied and pushed to the store under one lock, so persisted counters
    only ever grow and no update is lost.
    """

    def __init__(self, store: RecordStore, batch_id: str, merchant_id: str):
        self.store = store
        self.batch_id = batch_id
        self.merchant_id = merchant_id
        self.processed_count = 0
        self.errors: List[Dict[str, str]] = []
        self._lock = asyncio.Lock()

    async def record_success(self, count: int = 1) -> None:
        async with self._lock:
            self.processed_count += count
            await self.store.update(
                BATCHES_TABLE,
                self.batch_id,
                {"processed_count": self.processed_count, "updated_at": utc_now()},
                self.merchant_id,
            )

    async def record_failure(self, error: Dict[str, str]) -> None:
        async with self._lock:
            self.errors.append({"image": error["image"], "error": error["error"]})
            await self.store.update(
                BATCHES_TABLE,
                self.batch_id,
                {
                    "failed_count": len(self.errors),
                    "error_log": list(self.errors),
                    "updated_at": utc_now(),
                },
                self.merchant_id,
            )


class BatchProcessor:
    def __init__(
        self,
        store: RecordStore,
        ai_service,
        grouper: Optional[ImageGrouper] = None,
        enricher: Optional[ImageEnricher] = None,
        product_creator: Optional[ProductCreator] = None,
    ):
        self.store = store
        self.grouper = grouper or ImageGrouper(ai_service)
        self.enricher = enricher or ImageEnricher(ai_service, store)
        self.product_creator = product_creator or ProductCreator(ai_service, store)

    async def _update(self, batch_id: str, merchant_id: str, fields: Dict[str, Any]) -> None:
        await self.store.update(BATCHES_TABLE, batch_id, {**fields, "updated_at": utc_now()}, merchant_id)

    async def process_batch(self, batch_id: str, merchant_id: str) -> ProcessingResult:
        """
        Drives one pending batch to ``completed`` or ``failed``.

        Raises BatchNotFoundError / BatchStateError before touching the record
        when the batch is missing or not pending. Per-image and per-product
        failures are isolated; anything else fails the batch.
        """
        batch = await self.store.get_by_id(BATCHES_TABLE, batch_id, merchant_id)
        if batch is None:
            raise BatchNotFoundError(batch_id)
        if batch.get("status") != BatchStatus.PENDING.value:
            raise BatchStateError(batch_id, batch.get("status"))

        progress = BatchProgress(self.store, batch_id, merchant_id)

        with logger.contextualize(batch_id=batch_id):
            try:
                return await self._run(batch, merchant_id, progress)
            except Exception as e:
                logger.exception(f"Bulk processing error: {e}")
                errors = [*progress.errors, {"image": "batch", "error": str(e)}]
                await self._update(batch_id, merchant_id, {
                    "status": BatchStatus.FAILED.value,
                    "error_log": errors,
                })
                return ProcessingResult(
                    success=False,
                    errors=[ErrorEntry(**err) for err in errors],
                )

    async def _run(self, batch: Dict[str, Any], merchant_id: str, progress: BatchProgress) -> ProcessingResult:
        batch_id = batch["id"]
        source_urls = batch.get("source_urls") or []

        logger.info(f"🚀 Batch {batch_id} started | {len(source_urls)} images")
        await self._update(batch_id, merchant_id, {
            "status": BatchStatus.ANALYZING.value,
            "current_product": "Analyzing images...",
        })

        config = BatchConfig.model_validate(batch.get("config") or {})

        groups = await self.grouper.group_images(source_urls)
        total_images = sum(len(g.images) for g in groups)

        await self._update(batch_id, merchant_id, {
            "status": BatchStatus.PROCESSING.value,
            "product_groups": [g.to_record() for g in groups],
            "total_images": total_images,
            "current_product": f"Processing {len(groups)} product groups...",
        })

        processed_groups: List[ProductGroup] = []
        for i, group in enumerate(groups):
            label = f"Processing: {group.name} ({i + 1}/{len(groups)})"
            logger.info(f"🔄 {label}")
            await self._update(batch_id, merchant_id, {"current_product": label})

            processed_images = await self.enricher.enrich_group(
                group.images,
                config,
                merchant_id,
                on_progress=progress.record_success,
                on_error=progress.record_failure,
            )
            processed_groups.append(group.model_copy(update={"processed_images": processed_images}))

        products_created = 0
        if config.create_products:
            await self._update(batch_id, merchant_id, {"current_product": "Creating draft products..."})
            products_created = await self.product_creator.create_draft_products(
                processed_groups, merchant_id, batch_id
            )

        await self._update(batch_id, merchant_id, {
            "status": BatchStatus.COMPLETED.value,
            "completed_at": utc_now(),
            "current_product": None,
            "processed_count": progress.processed_count,
            "product_groups": [g.to_record() for g in processed_groups],
        })

        logger.success(
            f"🏁 Batch {batch_id} completed | {progress.processed_count}/{total_images} images, "
            f"{len(progress.errors)} failed, {products_created} products"
        )
        return ProcessingResult(
            success=True,
            product_groups=processed_groups,
            errors=[ErrorEntry(**err) for err in progress.errors],
            products_created=products_created,
        )
