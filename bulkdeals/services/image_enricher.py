import asyncio
from collections import deque
from loguru import logger
from typing import Awaitable, Callable, Dict, List, Optional, Sequence
from bulkdeals.core.config import settings
from bulkdeals.models.batch import AssetType, BatchConfig, ImageStatus, ProcessedImage
from bulkdeals.services.record_store import GENERATED_ASSETS_TABLE, RecordStore
from bulkdeals.services.retry import with_retry

BACKGROUND_REMOVAL_PROMPT = "Remove background, transparent background, product only, clean cutout"
LIFESTYLE_PROMPT = (
    "Product in urban street scene, lifestyle photography, natural lighting, "
    "authentic streetwear vibe"
)

ProgressHook = Callable[[int], Awaitable[None]]
ErrorHook = Callable[[Dict[str, str]], Awaitable[None]]


class ImageEnricher:
    """
    Generates background-removed and lifestyle variants for the images of one
    product group, at most ``max_concurrency`` images at a time.
    """

    def __init__(
        self,
        ai_service,
        store: RecordStore,
        max_concurrency: Optional[int] = None,
        retry_delays: Optional[Sequence[float]] = None,
    ):
        self.ai_service = ai_service
        self.store = store
        self.max_concurrency = max_concurrency or settings.MAX_CONCURRENT_IMAGES
        self.retry_delays = retry_delays

    async def enrich_group(
        self,
        images: List[str],
        config: BatchConfig,
        merchant_id: str,
        on_progress: ProgressHook,
        on_error: ErrorHook,
    ) -> List[ProcessedImage]:
        """Returns one ProcessedImage per input image, in completion order."""
        queue = deque(images)
        in_flight = set()
        results: List[ProcessedImage] = []

        try:
            while queue or in_flight:
                while queue and len(in_flight) < self.max_concurrency:
                    image_url = queue.popleft()
                    in_flight.add(asyncio.create_task(
                        self._process_image(image_url, config, merchant_id, on_progress, on_error)
                    ))

                done, in_flight = await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    results.append(task.result())
        except BaseException:
            for task in in_flight:
                task.cancel()
            if in_flight:
                await asyncio.gather(*in_flight, return_exceptions=True)
            raise

        return results

    async def _process_image(
        self,
        image_url: str,
        config: BatchConfig,
        merchant_id: str,
        on_progress: ProgressHook,
        on_error: ErrorHook,
    ) -> ProcessedImage:
        result = ProcessedImage(original=image_url, status=ImageStatus.PROCESSING)

        try:
            if config.remove_background:
                result.background_removed = await self._generate_variant(
                    image_url, merchant_id, AssetType.BACKGROUND_REMOVED,
                    BACKGROUND_REMOVAL_PROMPT, "1:1", "Background removal",
                )

            if config.generate_lifestyle:
                result.lifestyle = await self._generate_variant(
                    image_url, merchant_id, AssetType.LIFESTYLE,
                    LIFESTYLE_PROMPT, "3:4", "Lifestyle shot generation",
                )
        except Exception as e:
            logger.error(f"❌ Enrichment failed for {image_url}: {e}")
            result.status = ImageStatus.FAILED
            await on_error({"image": image_url, "error": str(e)})
            return result

        result.status = ImageStatus.COMPLETED
        await on_progress(1)
        return result

    async def _generate_variant(
        self,
        image_url: str,
        merchant_id: str,
        asset_type: AssetType,
        prompt: str,
        aspect_ratio: str,
        asset_prompt: str,
    ) -> str:
        generated_url = await with_retry(
            lambda: self.ai_service.generate_image_variant(prompt, [image_url], aspect_ratio),
            delays=self.retry_delays,
            description=f"{asset_type.value} for {image_url}",
        )

        await self.store.insert(GENERATED_ASSETS_TABLE, {
            "merchant_id": merchant_id,
            "asset_type": asset_type.value,
            "source_url": image_url,
            "generated_url": generated_url,
            "prompt": asset_prompt,
            "product_id": None,
        })
        return generated_url
