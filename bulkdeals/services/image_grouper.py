from loguru import logger
from typing import Any, Iterable, List, Optional, Sequence
from bulkdeals.core.config import settings
from bulkdeals.models.batch import ProductGroup
from bulkdeals.services.retry import with_retry
from bulkdeals.utils.json_extract import extract_json_array

UNCATEGORIZED = "Uncategorized"
MERGE_THRESHOLD = 0.5


def fallback_groups(image_urls: List[str]) -> List[ProductGroup]:
    """One group per image; used whenever the model answer is unusable."""
    return [
        ProductGroup(
            id=f"group_{idx + 1}",
            name=f"Product {idx + 1}",
            category=UNCATEGORIZED,
            main_image=url,
            images=[url],
        )
        for idx, url in enumerate(image_urls)
    ]


def _coerce_group(raw: Any, position: int) -> Optional[ProductGroup]:
    if not isinstance(raw, dict):
        return None

    images = raw.get("images")
    if not isinstance(images, list):
        images = []
    images = [img for img in images if isinstance(img, str)]

    main_image = raw.get("mainImage")
    return ProductGroup(
        id=str(raw.get("id") or f"group_{position + 1}"),
        name=str(raw.get("name") or f"Product {position + 1}"),
        category=str(raw.get("category") or UNCATEGORIZED),
        main_image=main_image if isinstance(main_image, str) else "",
        images=images,
    )


def validate_groups(groups: Iterable[ProductGroup], all_images: List[str]) -> List[ProductGroup]:
    """
    Turns proposed groups into an exact partition of ``all_images``.

    Unknown references and references already claimed by an earlier group are
    dropped, a dropped main image is replaced by the first remaining image,
    emptied groups disappear and every unclaimed input becomes a singleton.
    """
    known = set(all_images)
    used = set()
    valid_groups = []

    for group in groups:
        valid_images = []
        for img in group.images:
            if img in known and img not in used:
                used.add(img)
                valid_images.append(img)

        if not valid_images:
            continue

        main_image = group.main_image if group.main_image in valid_images else valid_images[0]
        valid_groups.append(group.model_copy(update={"images": valid_images, "main_image": main_image}))

    unused = [img for img in all_images if img not in used]
    for i, img in enumerate(unused):
        valid_groups.append(
            ProductGroup(
                id=f"group_auto_{i + 1}",
                name="Product (Auto)",
                category=UNCATEGORIZED,
                main_image=img,
                images=[img],
            )
        )

    return valid_groups


def _name_tokens(name: str) -> set:
    return {word for word in name.lower().split() if len(word) > 2}


def is_similar_product(existing: ProductGroup, candidate: ProductGroup) -> bool:
    """Same category and more than half of the significant name words shared."""
    if existing.category != candidate.category:
        return False

    words1 = _name_tokens(existing.name)
    words2 = _name_tokens(candidate.name)
    if not words1 or not words2:
        return False

    similarity = len(words1 & words2) / max(len(words1), len(words2))
    return similarity > MERGE_THRESHOLD


class ImageGrouper:
    def __init__(
        self,
        ai_service,
        chunk_size: Optional[int] = None,
        retry_delays: Optional[Sequence[float]] = None,
    ):
        self.ai_service = ai_service
        self.chunk_size = chunk_size or settings.GROUPING_CHUNK_SIZE
        self.retry_delays = retry_delays

    async def group_images(self, image_urls: List[str]) -> List[ProductGroup]:
        images = list(dict.fromkeys(image_urls))
        if not images:
            return []

        if len(images) <= self.chunk_size:
            return await self._analyze_chunk(images)

        logger.info(f"🧩 Grouping {len(images)} images in chunks of {self.chunk_size}")
        all_groups: List[ProductGroup] = []

        for start in range(0, len(images), self.chunk_size):
            chunk = images[start:start + self.chunk_size]
            for new_group in await self._analyze_chunk(chunk):
                existing = next((g for g in all_groups if is_similar_product(g, new_group)), None)
                if existing:
                    logger.debug(f"Merging '{new_group.name}' into '{existing.name}'")
                    existing.images.extend(new_group.images)
                else:
                    all_groups.append(new_group)

        return validate_groups(all_groups, images)

    async def _analyze_chunk(self, image_urls: List[str]) -> List[ProductGroup]:
        try:
            text = await self.ai_service.group_vision(image_urls)
        except Exception as e:
            logger.error(f"Image grouping error: {e}")
            return fallback_groups(image_urls)

        raw_groups = extract_json_array(text)
        if raw_groups is None:
            logger.warning(f"Grouping answer had no usable JSON array, using one group per image ({len(image_urls)})")
            return fallback_groups(image_urls)

        proposed = [g for g in (_coerce_group(raw, i) for i, raw in enumerate(raw_groups)) if g is not None]
        groups = validate_groups(proposed, image_urls)
        logger.info(f"📦 {len(image_urls)} images -> {len(groups)} product groups")
        return groups

    async def refine_product_name(self, current_name: str, category: str, image_urls: List[str]) -> str:
        """Asks the text model for a sharper 2-4 word name, keeping ``current_name`` on any failure."""
        prompt = f"""Given a streetwear product:
- Current name: {current_name}
- Category: {category}
- Number of images: {len(image_urls)}

Generate a better, more marketable product name that:
- Is concise (2-4 words)
- Sounds authentic to streetwear culture
- Is descriptive but not generic

Return ONLY the product name, nothing else."""

        try:
            text = await with_retry(
                lambda: self.ai_service.generate_text(prompt, max_output_tokens=50),
                delays=self.retry_delays,
                description=f"name refinement for '{current_name}'",
            )
        except Exception as e:
            logger.error(f"Error refining product name '{current_name}': {e}")
            return current_name

        return (text or "").strip() or current_name
