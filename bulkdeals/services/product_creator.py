from enum import Enum
from loguru import logger
from typing import List, Optional, Sequence
from bulkdeals.core.config import settings
from bulkdeals.models.batch import PriceSuggestion, ProductDetails, ProductGroup
from bulkdeals.services.record_store import (
    AI_TASKS_TABLE,
    GENERATED_ASSETS_TABLE,
    PRODUCTS_TABLE,
    RecordStore,
)
from bulkdeals.services.retry import with_retry
from bulkdeals.utils.json_extract import extract_json_object

DEFAULT_SIZES = ["S", "M", "L", "XL"]
DEFAULT_GENDER = "unisex"
GENDERS = {"men", "women", "unisex"}


class Category(str, Enum):
    T_SHIRTS = "t-shirts"
    HOODIES = "hoodies"
    PANTS = "pants"
    JACKETS = "jackets"
    ACCESSORIES = "accessories"
    SHOES = "shoes"


CATEGORY_SYNONYMS = {
    "t-shirts": Category.T_SHIRTS,
    "tshirts": Category.T_SHIRTS,
    "shirts": Category.T_SHIRTS,
    "hoodies": Category.HOODIES,
    "sweaters": Category.HOODIES,
    "pants": Category.PANTS,
    "jeans": Category.PANTS,
    "jackets": Category.JACKETS,
    "outerwear": Category.JACKETS,
    "accessories": Category.ACCESSORIES,
    "hats": Category.ACCESSORIES,
    "bags": Category.ACCESSORIES,
    "shoes": Category.SHOES,
    "footwear": Category.SHOES,
}


def map_category(category_name: str) -> str:
    normalized = category_name.lower().strip()
    category = CATEGORY_SYNONYMS.get(normalized)
    return category.value if category else normalized


def collect_all_images(group: ProductGroup) -> List[str]:
    """Main image first, then the originals, then every generated variant."""
    images = [group.main_image, *group.images]
    for processed in group.processed_images:
        images.extend(processed.variants())
    return list(dict.fromkeys(img for img in images if img))


def default_details(group: ProductGroup) -> ProductDetails:
    return ProductDetails(
        name=group.name,
        description=(
            f"Premium {group.category} from {settings.BRAND_NAME}'s streetwear collection. "
            "Designed for style and comfort."
        ),
        suggested_sizes=list(DEFAULT_SIZES),
        gender=DEFAULT_GENDER,
    )


def parse_details(text: Optional[str], group: ProductGroup) -> ProductDetails:
    """Reads the model answer field by field, keeping defaults for anything unusable."""
    details = default_details(group)
    data = extract_json_object(text)
    if data is None:
        logger.warning(f"Product details for '{group.name}' were not parseable, using defaults")
        return details

    name = data.get("name")
    if isinstance(name, str) and name.strip():
        details.name = name.strip()

    description = data.get("description")
    if isinstance(description, str) and description.strip():
        details.description = description.strip()

    sizes = data.get("suggestedSizes")
    if isinstance(sizes, list) and sizes and all(isinstance(s, str) for s in sizes):
        details.suggested_sizes = sizes

    gender = data.get("gender")
    if isinstance(gender, str) and gender.lower() in GENDERS:
        details.gender = gender.lower()

    return details


class ProductCreator:
    def __init__(self, ai_service, store: RecordStore, retry_delays: Optional[Sequence[float]] = None):
        self.ai_service = ai_service
        self.store = store
        self.retry_delays = retry_delays

    async def create_draft_products(self, groups: List[ProductGroup], merchant_id: str, batch_id: str) -> int:
        created_count = 0

        for group in groups:
            try:
                product_id = await self.create_draft_product(group, merchant_id, batch_id)
            except Exception as e:
                logger.error(f"❌ Error creating product for group {group.id}: {e}")
                continue

            logger.success(f"🛍 Draft product {product_id} created for '{group.name}'")
            created_count += 1

        logger.info(f"🏁 Draft products created: {created_count}/{len(groups)}")
        return created_count

    async def create_draft_product(self, group: ProductGroup, merchant_id: str, batch_id: str) -> str:
        details = await self.generate_product_details(group)
        all_images = collect_all_images(group)

        product = await self.store.insert(PRODUCTS_TABLE, {
            "merchant_id": merchant_id,
            "batch_id": batch_id,
            "name": details.name,
            "description": details.description,
            "category_id": map_category(group.category),
            "image_url": group.main_image,
            "images": all_images,
            "sizes": details.suggested_sizes,
            "gender": details.gender,
            "published": False,
            # Price is left for the merchant to set
            "price": None,
        })
        product_id = product["id"]

        await self._link_assets(merchant_id, product_id, group)

        await self.store.insert(AI_TASKS_TABLE, {
            "merchant_id": merchant_id,
            "agent": "product",
            "task_type": "bulk_product_create",
            "status": "completed",
            "input": {"group_id": group.id, "batch_id": batch_id},
            "output": {"product_id": product_id},
            "metadata": {"image_count": len(all_images), "category": group.category},
        })
        return product_id

    async def generate_product_details(self, group: ProductGroup) -> ProductDetails:
        prompt = f"""Generate product details for a streetwear item:

Product Name: {group.name}
Category: {group.category}
Number of images: {len(group.images)}

Generate:
1. A refined product name (2-4 words, streetwear-appropriate)
2. A compelling product description (2-3 sentences)
3. Suggested available sizes
4. Target gender (men, women, or unisex)

Return as JSON:
{{
  "name": "Product Name",
  "description": "Product description",
  "suggestedSizes": ["S", "M", "L", "XL"],
  "gender": "unisex"
}}

Return ONLY valid JSON."""

        try:
            text = await with_retry(
                lambda: self.ai_service.generate_text(prompt, max_output_tokens=300),
                delays=self.retry_delays,
                description=f"product details for {group.id}",
            )
        except Exception as e:
            logger.error(f"Error generating product details for {group.id}: {e}")
            return default_details(group)

        return parse_details(text, group)

    async def _link_assets(self, merchant_id: str, product_id: str, group: ProductGroup) -> None:
        generated_urls = []
        for processed in group.processed_images:
            generated_urls.extend(processed.variants())

        if not generated_urls:
            return

        linked = await self.store.update_where(
            GENERATED_ASSETS_TABLE,
            {"merchant_id": merchant_id, "generated_url": list(dict.fromkeys(generated_urls))},
            {"product_id": product_id},
        )
        logger.debug(f"Linked {linked} generated assets to product {product_id}")


async def suggest_pricing(store: RecordStore, category: str, merchant_id: str) -> Optional[PriceSuggestion]:
    """Suggests a price from the merchant's priced products in the same category."""
    products = await store.select(
        PRODUCTS_TABLE,
        {"merchant_id": merchant_id, "category_id": map_category(category)},
    )
    prices = [p["price"] for p in products if p.get("price")][:20]
    if not prices:
        return None

    return PriceSuggestion(
        suggested=round(sum(prices) / len(prices)),
        min=min(prices),
        max=max(prices),
    )
