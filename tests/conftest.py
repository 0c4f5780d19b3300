import asyncio
import json
import pytest
from typing import Callable, List, Optional, Union
from bulkdeals.core.exceptions import RemoteServiceError
from bulkdeals.services.record_store import BATCHES_TABLE, InMemoryStore

NO_DELAYS = [0, 0, 0]


class FakeAIService:
    """Stands in for GeminiService; records calls and tracks concurrency."""

    def __init__(
        self,
        grouping: Union[str, Callable[[List[str]], str], Exception, None] = None,
        text: Union[str, Exception, None] = None,
        failing_images=(),
        delay: float = 0,
    ):
        self.grouping = grouping
        self.text = text
        self.failing_images = set(failing_images)
        self.delay = delay
        self.vision_calls: List[List[str]] = []
        self.variant_calls: List[tuple] = []
        self.text_calls: List[str] = []
        self.text_token_limits: List[int] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def group_vision(self, image_refs):
        self.vision_calls.append(list(image_refs))
        if isinstance(self.grouping, Exception):
            raise self.grouping
        if callable(self.grouping):
            return self.grouping(list(image_refs))
        if self.grouping is None:
            return "[]"
        return self.grouping

    async def generate_image_variant(self, prompt, reference_images, aspect_ratio="3:4"):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            self.variant_calls.append((prompt, list(reference_images), aspect_ratio))
            source = reference_images[0]
            if source in self.failing_images:
                raise RemoteServiceError("Gemini API error: 400 Bad Request", status_code=400)
            kind = "bg" if aspect_ratio == "1:1" else "lifestyle"
            return f"{source}.{kind}.png"
        finally:
            self.in_flight -= 1

    async def generate_text(self, prompt, max_output_tokens=300):
        self.text_calls.append(prompt)
        self.text_token_limits.append(max_output_tokens)
        if isinstance(self.text, Exception):
            raise self.text
        return self.text or ""


def grouping_json(*groups: dict) -> str:
    return "Here are the groups:\n```json\n" + json.dumps(list(groups)) + "\n```"


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def make_batch(store):
    async def _make_batch(source_urls, merchant_id="merchant-1", config: Optional[dict] = None, status="pending"):
        return await store.insert(BATCHES_TABLE, {
            "merchant_id": merchant_id,
            "name": "Test batch",
            "status": status,
            "source_urls": list(source_urls),
            "product_groups": [],
            "config": config or {
                "generate_lifestyle": True,
                "remove_background": True,
                "create_products": True,
            },
            "total_images": len(source_urls),
            "processed_count": 0,
            "failed_count": 0,
            "current_product": None,
            "error_log": [],
            "completed_at": None,
        })
    return _make_batch
