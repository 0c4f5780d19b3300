import pytest
from bulkdeals.core.exceptions import BatchNotFoundError, BatchStateError
from bulkdeals.services.batch_processor import BatchProcessor
from bulkdeals.services.image_enricher import ImageEnricher
from bulkdeals.services.product_creator import ProductCreator
from bulkdeals.services.record_store import BATCHES_TABLE, PRODUCTS_TABLE, InMemoryStore
from conftest import NO_DELAYS, FakeAIService, grouping_json

TWO_PRODUCTS = grouping_json(
    {"id": "group_1", "name": "Box Logo Tee", "category": "t-shirts", "mainImage": "b", "images": ["a", "b"]},
    {"id": "group_2", "name": "Cargo Pants", "category": "pants", "mainImage": "c", "images": ["c", "d"]},
)


class RecordingStore(InMemoryStore):
    """Keeps every batch update so tests can replay what observers saw."""

    def __init__(self):
        super().__init__()
        self.batch_updates = []

    async def update(self, table, record_id, fields, merchant_id=None):
        row = await super().update(table, record_id, fields, merchant_id)
        if table == BATCHES_TABLE:
            self.batch_updates.append(dict(fields))
        return row


def make_processor(store, ai):
    return BatchProcessor(
        store,
        ai,
        enricher=ImageEnricher(ai, store, retry_delays=NO_DELAYS),
        product_creator=ProductCreator(ai, store, retry_delays=NO_DELAYS),
    )


@pytest.fixture
def store():
    return RecordingStore()


async def test_happy_path_completes_batch(store, make_batch):
    batch = await make_batch(["a", "b", "c", "d"])
    ai = FakeAIService(grouping=TWO_PRODUCTS)

    result = await make_processor(store, ai).process_batch(batch["id"], "merchant-1")

    assert result.success is True
    assert result.products_created == 2
    assert result.errors == []
    assert [g.name for g in result.product_groups] == ["Box Logo Tee", "Cargo Pants"]
    assert all(len(g.processed_images) == 2 for g in result.product_groups)

    saved = await store.get_by_id(BATCHES_TABLE, batch["id"])
    assert saved["status"] == "completed"
    assert saved["completed_at"] is not None
    assert saved["current_product"] is None
    assert saved["processed_count"] == 4
    assert saved["failed_count"] == 0
    assert saved["product_groups"][0]["mainImage"] == "b"
    assert len(saved["product_groups"][0]["processedImages"]) == 2
    assert len(await store.select(PRODUCTS_TABLE)) == 2


async def test_status_and_labels_progress_in_order(store, make_batch):
    batch = await make_batch(["a", "b", "c", "d"])
    ai = FakeAIService(grouping=TWO_PRODUCTS)

    await make_processor(store, ai).process_batch(batch["id"], "merchant-1")

    statuses = [u["status"] for u in store.batch_updates if "status" in u]
    assert statuses == ["analyzing", "processing", "completed"]

    labels = [u["current_product"] for u in store.batch_updates if "current_product" in u]
    assert labels == [
        "Analyzing images...",
        "Processing 2 product groups...",
        "Processing: Box Logo Tee (1/2)",
        "Processing: Cargo Pants (2/2)",
        "Creating draft products...",
        None,
    ]

    grouped = next(u for u in store.batch_updates if u.get("status") == "processing")
    assert [g["images"] for g in grouped["product_groups"]] == [["a", "b"], ["c", "d"]]
    assert grouped["total_images"] == 4


async def test_counters_are_pushed_live_and_monotonic(store, make_batch):
    images = [f"img{i}" for i in range(8)]
    batch = await make_batch(images)
    ai = FakeAIService(
        grouping=grouping_json({"id": "group_1", "name": "Tee", "category": "t-shirts", "mainImage": "img0", "images": images}),
        failing_images={"img1", "img6"},
        delay=0.01,
    )

    await make_processor(store, ai).process_batch(batch["id"], "merchant-1")

    processed, failed = 0, 0
    pushes = 0
    for update in store.batch_updates:
        if "processed_count" in update:
            assert update["processed_count"] >= processed
            processed = update["processed_count"]
            pushes += 1
        if "failed_count" in update:
            assert update["failed_count"] >= failed
            failed = update["failed_count"]
            assert failed == len(update["error_log"])
        assert processed + failed <= len(images)

    # six live increments plus the final snapshot
    assert pushes == 7
    assert (processed, failed) == (6, 2)

    saved = await store.get_by_id(BATCHES_TABLE, batch["id"])
    assert saved["status"] == "completed"
    assert sorted(e["image"] for e in saved["error_log"]) == ["img1", "img6"]


async def test_failed_image_does_not_block_sibling_groups(store, make_batch):
    batch = await make_batch(["a", "b", "c", "d"])
    ai = FakeAIService(grouping=TWO_PRODUCTS, failing_images={"a"})

    result = await make_processor(store, ai).process_batch(batch["id"], "merchant-1")

    assert result.success is True
    assert [e.image for e in result.errors] == ["a"]
    second = result.product_groups[1]
    assert sorted(p.original for p in second.processed_images) == ["c", "d"]
    assert all(p.background_removed and p.lifestyle for p in second.processed_images)
    assert result.products_created == 2


async def test_create_products_switch(store, make_batch):
    batch = await make_batch(["a", "b"], config={
        "generate_lifestyle": False,
        "remove_background": True,
        "create_products": False,
    })
    ai = FakeAIService(grouping=TWO_PRODUCTS)

    result = await make_processor(store, ai).process_batch(batch["id"], "merchant-1")

    assert result.success is True
    assert result.products_created == 0
    assert await store.select(PRODUCTS_TABLE) == []
    assert ai.text_calls == []
    assert all(call[2] == "1:1" for call in ai.variant_calls)


async def test_infrastructure_failure_fails_the_batch(store, make_batch):
    batch = await make_batch(["a", "b", "c", "d"])

    class ExplodingGrouper:
        async def group_images(self, image_urls):
            raise RuntimeError("grouping infrastructure down")

    ai = FakeAIService()
    processor = BatchProcessor(store, ai, grouper=ExplodingGrouper())

    result = await processor.process_batch(batch["id"], "merchant-1")

    assert result.success is False
    assert result.products_created == 0
    assert [(e.image, e.error) for e in result.errors] == [("batch", "grouping infrastructure down")]
    saved = await store.get_by_id(BATCHES_TABLE, batch["id"])
    assert saved["status"] == "failed"
    assert saved["error_log"] == [{"image": "batch", "error": "grouping infrastructure down"}]
    assert saved["completed_at"] is None


async def test_malformed_config_fails_after_analyzing(store, make_batch):
    batch = await make_batch(["a", "b"], config={"remove_background": "sometimes"})
    ai = FakeAIService(grouping=TWO_PRODUCTS)

    result = await make_processor(store, ai).process_batch(batch["id"], "merchant-1")

    assert result.success is False
    statuses = [u["status"] for u in store.batch_updates if "status" in u]
    assert statuses == ["analyzing", "failed"]
    assert ai.vision_calls == []


async def test_failure_after_item_errors_keeps_them(store, make_batch):
    batch = await make_batch(["a", "b", "c", "d"])
    ai = FakeAIService(grouping=TWO_PRODUCTS, failing_images={"a"})

    class ExplodingCreator:
        async def create_draft_products(self, groups, merchant_id, batch_id):
            raise ConnectionError("products table unreachable")

    processor = BatchProcessor(
        store, ai,
        enricher=ImageEnricher(ai, store, retry_delays=NO_DELAYS),
        product_creator=ExplodingCreator(),
    )

    result = await processor.process_batch(batch["id"], "merchant-1")

    assert result.success is False
    saved = await store.get_by_id(BATCHES_TABLE, batch["id"])
    assert saved["status"] == "failed"
    assert [e["image"] for e in saved["error_log"]] == ["a", "batch"]
    assert saved["failed_count"] == 1


@pytest.mark.parametrize("stage", ["grouping", "enrichment", "synthesis", "none"])
async def test_batch_always_reaches_a_terminal_state(store, make_batch, stage):
    batch = await make_batch(["a", "b", "c", "d"])
    ai = FakeAIService(
        grouping=RuntimeError("vision down") if stage == "grouping" else TWO_PRODUCTS,
        failing_images={"a", "b", "c", "d"} if stage == "enrichment" else (),
        text=RuntimeError("text down") if stage == "synthesis" else None,
    )

    await make_processor(store, ai).process_batch(batch["id"], "merchant-1")

    saved = await store.get_by_id(BATCHES_TABLE, batch["id"])
    assert saved["status"] in ("completed", "failed")
    assert saved["processed_count"] + saved["failed_count"] <= saved["total_images"]


async def test_missing_batch_raises(store):
    with pytest.raises(BatchNotFoundError):
        await make_processor(store, FakeAIService()).process_batch("nope", "merchant-1")


async def test_other_merchants_batch_is_not_visible(store, make_batch):
    batch = await make_batch(["a"], merchant_id="merchant-2")

    with pytest.raises(BatchNotFoundError):
        await make_processor(store, FakeAIService()).process_batch(batch["id"], "merchant-1")


@pytest.mark.parametrize("status", ["analyzing", "processing", "completed", "failed", "paused"])
async def test_only_pending_batches_are_processed(store, make_batch, status):
    batch = await make_batch(["a"], status=status)
    ai = FakeAIService()

    with pytest.raises(BatchStateError):
        await make_processor(store, ai).process_batch(batch["id"], "merchant-1")

    assert store.batch_updates == []
    assert ai.vision_calls == []
