from fastapi import APIRouter, Depends, Query
from typing import Any, Dict, List, Optional
from bulkdeals.api.deps import get_merchant_id, get_store
from bulkdeals.models.batch import PriceSuggestion
from bulkdeals.services.product_creator import suggest_pricing
from bulkdeals.services.record_store import PRODUCTS_TABLE, RecordStore

router = APIRouter()


@router.get("/drafts")
async def list_draft_products(
    batch_id: Optional[str] = None,
    merchant_id: str = Depends(get_merchant_id),
    store: RecordStore = Depends(get_store),
) -> List[Dict[str, Any]]:
    match = {"merchant_id": merchant_id, "published": False}
    if batch_id:
        match["batch_id"] = batch_id
    return await store.select(PRODUCTS_TABLE, match, order_by="created_at", descending=True)


@router.get("/pricing", response_model=Optional[PriceSuggestion])
async def get_price_suggestion(
    category: str = Query(..., min_length=1),
    merchant_id: str = Depends(get_merchant_id),
    store: RecordStore = Depends(get_store),
):
    return await suggest_pricing(store, category, merchant_id)
