from functools import lru_cache
from fastapi import Header, HTTPException
from bulkdeals.services.batch_processor import BatchProcessor
from bulkdeals.services.gemini_service import GeminiService
from bulkdeals.services.record_store import InMemoryStore, RecordStore


@lru_cache
def get_store() -> RecordStore:
    return InMemoryStore()


@lru_cache
def get_ai_service() -> GeminiService:
    return GeminiService()


def get_batch_processor() -> BatchProcessor:
    return BatchProcessor(get_store(), get_ai_service())


def get_merchant_id(x_merchant_id: str = Header(default="")) -> str:
    if not x_merchant_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-Merchant-ID header")
    return x_merchant_id.strip()
