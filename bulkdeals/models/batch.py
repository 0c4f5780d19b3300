from enum import Enum
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Dict, Any


class BatchStatus(str, Enum):
    PENDING = "pending"
    ANALYZING = "analyzing"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"


class ImageStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class AssetType(str, Enum):
    BACKGROUND_REMOVED = "background_removed"
    LIFESTYLE = "lifestyle"


class BatchConfig(BaseModel):
    generate_lifestyle: bool = True
    remove_background: bool = True
    create_products: bool = True


class ProcessedImage(BaseModel):
    original: str
    background_removed: Optional[str] = None
    lifestyle: Optional[str] = None
    # Display only; the pipeline tracks completion through task results
    status: ImageStatus = ImageStatus.PENDING

    def variants(self) -> List[str]:
        return [url for url in (self.background_removed, self.lifestyle) if url]


class ProductGroup(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    category: str = "Uncategorized"
    main_image: str = Field(alias="mainImage")
    images: List[str]
    processed_images: List[ProcessedImage] = Field(default_factory=list, alias="processedImages")

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ErrorEntry(BaseModel):
    image: str
    error: str


class Batch(BaseModel):
    id: str
    merchant_id: str
    name: Optional[str] = None
    status: BatchStatus = BatchStatus.PENDING
    source_urls: List[str]
    product_groups: List[ProductGroup] = Field(default_factory=list)
    config: BatchConfig = Field(default_factory=BatchConfig)
    total_images: int = 0
    processed_count: int = 0
    failed_count: int = 0
    current_product: Optional[str] = None
    error_log: List[ErrorEntry] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class BatchCreateRequest(BaseModel):
    name: Optional[str] = None
    source_urls: List[str] = Field(min_length=1)
    config: BatchConfig = Field(default_factory=BatchConfig)


class ProductDetails(BaseModel):
    name: str
    description: str
    suggested_sizes: List[str]
    gender: str


class ProcessingResult(BaseModel):
    success: bool
    product_groups: List[ProductGroup] = Field(default_factory=list)
    errors: List[ErrorEntry] = Field(default_factory=list)
    products_created: int = 0


class PriceSuggestion(BaseModel):
    suggested: int
    min: float
    max: float
