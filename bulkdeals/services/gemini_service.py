import httpx
import base64
import os
import uuid
from loguru import logger
from typing import Any, Dict, List, Optional
from bulkdeals.core.config import settings
from bulkdeals.core.exceptions import RemoteServiceError
from bulkdeals.utils.image_processor import ImageProcessor


class GeminiService:
    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.GEMINI_API_KEY
        self.base_url = base_url or settings.GEMINI_BASE_URL
        self.transport = transport

        self.headers = {
            "Content-Type": "application/json",
            "x-goog-api-key": self.api_key,
        }
        masked = (
            f"{self.api_key[:6]}...{self.api_key[-4:]}"
            if self.api_key
            else "MISSING"
        )
        logger.info(f"🔑 Gemini service initialized | Key: {masked}")

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=settings.REQUEST_TIMEOUT_SECONDS, transport=self.transport)

    # ---------------------------------------------------------
    # Transport
    # ---------------------------------------------------------
    async def _generate_content(
        self,
        client: httpx.AsyncClient,
        model: str,
        parts: List[Dict[str, Any]],
        generation_config: Dict[str, Any],
    ) -> Dict[str, Any]:
        payload = {
            "contents": [{"parts": parts}],
            "generationConfig": generation_config,
        }
        endpoint = f"{self.base_url}/models/{model}:generateContent"

        response = await client.post(endpoint, headers=self.headers, json=payload)

        if response.status_code == 429:
            logger.warning("⏳ Rate limited by Gemini.")
        if response.status_code != 200:
            logger.error(f"❌ API Error {response.status_code}: {response.text}")
            raise RemoteServiceError(
                f"Gemini API error: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )

        result_data = response.json()
        usage = result_data.get("usageMetadata", {})
        logger.debug(f"📊 Tokens used: {usage.get('totalTokenCount', 0)}")
        return result_data

    async def _reference_part(self, client: httpx.AsyncClient, image_url: str) -> Dict[str, Any]:
        response = await client.get(image_url)
        if response.status_code != 200:
            raise RemoteServiceError(
                f"Failed to fetch reference image {image_url}: {response.status_code}",
                status_code=response.status_code,
            )
        if not ImageProcessor.validate_image(response.content):
            raise ValueError(f"Reference is not a readable image: {image_url}")

        max_side = settings.MAX_REFERENCE_IMAGE_SIZE
        data, mime_type = ImageProcessor.optimize_for_api(response.content, max_size=(max_side, max_side))
        return {
            "inline_data": {
                "mime_type": mime_type,
                "data": base64.b64encode(data).decode("utf-8"),
            }
        }

    @staticmethod
    def _response_parts(result_data: Dict[str, Any]) -> List[Dict[str, Any]]:
        parts = []
        for candidate in result_data.get("candidates", []):
            parts.extend(candidate.get("content", {}).get("parts", []))
        return parts

    @classmethod
    def _response_text(cls, result_data: Dict[str, Any]) -> str:
        return "".join(part.get("text", "") for part in cls._response_parts(result_data))

    @classmethod
    def _response_image(cls, result_data: Dict[str, Any]) -> bytes:
        for part in cls._response_parts(result_data):
            inline = part.get("inline_data") or part.get("inlineData")
            if inline:
                return base64.b64decode(inline["data"])
            if "text" in part:
                logger.warning(f"⚠ Model returned text: {part['text']}")
        raise RemoteServiceError("No image data in response.")

    def _store_image(self, image_bytes: bytes) -> str:
        os.makedirs(settings.EXPORT_DIR, exist_ok=True)
        output_filename = f"gen_{uuid.uuid4().hex}.png"
        output_path = os.path.join(settings.EXPORT_DIR, output_filename)

        with open(output_path, "wb") as f:
            f.write(image_bytes)

        return f"{settings.PUBLIC_BASE_URL.rstrip('/')}/exports/{output_filename}"

    # ---------------------------------------------------------
    # Capabilities
    # ---------------------------------------------------------
    async def group_vision(self, image_refs: List[str]) -> str:
        """
        Asks the vision model to cluster product photos.

        The URL list is repeated in the prompt so the model can answer with
        references instead of positions; returns the raw model text.
        """
        image_list = "\n".join(f"Image {idx + 1}: {url}" for idx, url in enumerate(image_refs))
        prompt = f"""Analyze these product images from a streetwear store and group them by product.

Images:
{image_list}

For each group, identify:
1. Which images show the same product (different angles/colors count as same product)
2. A suggested product name based on the image
3. The product category (t-shirts, hoodies, pants, jackets, accessories, etc.)
4. Which image should be the main/featured image

Return a JSON array with this exact format:
[
  {{
    "id": "group_1",
    "name": "Product Name",
    "category": "category",
    "mainImage": "image_url",
    "images": ["image_url1", "image_url2"]
  }}
]

Rules:
- Group similar products together (same item, different angles)
- Use descriptive streetwear-appropriate names
- Choose the best quality/angle image as mainImage
- Every image should be in exactly one group
- If an image is unclear, put it in its own group

Return ONLY valid JSON, no other text."""

        async with self._client() as client:
            parts: List[Dict[str, Any]] = [{"text": prompt}]
            for url in image_refs:
                parts.append({"text": f"Image: {url}"})
                parts.append(await self._reference_part(client, url))

            result_data = await self._generate_content(
                client,
                settings.GEMINI_TEXT_MODEL,
                parts,
                {"temperature": 0.2, "maxOutputTokens": 2000},
            )

        text = self._response_text(result_data)
        logger.info(f"🔍 Vision grouping answered for {len(image_refs)} images")
        return text

    async def generate_image_variant(self, prompt: str, reference_images: List[str], aspect_ratio: str = "3:4") -> str:
        """Generates an edited image from a prompt and reference images; returns its public URL."""
        async with self._client() as client:
            parts: List[Dict[str, Any]] = [{"text": prompt}]
            for url in reference_images:
                parts.append(await self._reference_part(client, url))

            result_data = await self._generate_content(
                client,
                settings.GEMINI_IMAGE_MODEL,
                parts,
                {
                    "responseModalities": ["IMAGE"],
                    "imageConfig": {"aspectRatio": aspect_ratio},
                    "temperature": 0.2,
                },
            )

        url = self._store_image(self._response_image(result_data))
        logger.success(f"✅ Generated variant ({aspect_ratio}): {url}")
        return url

    async def generate_text(self, prompt: str, max_output_tokens: int = 300) -> str:
        async with self._client() as client:
            result_data = await self._generate_content(
                client,
                settings.GEMINI_TEXT_MODEL,
                [{"text": prompt}],
                {"temperature": 0.7, "maxOutputTokens": max_output_tokens},
            )
        return self._response_text(result_data)
