import io
import time
import base64
import logging
from dataclasses import dataclass
from typing import Optional

import google.generativeai as genai
from PIL import Image

from category_mapper import (
    DEFAULT_CATEGORY, DEFAULT_ITEM_TYPE, DETECTION_VOCABULARY, map_detection_to_category, validate_category,
)
from config import GEMINI_API_KEY, GEMINI_MODEL

logger = logging.getLogger(__name__)

CLASSIFY_PROMPT = (
    "Look at this image and identify what type of clothing or accessory this is. "
    f"Respond with ONLY ONE of these exact words: {', '.join(DETECTION_VOCABULARY)}. "
    "Just respond with the single word, nothing else."
)


@dataclass
class GarmentClassification:
    """Outcome of classifying one garment image; falls back to the default category on any failure"""
    category: str = DEFAULT_CATEGORY
    item_type: str = DEFAULT_ITEM_TYPE
    raw_detection: Optional[str] = None
    error_message: Optional[str] = None
    processing_time: float = 0.0


def decode_image_payload(image: str) -> bytes:
    """Accept either a data: URI or bare base64 and return the raw bytes."""
    if image.startswith('data:'):
        # Remove data:image/...;base64, prefix
        image = image.split(',', 1)[1]
    return base64.b64decode(image)


class GarmentClassifier:
    """Gemini-backed garment type detection"""

    def __init__(self, api_key: Optional[str] = None, model_name: str = GEMINI_MODEL):
        self.api_key = api_key or GEMINI_API_KEY
        self.model_name = model_name
        if self.api_key:
            genai.configure(api_key=self.api_key)

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    async def classify(self, image: str) -> GarmentClassification:
        """
        Classify a garment image.

        Args:
            image: data: URI or bare base64 of the garment photo

        Returns:
            GarmentClassification; never raises, callers always get a usable category
        """
        start_time = time.time()
        result = GarmentClassification()

        if not self.available:
            result.error_message = 'GEMINI_API_KEY not configured'
            logger.warning("Garment classifier unavailable, using default category")
            return result

        try:
            pil_image = Image.open(io.BytesIO(decode_image_payload(image)))
            model = genai.GenerativeModel(self.model_name)
            response = await model.generate_content_async([CLASSIFY_PROMPT, pil_image])
            text = (response.text or '').strip() if hasattr(response, 'text') else ''
            if not text:
                result.error_message = 'Classifier returned no text'
                logger.warning("Gemini returned no text for garment classification")
            else:
                result.raw_detection = text.upper()
                category, item_type = map_detection_to_category(text)
                if validate_category(category):
                    result.category, result.item_type = category, item_type
                else:
                    result.error_message = f"Unknown category: {category}"
                    logger.warning(f"Mapped '{text}' to unknown category '{category}', using default")
        except Exception as e:
            result.error_message = f"Classification failed: {e}"
            logger.error(f"Error classifying garment image: {e}")

        result.processing_time = time.time() - start_time
        logger.info(f"Garment classified as {result.item_type} ({result.category}) "
                    f"in {result.processing_time:.2f}s")
        return result
