"""
Image Service

Handles uploaded problem images: validation, storage in a Supabase Storage
bucket (or process memory without Supabase) and text extraction with the
OpenAI vision model.
"""

import base64
import logging
import os
import secrets
import time
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI

from socratic_math_tutor.errors import StorageError, ValidationError
from socratic_math_tutor.llm_utils import complete, vision_model

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 5 * 1024 * 1024  # 5MB
ALLOWED_CONTENT_TYPES = {"image/png", "image/jpeg", "image/jpg"}
NO_MATH_MARKER = "NO_MATH_PROBLEM"
VISION_CONFIDENCE = 0.9
# Problems read from images below this confidence are re-checked on chat turns
VERIFY_BELOW_CONFIDENCE = 0.8

EXTRACTION_PROMPT = (
    "Extract all math problems from this image. If there is only one problem, return it. "
    "If there are multiple problems, return them numbered (1, 2, 3...), one per line. "
    f'If this image does NOT contain a math problem, respond with "{NO_MATH_MARKER}".\n\n'
    "For WORD PROBLEMS (problems with narrative/story context), return the COMPLETE problem text "
    "including all words and context. For pure mathematical expressions, return only the "
    "mathematical content."
)


def validate_image(content_type: Optional[str], size: int) -> None:
    """
    Raises:
        ValidationError: listing every problem with the upload
    """
    errors = []
    if size > MAX_FILE_SIZE:
        errors.append(f"File size exceeds 5MB limit ({size / 1024 / 1024:.2f}MB)")
    if content_type not in ALLOWED_CONTENT_TYPES:
        errors.append("Invalid file type. Allowed: PNG, JPG, JPEG")
    if errors:
        raise ValidationError("; ".join(errors), "image")


def _data_url(data: bytes, content_type: str) -> str:
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{content_type or 'image/png'};base64,{encoded}"


class ImageService:
    """Stores images and reads math problems out of them."""

    def __init__(self, llm_client: AsyncOpenAI, supabase_client=None, bucket: Optional[str] = None):
        self.llm_client = llm_client
        self.supabase = supabase_client
        self.bucket = bucket or os.getenv("SUPABASE_IMAGE_BUCKET", "problem-images")
        self._in_memory_images: Dict[str, Dict[str, Any]] = {}

    # ==================== Storage ====================

    async def store_image(self, data: bytes, filename: str, content_type: str) -> Dict[str, str]:
        """
        Returns:
            {"key": str, "url": str}
        """
        extension = filename.rsplit(".", 1)[-1].lower() if filename and "." in filename else "png"
        key = f"uploads/{int(time.time() * 1000)}-{secrets.token_hex(16)}.{extension}"

        if self.supabase is None:
            self._in_memory_images[key] = {"data": data, "content_type": content_type}
            return {"key": key, "url": f"memory://{key}"}

        try:
            bucket = self.supabase.storage.from_(self.bucket)
            bucket.upload(key, data, {"content-type": content_type})
            url = bucket.get_public_url(key)
        except Exception as e:
            raise StorageError(f"Failed to upload image: {e}", e) from e

        logger.info(f"Image uploaded: {key}")
        return {"key": key, "url": url}

    def image_url_for(self, key: str) -> str:
        if self.supabase is None:
            return f"memory://{key}"
        return self.supabase.storage.from_(self.bucket).get_public_url(key)

    async def load_image(self, key: str) -> Optional[Dict[str, Any]]:
        """
        Returns:
            {"data": bytes, "content_type": str} or None for unknown keys
        """
        if not key:
            return None

        if self.supabase is None:
            return self._in_memory_images.get(key)

        try:
            data = self.supabase.storage.from_(self.bucket).download(key)
        except Exception as e:
            raise StorageError(f"Failed to download image {key}", e) from e

        content_type = "image/jpeg" if key.endswith((".jpg", ".jpeg")) else "image/png"
        return {"data": data, "content_type": content_type}

    async def delete_images(self, keys: List[str]) -> None:
        keys = [key for key in keys if key]
        if not keys:
            return

        if self.supabase is None:
            for key in keys:
                self._in_memory_images.pop(key, None)
            return

        try:
            self.supabase.storage.from_(self.bucket).remove(keys)
        except Exception as e:
            raise StorageError(f"Failed to delete images: {e}", e) from e
        logger.info(f"Deleted {len(keys)} images")

    # ==================== Vision ====================

    async def extract_text_from_image(self, data: bytes, content_type: str) -> Dict[str, Any]:
        """
        Read problem text from an image.

        Returns:
            {"text", "confidence", "source", "success", "no_math_problem"}

        Raises:
            LLMError: when the vision call fails
        """
        text = await complete(
            self.llm_client,
            [{
                "role": "user",
                "content": [
                    {"type": "text", "text": EXTRACTION_PROMPT},
                    {"type": "image_url", "image_url": {"url": _data_url(data, content_type)}},
                ],
            }],
            max_tokens=1000,
            temperature=0.2,
            model=vision_model(),
        )

        if not text or NO_MATH_MARKER in text.upper():
            logger.info("Vision detected no math problem in image")
            return {
                "text": "",
                "confidence": VISION_CONFIDENCE,
                "source": "vision",
                "success": False,
                "no_math_problem": True,
            }

        logger.debug(f"Vision extracted text: {text[:100]}")
        return {
            "text": text,
            "confidence": VISION_CONFIDENCE,
            "source": "vision",
            "success": True,
            "no_math_problem": False,
        }

    async def verify_problem_text(self, data: bytes, content_type: str, problem_text: str) -> Dict[str, Any]:
        """
        Check stored problem text against its image.

        Returns:
            {"matches": bool, "correct_text": Optional[str]}
        """
        if not data or not problem_text:
            return {"matches": True, "correct_text": None}

        prompt = f"""Does the text "{problem_text}" accurately represent what you see in this image?

If the text matches exactly, respond with: "MATCHES"

If the text does NOT match, respond with ONLY the correct text from the image. Do not include any explanation, just the correct text."""

        reply = await complete(
            self.llm_client,
            [{
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {"type": "image_url", "image_url": {"url": _data_url(data, content_type)}},
                ],
            }],
            max_tokens=200,
            temperature=0.1,
            model=vision_model(),
        )

        if not reply or reply.upper() == "MATCHES" or reply.lower() == problem_text.lower():
            logger.debug("Image verification: text matches image")
            return {"matches": True, "correct_text": None}

        logger.info(f'Image verification mismatch: "{problem_text[:50]}" -> "{reply[:50]}"')
        return {"matches": False, "correct_text": reply}
