"""
OCR Service - turns a receipt image into raw text.

Engines are an ordered list of strategies: Google Cloud Vision first (network,
needs an API key), then local Tesseract.  Each engine either returns text or
raises; the next engine runs only after the previous one has failed.  Every
failure is logged and kept on the result as an EngineAttempt for diagnostics.
"""
import asyncio
import base64
import io
import logging
import re
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Sequence

import httpx

from config import Settings, settings as default_settings
from models.schemas import EngineAttempt, OCRQuality, OCRResult, RawCapture
from services.errors import EngineUnavailable, FileTooLarge, InvalidFileType, NoTextDetected

logger = logging.getLogger("smartreceipts.ocr")

try:
    import pytesseract
    from PIL import Image, ImageEnhance, ImageFilter, ImageOps
    OCR_AVAILABLE = True
except ImportError:
    OCR_AVAILABLE = False
    logger.warning("pytesseract/Pillow not available - local OCR disabled")

# Register HEIC/HEIF support via pillow-heif if available
try:
    from pillow_heif import register_heif_opener
    register_heif_opener()
    HEIF_AVAILABLE = True
except ImportError:
    HEIF_AVAILABLE = False
    logger.info("pillow-heif not installed - HEIC files will not be supported")


# ── Input checks ──────────────────────────────────────────────────────────────

def check_capture(capture: RawCapture, max_bytes: int) -> None:
    """Raise InvalidFileType / FileTooLarge before any engine is touched."""
    if not (capture.content_type or "").lower().startswith("image/"):
        raise InvalidFileType()
    if len(capture.data) > max_bytes:
        raise FileTooLarge()


def preprocess_image(image: "Image.Image") -> "Image.Image":
    """
    Improve Tesseract accuracy on phone photos of receipts:
    - Convert to grayscale
    - Upscale if small
    - Invert dark-background bands (white-on-black totals)
    - Enhance contrast and sharpen
    """
    import numpy as np

    img = image.convert("L")

    w, h = img.size
    if w < 800:
        scale = 800 / w
        img = img.resize((int(w * scale), int(h * scale)), Image.LANCZOS)

    # Bands with a mean below 80 are mostly dark; flip them to black-on-white.
    arr = np.array(img)
    band_height = max(1, arr.shape[0] // 40)
    for y in range(0, arr.shape[0], band_height):
        band = arr[y:y + band_height, :]
        if band.mean() < 80:
            arr[y:y + band_height, :] = 255 - band
    img = Image.fromarray(arr)

    img = ImageEnhance.Contrast(img).enhance(2.0)
    img = img.filter(ImageFilter.SHARPEN)
    return img


# ── Engines ───────────────────────────────────────────────────────────────────

class OCREngineStrategy(Protocol):
    name: str

    async def recognize(self, image_bytes: bytes) -> tuple[str, float]:
        """Return (text, confidence 0–100) or raise."""
        ...


class GoogleVisionEngine:
    """Cloud Vision TEXT_DETECTION over REST."""

    name = "google_vision"

    def __init__(self, cfg: Settings, http_client: Optional[httpx.AsyncClient] = None):
        self.api_key = cfg.google_vision_api_key
        self.endpoint = cfg.google_vision_endpoint
        self.timeout = cfg.ocr_timeout_seconds
        self._http = http_client

    async def _post(self, payload: dict) -> httpx.Response:
        params = {"key": self.api_key}
        if self._http is not None:
            return await self._http.post(self.endpoint, params=params, json=payload, timeout=self.timeout)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(self.endpoint, params=params, json=payload)

    async def recognize(self, image_bytes: bytes) -> tuple[str, float]:
        if not self.api_key:
            raise EngineUnavailable("Google Vision API key not configured")

        payload = {
            "requests": [{
                "image": {"content": base64.standard_b64encode(image_bytes).decode()},
                "features": [{"type": "TEXT_DETECTION"}],
            }]
        }
        try:
            resp = await self._post(payload)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise EngineUnavailable(f"Google Vision request failed: {e}") from e

        responses = resp.json().get("responses") or [{}]
        first = responses[0]
        if first.get("error"):
            raise EngineUnavailable(f"Google Vision error: {first['error'].get('message', 'unknown')}")

        annotation = first.get("fullTextAnnotation") or {}
        text = annotation.get("text")
        if text is None:
            detections = first.get("textAnnotations") or []
            text = detections[0].get("description", "") if detections else ""

        page_conf = [p["confidence"] for p in annotation.get("pages", []) if "confidence" in p]
        confidence = (sum(page_conf) / len(page_conf)) if page_conf else 0.9
        return text, round(confidence * 100, 1)


class TesseractEngine:
    """Local pytesseract pass; blocking, so it runs in a worker thread."""

    name = "tesseract"

    def __init__(self, cfg: Settings):
        self.config = cfg.tesseract_config

    def _recognize_sync(self, image_bytes: bytes) -> tuple[str, float]:
        if not OCR_AVAILABLE:
            raise EngineUnavailable("OCR dependencies not installed (pytesseract, Pillow)")
        try:
            image = Image.open(io.BytesIO(image_bytes))
            image = ImageOps.exif_transpose(image)
        except Exception as e:
            msg = str(e)
            if not HEIF_AVAILABLE and ("heif" in msg.lower() or "heic" in msg.lower()):
                raise EngineUnavailable("HEIC/HEIF files require pillow-heif") from e
            raise EngineUnavailable(f"Cannot open image: {msg}") from e

        if image.mode not in ("RGB", "L", "RGBA"):
            image = image.convert("RGB")
        processed = preprocess_image(image)

        try:
            data = pytesseract.image_to_data(
                processed, config=self.config, output_type=pytesseract.Output.DICT,
            )
        except pytesseract.TesseractNotFoundError as e:
            raise EngineUnavailable("tesseract binary not found in PATH") from e

        text = pytesseract.image_to_string(processed, config=self.config)
        # conf is -1 for layout rows that carry no word
        confs = [float(c) for c, w in zip(data.get("conf", []), data.get("text", []))
                 if str(w).strip() and float(c) >= 0]
        confidence = sum(confs) / len(confs) if confs else 0.0
        return text.strip(), round(confidence, 1)

    async def recognize(self, image_bytes: bytes) -> tuple[str, float]:
        return await asyncio.to_thread(self._recognize_sync, image_bytes)


# ── Service ───────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class OCROptions:
    """
    Per-call overrides for extract_text.

    ``engine`` restricts the run to one named engine instead of the whole
    fallback chain, ``timeout_seconds`` replaces the configured per-engine
    timeout, and ``on_progress(percent, step)`` is called as engines run.
    """
    engine: Optional[str] = None
    timeout_seconds: Optional[float] = None
    on_progress: Optional[Callable[[int, str], None]] = None


class OCRService:
    def __init__(
        self,
        cfg: Settings = default_settings,
        engines: Optional[Sequence[OCREngineStrategy]] = None,
    ):
        self.settings = cfg
        self.engines = list(engines) if engines is not None else [
            GoogleVisionEngine(cfg),
            TesseractEngine(cfg),
        ]

    async def extract_text(self, capture: RawCapture, options: Optional[OCROptions] = None) -> OCRResult:
        options = options or OCROptions()
        timeout = options.timeout_seconds or self.settings.ocr_timeout_seconds
        start = time.monotonic()

        def elapsed() -> int:
            return int((time.monotonic() - start) * 1000)

        def progress(percent: int, step: str) -> None:
            if options.on_progress:
                options.on_progress(percent, step)

        try:
            check_capture(capture, self.settings.max_upload_bytes)
        except (InvalidFileType, FileTooLarge) as e:
            return OCRResult(confidence=0, error=str(e), processing_time_ms=elapsed())

        chain = [(i, e) for i, e in enumerate(self.engines) if options.engine in (None, e.name)]
        if not chain:
            return OCRResult(
                confidence=0,
                error=f"Unsupported OCR engine: {options.engine}",
                processing_time_ms=elapsed(),
            )

        attempts: list[EngineAttempt] = []
        for step, (position, engine) in enumerate(chain):
            progress(10 + 80 * step // len(chain), f"Running {engine.name} OCR")
            try:
                text, confidence = await asyncio.wait_for(engine.recognize(capture.data), timeout=timeout)
                if not text or not text.strip():
                    raise NoTextDetected()
            except asyncio.TimeoutError:
                reason = f"{engine.name} timed out after {timeout:.0f}s"
                logger.warning("OCR engine %s failed: %s", engine.name, reason)
                attempts.append(EngineAttempt(engine=engine.name, error=reason))
                continue
            except Exception as e:
                logger.warning("OCR engine %s failed (%s): %s", engine.name, type(e).__name__, e)
                attempts.append(EngineAttempt(engine=engine.name, error=str(e)))
                continue

            logger.info("OCR via %s: %d chars, confidence %.1f", engine.name, len(text), confidence)
            progress(100, "OCR complete")
            return OCRResult(
                text=text.strip(),
                confidence=max(0.0, min(100.0, confidence)),
                engine="primary" if position == 0 else "fallback",
                processing_time_ms=elapsed(),
                attempts=attempts,
            )

        progress(100, "OCR failed")
        last_error = attempts[-1].error if attempts else "No OCR engine configured"
        return OCRResult(
            confidence=0,
            error=last_error,
            processing_time_ms=elapsed(),
            attempts=attempts,
        )


# ── Quality assessment ────────────────────────────────────────────────────────

ALPHA_RUN_RE = re.compile(r'[A-Za-z]{3,}')
CURRENCY_TOKEN_RE = re.compile(r'[$€£¥₹]\s?\d+|\d+[.,]\d{2}\b')
AMOUNT_SYMBOLS = set("$€£¥₹.,:-/%#@&()'\"+*")

MIN_TEXT_LENGTH = 20
MAX_NOISE_RATIO = 0.30
NONSTANDARD_SUGGESTION = "Receipt may not contain standard format"


def noise_ratio(text: str) -> float:
    chars = [c for c in text if not c.isspace()]
    if not chars:
        return 1.0
    noise = sum(1 for c in chars if not c.isalnum() and c not in AMOUNT_SYMBOLS)
    return noise / len(chars)


def validate_ocr_result(result: OCRResult) -> OCRQuality:
    text = (result.text or "").strip()
    confidence = result.confidence

    if result.error or not text:
        return OCRQuality(
            is_valid=False,
            quality="failed",
            suggestions=[result.error or "No text could be extracted from the image"],
            confidence=0,
        )

    if confidence < 30:
        quality = "poor"
        suggestions = [
            "Consider retaking the photo with better lighting",
            "Ensure the receipt is flat and fully in frame",
        ]
    elif confidence < 60:
        quality = "good"
        suggestions = ["Try holding the camera steady for a sharper image"]
    else:
        quality = "excellent"
        suggestions = []

    # a receipt needs both words and at least one money amount
    looks_like_receipt = bool(ALPHA_RUN_RE.search(text)) and bool(CURRENCY_TOKEN_RE.search(text))
    if not looks_like_receipt or len(text) < MIN_TEXT_LENGTH or noise_ratio(text) > MAX_NOISE_RATIO:
        quality = "poor"
        if NONSTANDARD_SUGGESTION not in suggestions:
            suggestions.append(NONSTANDARD_SUGGESTION)

    return OCRQuality(
        is_valid=quality in ("excellent", "good"),
        quality=quality,
        suggestions=suggestions,
        confidence=confidence,
    )
