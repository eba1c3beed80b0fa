from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
import logging
import time

from config import settings
from db.database import init_db
from routers import receipts, warranties

# ── Logging setup ─────────────────────────────────────────────────────────────
LOG_LEVEL = settings.log_level.upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
# Quiet noisy libraries unless we're in DEBUG
if LOG_LEVEL != "DEBUG":
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("anthropic").setLevel(logging.WARNING)

logger = logging.getLogger("smartreceipts")

VERSION = "0.1.0"

app = FastAPI(
    title="Smart Receipts - Receipt Intake",
    description="Receipt OCR, AI structuring and validation, duplicate detection and warranty tracking",
    version=VERSION,
)

_cors_origins = settings.cors_origins.strip()
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins.split(",") if _cors_origins else ["*"],
    allow_credentials=bool(_cors_origins),  # only send credentials when origins are explicit
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(receipts.router,   prefix="/api/receipts",   tags=["receipts"])
app.include_router(warranties.router, prefix="/api/warranties", tags=["warranties"])


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    elapsed = (time.perf_counter() - start) * 1000
    if LOG_LEVEL == "DEBUG" or response.status_code >= 400:
        logger.log(
            logging.WARNING if response.status_code >= 400 else logging.DEBUG,
            "%s %s → %s (%.0fms)",
            request.method, request.url.path, response.status_code, elapsed,
        )
    return response


@app.on_event("startup")
async def on_startup():
    logger.info("Starting Smart Receipts v%s  LOG_LEVEL=%s  DB=%s", VERSION, LOG_LEVEL, settings.db_path)
    await init_db()


@app.get("/api/health")
async def health():
    return {"status": "ok", "version": VERSION}


@app.get("/api/diagnose")
async def diagnose():
    """Check that OCR engines and AI keys are usable (never exposes key material)."""
    import subprocess
    results = {}

    try:
        r = subprocess.run(["tesseract", "--version"], capture_output=True, text=True, timeout=5)
        results["tesseract"] = {"ok": r.returncode == 0, "version": r.stdout.split("\n")[0].strip()}
    except FileNotFoundError:
        results["tesseract"] = {"ok": False, "error": "tesseract binary not found in PATH"}
    except subprocess.SubprocessError as e:
        results["tesseract"] = {"ok": False, "error": str(e)}

    from services.ocr_service import HEIF_AVAILABLE, OCR_AVAILABLE
    results["pytesseract"] = {"ok": OCR_AVAILABLE}
    results["heic_support"] = {"ok": HEIF_AVAILABLE}

    results["google_vision_key"] = {"ok": bool(settings.google_vision_api_key)}
    results["anthropic_key"] = {"ok": bool(settings.anthropic_api_key)}
    results["validation_key"] = {"ok": bool(settings.effective_validation_key)}

    return {"all_ok": all(v.get("ok") for v in results.values()), "checks": results}
