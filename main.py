# FILE: main.py
"""
Chat Router - FastAPI Application
Version: 0.3.0

Features:
- /routing/resolve: chat message -> canonical command (dry run, no execution)
- Router metrics and cache maintenance
- Classifier threshold / weight tuning at runtime
- A/B experiments over classifier parameters
"""
import os
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

# Load .env FIRST so the router config sees it
load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

from chatrouter import __version__
from chatrouter.admin import router as routing_router
from chatrouter.routing import get_router

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Chat Router",
    version=__version__,
    description="Routes chat messages to bot commands",
)

# ====== CORS ======

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://localhost:8000",
        "http://127.0.0.1:5173",
        "http://127.0.0.1:8000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ====== STARTUP ======

@app.on_event("startup")
def on_startup():
    smart_router = get_router()
    persistence = smart_router.config.persistence
    if persistence.data_dir:
        logger.info(f"[startup] Persistence: [OK] {persistence.data_dir}")
    else:
        logger.info("[startup] Persistence: [X] CHATROUTER_DATA_DIR not set, state is in-memory only")
    cache = smart_router.get_cache_stats()
    logger.info(f"[startup] Route cache: enabled={cache.get('enabled')} max_size={cache.get('max_size')}")


# ====== ROUTERS ======

app.include_router(routing_router)


# ====== PUBLIC ENDPOINTS ======

@app.get("/health")
def health():
    """Health check (public)."""
    return {"status": "ok", "version": __version__}
