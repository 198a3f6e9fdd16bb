"""
FastAPI application exposing the allocation engine.

Run with:
    uvicorn merch_allocation.api:app --reload
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from merch_allocation import __version__
from merch_allocation.api_allocation import router as allocation_router

logger = logging.getLogger(__name__)

app = FastAPI(title="Merchandising Allocation Engine", version=__version__)
app.include_router(allocation_router)
logger.info("Allocation API loaded")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health() -> Dict[str, Any]:
    return {"status": "ok", "version": __version__}
