"""Model context lengths.

Used by the status updates to express token usage as a share of the model's
context window. Metadata comes from the OpenRouter model list (cached for an
hour) with a static table as fallback.
"""

import logging
import time
from typing import Any, Dict

import requests

logger = logging.getLogger(__name__)

OPENROUTER_MODELS_URL = "https://openrouter.ai/api/v1/models"

_model_metadata_cache: Dict[str, Dict[str, Any]] = {}
_model_metadata_cache_time: float = 0
_MODEL_CACHE_TTL = 3600

DEFAULT_CONTEXT_LENGTH = 128000

DEFAULT_CONTEXT_LENGTHS = {
    "anthropic/claude-opus-4": 200000,
    "anthropic/claude-sonnet-4": 200000,
    "anthropic/claude-haiku-4.5": 200000,
    "claude-3-7-sonnet": 200000,
    "openai/gpt-4o": 128000,
    "openai/gpt-4o-mini": 128000,
    "gpt-4o": 128000,
    "o3-mini": 200000,
    "google/gemini-2.5-pro": 1048576,
    "meta-llama/llama-3.3-70b-instruct": 131072,
    "deepseek/deepseek-chat-v3": 65536,
}


def fetch_model_metadata(force_refresh: bool = False, timeout: float = 10) -> Dict[str, Dict[str, Any]]:
    """Fetch model metadata from OpenRouter (cached for 1 hour)."""
    global _model_metadata_cache, _model_metadata_cache_time

    if not force_refresh and _model_metadata_cache and (time.time() - _model_metadata_cache_time) < _MODEL_CACHE_TTL:
        return _model_metadata_cache

    try:
        response = requests.get(OPENROUTER_MODELS_URL, timeout=timeout)
        response.raise_for_status()
        data = response.json()
    except (requests.RequestException, ValueError) as e:
        logger.warning("Failed to fetch model metadata from OpenRouter: %s", e)
        return _model_metadata_cache or {}

    models = data.get("data") if isinstance(data, dict) else None
    if not isinstance(models, list):
        logger.warning("Unexpected model list from OpenRouter: %s", type(data).__name__)
        return _model_metadata_cache or {}

    cache = {}
    for model in models:
        if not isinstance(model, dict):
            continue
        model_id = model.get("id", "")
        cache[model_id] = {
            "context_length": model.get("context_length", DEFAULT_CONTEXT_LENGTH),
            "name": model.get("name", model_id),
            "pricing": model.get("pricing", {}),
        }

    _model_metadata_cache = cache
    _model_metadata_cache_time = time.time()
    logger.debug("Fetched metadata for %s models from OpenRouter", len(cache))
    return cache


def get_model_context_length(model: str, offline: bool = False) -> int:
    """Context length for a model (API first unless offline, then the fallback table)."""
    if not offline:
        metadata = fetch_model_metadata()
        if model in metadata:
            return metadata[model].get("context_length", DEFAULT_CONTEXT_LENGTH)

    for known, length in DEFAULT_CONTEXT_LENGTHS.items():
        if known in model or model in known:
            return length
    return DEFAULT_CONTEXT_LENGTH

