"""Gateway dialect adapters."""

from .base import ModelFetchResult, ProviderAdapter, normalize_models
from .registry import ADAPTERS, adapter_class, get_adapter

__all__ = ["ADAPTERS", "ModelFetchResult", "ProviderAdapter", "adapter_class", "get_adapter", "normalize_models"]
