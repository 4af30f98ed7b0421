"""Credential encryption."""

from .codec import SecretsCodec, derive_key

__all__ = ["SecretsCodec", "derive_key"]
