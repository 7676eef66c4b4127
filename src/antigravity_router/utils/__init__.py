# src/antigravity_router/utils/__init__.py

from .credential_formatter import mask_credential
from .time_utils import format_duration, now_ms

__all__ = ["mask_credential", "format_duration", "now_ms"]
