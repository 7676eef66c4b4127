# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from .client import AntigravityClient
from .accounts import Account, AccountManager, RouterConfig, SingleAccountManager
from .anthropic_compat import (
    AnthropicMessagesRequest,
    AnthropicMessagesResponse,
    StreamingTranslator,
)

__all__ = [
    "AntigravityClient",
    "Account",
    "AccountManager",
    "RouterConfig",
    "SingleAccountManager",
    # Anthropic compatibility
    "AnthropicMessagesRequest",
    "AnthropicMessagesResponse",
    "StreamingTranslator",
]
