# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Anthropic API compatibility module for antigravity_router.

This module provides format translation between Anthropic's Messages API
and the Google Generative AI format spoken by the Antigravity upstream,
for both batch responses and streamed events.

Usage:
    from antigravity_router.anthropic_compat import (
        AnthropicMessagesRequest,
        request_to_upstream,
        response_from_upstream,
        translate_stream,
    )
"""

from .models import (
    AnthropicTextBlock,
    AnthropicImageSource,
    AnthropicImageBlock,
    AnthropicThinkingBlock,
    AnthropicToolUseBlock,
    AnthropicToolResultBlock,
    AnthropicMessage,
    AnthropicTool,
    AnthropicThinkingConfig,
    AnthropicMessagesRequest,
    AnthropicUsage,
    AnthropicMessagesResponse,
    AnthropicModelInfo,
    AnthropicModelList,
)

from .translator import (
    anthropic_usage,
    extract_usage,
    request_to_upstream,
    response_from_upstream,
)

from .streaming import StreamingTranslator, format_sse_event, translate_stream

__all__ = [
    # Models
    "AnthropicTextBlock",
    "AnthropicImageSource",
    "AnthropicImageBlock",
    "AnthropicThinkingBlock",
    "AnthropicToolUseBlock",
    "AnthropicToolResultBlock",
    "AnthropicMessage",
    "AnthropicTool",
    "AnthropicThinkingConfig",
    "AnthropicMessagesRequest",
    "AnthropicUsage",
    "AnthropicMessagesResponse",
    "AnthropicModelInfo",
    "AnthropicModelList",
    # Translator functions
    "anthropic_usage",
    "extract_usage",
    "request_to_upstream",
    "response_from_upstream",
    # Streaming
    "StreamingTranslator",
    "format_sse_event",
    "translate_stream",
]
