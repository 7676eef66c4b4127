# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/antigravity_router/providers/antigravity_types.py
"""
Type definitions for the Antigravity (Cloud Code) wire format.

Provides TypedDict definitions for the nested request/response structures
exchanged with the upstream, to improve type safety and IDE support.
"""

from typing import Any, Dict, List, Literal, Optional, TypedDict


# =============================================================================
# GEMINI API TYPES
# =============================================================================


class GeminiPart(TypedDict, total=False):
    """Single part of a Gemini content message."""

    text: str
    inlineData: Dict[str, str]
    functionCall: Dict[str, Any]
    functionResponse: Dict[str, Any]
    thought: bool
    thoughtSignature: str


class GeminiContent(TypedDict):
    """Gemini content message with role and parts."""

    role: Literal["user", "model"]
    parts: List[GeminiPart]


class SystemInstruction(TypedDict):
    """System instruction for Gemini API."""

    role: Literal["user"]
    parts: List[GeminiPart]


class ThinkingConfig(TypedDict, total=False):
    """Thinking configuration for models with reasoning capabilities."""

    thinkingBudget: int
    includeThoughts: bool


class GenerationConfig(TypedDict, total=False):
    """Generation configuration for Gemini API."""

    topP: float
    topK: int
    temperature: float
    maxOutputTokens: int
    stopSequences: List[str]
    thinkingConfig: ThinkingConfig


class ToolDeclaration(TypedDict, total=False):
    """Tool declaration for function calling."""

    name: str
    description: str
    parametersJsonSchema: Dict[str, Any]


class Tool(TypedDict):
    """Tool container for Gemini API."""

    functionDeclarations: List[ToolDeclaration]


class GeminiRequest(TypedDict, total=False):
    """Translated request body, before the Antigravity envelope is added."""

    contents: List[GeminiContent]
    generationConfig: GenerationConfig
    tools: List[Tool]
    toolConfig: Dict[str, Any]
    systemInstruction: SystemInstruction
    sessionId: str


# =============================================================================
# ANTIGRAVITY ENVELOPE TYPES
# =============================================================================


class AntigravityRequest(TypedDict):
    """Antigravity request envelope structure."""

    project: str
    model: str
    request: GeminiRequest
    userAgent: str
    requestType: str
    requestId: str


# =============================================================================
# RESPONSE TYPES
# =============================================================================


class UsageMetadata(TypedDict, total=False):
    """Token usage metadata from Gemini API."""

    promptTokenCount: int
    candidatesTokenCount: int
    cachedContentTokenCount: int
    thoughtsTokenCount: int
    totalTokenCount: int


class GeminiCandidate(TypedDict, total=False):
    content: GeminiContent
    finishReason: str


class GeminiResponse(TypedDict, total=False):
    """Upstream response (batch) or one streamed chunk, after unwrapping."""

    candidates: List[GeminiCandidate]
    usageMetadata: UsageMetadata


class UsageSummary(TypedDict):
    """Normalized token counts extracted from usage metadata."""

    prompt_tokens: Optional[int]
    output_tokens: Optional[int]
    cached_tokens: Optional[int]


# =============================================================================
# MODEL CATALOG TYPES
# =============================================================================


class QuotaInfo(TypedDict, total=False):
    remainingFraction: Optional[float]
    resetTime: Optional[str]


class ModelInfo(TypedDict, total=False):
    displayName: str
    quotaInfo: QuotaInfo


class ModelCatalog(TypedDict, total=False):
    """Response of ``v1internal:fetchAvailableModels``."""

    models: Dict[str, ModelInfo]
