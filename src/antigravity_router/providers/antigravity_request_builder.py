# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/antigravity_router/providers/antigravity_request_builder.py
"""
Assembles outbound Antigravity calls: envelope payload, headers and URLs.
"""

from typing import Any, Dict, Optional, Union

from ..anthropic_compat.models import AnthropicMessagesRequest, as_request_dict
from ..anthropic_compat.translator import request_to_upstream
from ..core.constants import ANTIGRAVITY_HEADERS, CLAUDE_INTERLEAVED_THINKING_BETA
from .antigravity_types import AntigravityRequest
from .antigravity_utils import (
    SignatureCache,
    SystemInstructionPolicy,
    IdentityPreamblePolicy,
    generate_request_id,
    get_model_family,
    is_thinking_model,
)

USER_AGENT_TAG = "antigravity"
REQUEST_TYPE = "agent"

JSON_CONTENT_TYPE = "application/json"
SSE_CONTENT_TYPE = "text/event-stream"


def build_headers(token: str, model: str, accept: str = JSON_CONTENT_TYPE) -> Dict[str, str]:
    """
    Headers for an upstream call.

    Claude thinking models additionally get the interleaved-thinking beta
    header; a non-JSON ``accept`` is sent explicitly.
    """
    headers = {
        "Authorization": f"Bearer {token}",
        "Content-Type": JSON_CONTENT_TYPE,
        **ANTIGRAVITY_HEADERS,
    }
    if get_model_family(model) == "claude" and is_thinking_model(model):
        headers["anthropic-beta"] = CLAUDE_INTERLEAVED_THINKING_BETA
    if accept != JSON_CONTENT_TYPE:
        headers["Accept"] = accept
    return headers


def uses_sse(model: str, stream: bool) -> bool:
    """
    Streaming calls always use SSE. Gemini thinking models only return
    their thought parts over SSE, so batch calls for them use it too and
    are accumulated afterwards.
    """
    return stream or (get_model_family(model) == "gemini" and is_thinking_model(model))


def generate_url(endpoint: str, sse: bool) -> str:
    if sse:
        return f"{endpoint}/v1internal:streamGenerateContent?alt=sse"
    return f"{endpoint}/v1internal:generateContent"


class RequestBuilder:
    """
    Builds the Antigravity envelope around a translated request body.

    Usage:
        builder = RequestBuilder(signature_cache)
        payload = builder.build_payload(request, project_id)
    """

    def __init__(
        self,
        signature_cache: Optional[SignatureCache] = None,
        system_policy: Optional[SystemInstructionPolicy] = None,
    ):
        self.signature_cache = signature_cache
        self.system_policy = system_policy or IdentityPreamblePolicy()

    def build_payload(
        self,
        request: Union[AnthropicMessagesRequest, Dict[str, Any]],
        project_id: str,
    ) -> AntigravityRequest:
        data = as_request_dict(request)
        body = request_to_upstream(data, self.signature_cache, self.system_policy)
        return {
            "project": project_id,
            "model": data.get("model", ""),
            "request": body,
            "userAgent": USER_AGENT_TAG,
            "requestType": REQUEST_TYPE,
            "requestId": generate_request_id(),
        }

    def build_headers(self, token: str, model: str, sse: bool = False) -> Dict[str, str]:
        return build_headers(token, model, SSE_CONTENT_TYPE if sse else JSON_CONTENT_TYPE)
