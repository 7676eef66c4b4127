# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Format translation between Anthropic Messages API and the Google
Generative AI format used by the Antigravity upstream (batch mode).

Anthropic -> Google:
    messages (user/assistant)   -> contents (user/model)
    text / image / tool_use     -> text / inlineData / functionCall
    tool_result                 -> functionResponse
    signed thinking             -> thought part with thoughtSignature
    system                      -> systemInstruction (via policy)

Google -> Anthropic:
    thought / text / functionCall / inlineData parts
                                -> thinking / text / tool_use / image blocks
"""

import json
import logging
from typing import Any, Dict, List, Optional, Tuple, Union

from ..core.constants import GEMINI_MAX_OUTPUT_TOKENS
from ..core.errors import EmptyResponseError, MalformedChunkError
from ..providers.antigravity_types import GeminiPart, GeminiRequest, UsageSummary
from ..providers.antigravity_utils import (
    SignatureCache,
    SystemInstructionPolicy,
    IdentityPreamblePolicy,
    derive_session_id_from_messages,
    generate_message_id,
    generate_tool_use_id,
    get_model_family,
    is_thinking_model,
    is_valid_signature,
)
from ..stream_utils import split_chunk, unwrap_response
from .models import AnthropicMessagesRequest, as_request_dict

logger = logging.getLogger("antigravity_router.anthropic_compat")

FINISH_REASON_MAP = {
    "STOP": "end_turn",
    "MAX_TOKENS": "max_tokens",
}

TOOL_CHOICE_MODES = {
    "auto": "AUTO",
    "any": "ANY",
    "tool": "ANY",
    "none": "NONE",
}


# =============================================================================
# REQUEST: ANTHROPIC -> GOOGLE
# =============================================================================


def _system_texts(system: Union[str, List[Dict[str, Any]], None]) -> List[str]:
    if not system:
        return []
    if isinstance(system, str):
        return [system]
    return [
        block.get("text", "")
        for block in system
        if isinstance(block, dict) and block.get("type", "text") == "text" and block.get("text")
    ]


def _tool_result_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        texts = []
        for block in content:
            if isinstance(block, dict) and block.get("type") == "text":
                texts.append(block.get("text", ""))
            elif isinstance(block, str):
                texts.append(block)
        return "\n".join(texts)
    if content is None:
        return ""
    return json.dumps(content)


def _convert_block(
    block: Dict[str, Any],
    model_family: str,
    tool_names: Dict[str, str],
    signature_cache: Optional[SignatureCache],
) -> Optional[GeminiPart]:
    """Convert one Anthropic content block, or None to drop it."""
    block_type = block.get("type")

    if block_type == "text":
        text = block.get("text", "")
        return {"text": text} if text else None

    if block_type == "image":
        source = block.get("source") or {}
        if source.get("type") != "base64":
            logger.debug(f"Dropping image block with unsupported source: {source.get('type')}")
            return None
        return {"inlineData": {"mimeType": source.get("media_type", ""), "data": source.get("data", "")}}

    if block_type == "tool_use":
        tool_id = block.get("id") or generate_tool_use_id()
        tool_names[tool_id] = block.get("name", "")
        part: GeminiPart = {
            "functionCall": {
                "id": tool_id,
                "name": block.get("name", ""),
                "args": block.get("input") or {},
            }
        }
        signature = block.get("thoughtSignature")
        if not is_valid_signature(signature) and signature_cache is not None:
            signature = signature_cache.get_tool_signature(tool_id)
        if is_valid_signature(signature):
            part["thoughtSignature"] = signature
        return part

    if block_type == "tool_result":
        tool_use_id = block.get("tool_use_id", "")
        text = _tool_result_text(block.get("content"))
        response = {"error": text} if block.get("is_error") else {"result": text}
        return {
            "functionResponse": {
                "id": tool_use_id,
                "name": tool_names.get(tool_use_id, tool_use_id),
                "response": response,
            }
        }

    if block_type == "thinking":
        signature = block.get("signature")
        if not is_valid_signature(signature):
            logger.debug("Dropping unsigned thinking block")
            return None
        if signature_cache is not None:
            family = signature_cache.get_signature_family(signature)
            if family is not None and family != model_family:
                logger.debug(
                    f"Dropping thinking block signed by {family} for {model_family} model"
                )
                return None
        return {"thought": True, "text": block.get("thinking", ""), "thoughtSignature": signature}

    # redacted_thinking and unknown block types have no upstream equivalent
    return None


def _convert_messages(
    messages: List[Dict[str, Any]],
    model_family: str,
    signature_cache: Optional[SignatureCache],
) -> List[Dict[str, Any]]:
    contents = []
    tool_names: Dict[str, str] = {}
    for message in messages:
        role = "model" if message.get("role") == "assistant" else "user"
        content = message.get("content")
        if isinstance(content, str):
            parts: List[GeminiPart] = [{"text": content}] if content else []
        else:
            parts = []
            for block in content or []:
                if not isinstance(block, dict):
                    continue
                part = _convert_block(block, model_family, tool_names, signature_cache)
                if part is not None:
                    parts.append(part)
        if parts:
            contents.append({"role": role, "parts": parts})
    return contents


def _generation_config(request: Dict[str, Any], model: str) -> Dict[str, Any]:
    config: Dict[str, Any] = {}
    max_tokens = request.get("max_tokens")
    if max_tokens is not None:
        if get_model_family(model) == "gemini":
            max_tokens = min(max_tokens, GEMINI_MAX_OUTPUT_TOKENS)
        config["maxOutputTokens"] = max_tokens
    if request.get("temperature") is not None:
        config["temperature"] = request["temperature"]
    if request.get("top_p") is not None:
        config["topP"] = request["top_p"]
    if request.get("top_k") is not None:
        config["topK"] = request["top_k"]
    if request.get("stop_sequences"):
        config["stopSequences"] = list(request["stop_sequences"])

    thinking = request.get("thinking") or {}
    if is_thinking_model(model) and thinking.get("type") != "disabled":
        thinking_config: Dict[str, Any] = {"includeThoughts": True}
        if thinking.get("budget_tokens"):
            thinking_config["thinkingBudget"] = thinking["budget_tokens"]
        config["thinkingConfig"] = thinking_config
    return config


def _convert_tools(tools: Optional[List[Dict[str, Any]]]) -> Optional[List[Dict[str, Any]]]:
    if not tools:
        return None
    declarations = []
    for tool in tools:
        declaration = {
            "name": tool.get("name", ""),
            "parametersJsonSchema": tool.get("input_schema") or {"type": "object"},
        }
        if tool.get("description"):
            declaration["description"] = tool["description"]
        declarations.append(declaration)
    return [{"functionDeclarations": declarations}]


def _convert_tool_choice(tool_choice: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not tool_choice:
        return None
    mode = TOOL_CHOICE_MODES.get(tool_choice.get("type", "auto"), "AUTO")
    config: Dict[str, Any] = {"mode": mode}
    if tool_choice.get("type") == "tool" and tool_choice.get("name"):
        config["allowedFunctionNames"] = [tool_choice["name"]]
    return {"functionCallingConfig": config}


def request_to_upstream(
    request: Union[AnthropicMessagesRequest, Dict[str, Any]],
    signature_cache: Optional[SignatureCache] = None,
    system_policy: Optional[SystemInstructionPolicy] = None,
) -> GeminiRequest:
    """
    Translate an Anthropic Messages request into the upstream request body.

    The result carries the system instruction built by ``system_policy``
    (identity preamble by default) and a session id derived from the first
    user message. The Antigravity envelope is added by RequestBuilder.

    Args:
        request: Anthropic request, as a model or a plain dict
        signature_cache: Used to restore stripped tool-call signatures and
            to drop thinking blocks signed by another model family
        system_policy: Builds the system instruction parts

    Returns:
        Upstream request body
    """
    data = as_request_dict(request)
    model = data.get("model", "")
    policy = system_policy or IdentityPreamblePolicy()

    body: GeminiRequest = {
        "contents": _convert_messages(
            data.get("messages") or [], get_model_family(model), signature_cache
        ),
    }

    generation_config = _generation_config(data, model)
    if generation_config:
        body["generationConfig"] = generation_config

    tools = _convert_tools(data.get("tools"))
    if tools:
        body["tools"] = tools
        tool_config = _convert_tool_choice(data.get("tool_choice"))
        if tool_config:
            body["toolConfig"] = tool_config

    system_parts = policy.build_parts(_system_texts(data.get("system")))
    if system_parts:
        body["systemInstruction"] = {"role": "user", "parts": system_parts}

    body["sessionId"] = derive_session_id_from_messages(data.get("messages"))
    return body


# =============================================================================
# RESPONSE: GOOGLE -> ANTHROPIC
# =============================================================================


def extract_usage(response: Dict[str, Any]) -> Optional[UsageSummary]:
    """Token counts from ``usageMetadata``, or None if absent."""
    usage = unwrap_response(response or {}).get("usageMetadata")
    if not usage or not isinstance(usage, dict):
        return None
    return {
        "prompt_tokens": usage.get("promptTokenCount"),
        "output_tokens": usage.get("candidatesTokenCount"),
        "cached_tokens": usage.get("cachedContentTokenCount"),
    }


def anthropic_usage(usage: Optional[UsageSummary]) -> Dict[str, int]:
    """
    Anthropic usage block.

    The upstream counts cache hits inside the prompt count, so they are
    subtracted from ``input_tokens``.
    """
    prompt = (usage or {}).get("prompt_tokens") or 0
    output = (usage or {}).get("output_tokens") or 0
    cached = (usage or {}).get("cached_tokens") or 0
    return {
        "input_tokens": prompt - cached,
        "output_tokens": output,
        "cache_read_input_tokens": cached,
        "cache_creation_input_tokens": 0,
    }


def _convert_parts(
    parts: List[Dict[str, Any]],
    model: str,
    signature_cache: Optional[SignatureCache],
) -> Tuple[List[Dict[str, Any]], bool]:
    blocks: List[Dict[str, Any]] = []
    has_tool_call = False
    for part in parts:
        if not isinstance(part, dict):
            continue
        if part.get("thought") is True:
            signature = part.get("thoughtSignature") or ""
            if is_valid_signature(signature) and signature_cache is not None:
                signature_cache.cache_thinking_signature(signature, get_model_family(model))
            blocks.append({"type": "thinking", "thinking": part.get("text", ""), "signature": signature})
        elif isinstance(part.get("functionCall"), dict):
            call = part["functionCall"]
            tool_id = call.get("id") or generate_tool_use_id()
            block = {
                "type": "tool_use",
                "id": tool_id,
                "name": call.get("name", ""),
                "input": call.get("args") or {},
            }
            signature = part.get("thoughtSignature")
            if is_valid_signature(signature):
                block["thoughtSignature"] = signature
                if signature_cache is not None:
                    signature_cache.cache_tool_signature(tool_id, signature)
            blocks.append(block)
            has_tool_call = True
        elif "text" in part:
            # Empty text is noise; whitespace-only text is spacing
            if part["text"] == "":
                continue
            blocks.append({"type": "text", "text": part["text"]})
        elif isinstance(part.get("inlineData"), dict):
            inline = part["inlineData"]
            blocks.append(
                {
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": inline.get("mimeType", ""),
                        "data": inline.get("data", ""),
                    },
                }
            )
    return blocks, has_tool_call


def response_from_upstream(
    response: Dict[str, Any],
    original_model: str,
    signature_cache: Optional[SignatureCache] = None,
) -> Dict[str, Any]:
    """
    Translate an upstream response into an Anthropic message.

    Raises:
        EmptyResponseError: if the first candidate yields no content block
    """
    inner = unwrap_response(response or {})
    try:
        _, parts, finish_reason = split_chunk(inner)
    except MalformedChunkError as e:
        logger.warning(f"Malformed upstream response: {e}")
        parts, finish_reason = [], None

    blocks, has_tool_call = _convert_parts(parts, original_model, signature_cache)
    if not blocks:
        raise EmptyResponseError("No content parts received from API")

    if has_tool_call:
        stop_reason = "tool_use"
    else:
        stop_reason = FINISH_REASON_MAP.get(finish_reason or "STOP", "end_turn")

    return {
        "id": generate_message_id(),
        "type": "message",
        "role": "assistant",
        "content": blocks,
        "model": original_model,
        "stop_reason": stop_reason,
        "stop_sequence": None,
        "usage": anthropic_usage(extract_usage(inner)),
    }
