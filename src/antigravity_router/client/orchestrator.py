# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Request execution with retry, endpoint fallback and account rotation.

One code path serves batch and streaming calls: ``_execute`` is an async
generator yielding either a single Anthropic message (batch) or Anthropic
stream events. Per call:

1. Select an account (non-blocking); honour the throttle delay
2. Resolve token and project, build the payload
3. Try each endpoint, retrying rate limits with backoff
4. Report the outcome back to the AccountManager and strategy
5. Rotate to another account, or surface the error
"""

import asyncio
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Union

from ..accounts.config import RetryConfig
from ..accounts.manager import AccountManager
from ..accounts.types import Account, CooldownReason, SelectionResult
from ..anthropic_compat.models import AnthropicMessagesRequest, as_request_dict
from ..anthropic_compat.streaming import translate_stream
from ..anthropic_compat.translator import response_from_upstream
from ..core.constants import DEFAULT_COOLDOWN_MS
from ..core.errors import (
    AccountInvalidError,
    EmptyResponseError,
    ModelNotFoundError,
    NoCapacityError,
    RateLimitedError,
    UpstreamError,
)
from ..error_handler import classify_response, is_auth_error, is_rate_limit_error, is_server_error
from ..failure_logger import log_failure
from ..providers.antigravity_catalog import ModelValidityCache
from ..providers.antigravity_request_builder import RequestBuilder, generate_url, uses_sse
from ..providers.antigravity_transport import Transport, resolve_endpoints
from ..providers.antigravity_types import AntigravityRequest
from ..providers.antigravity_utils import SignatureCache
from ..stream_utils import accumulate_sse_response
from ..utils.credential_formatter import mask_credential
from ..utils.time_utils import format_duration

lib_logger = logging.getLogger("antigravity_router")

# Failures in a row after which a server-error cooldown is reported as such
CONSECUTIVE_FAILURE_THRESHOLD = 3

Request = Union[AnthropicMessagesRequest, Dict[str, Any]]


def _request_summary(payload: AntigravityRequest) -> Dict[str, Any]:
    body = payload.get("request") or {}
    return {
        "model": payload.get("model"),
        "project": payload.get("project"),
        "requestId": payload.get("requestId"),
        "sessionId": body.get("sessionId"),
        "contentsCount": len(body.get("contents") or []),
        "hasTools": bool(body.get("tools")),
    }


class RequestOrchestrator:
    """
    Ties selection, request building, transport and translation together.

    Args:
        accounts: AccountManager owning the pool
        transport: HTTP capability
        builder: RequestBuilder; its signature cache is shared with the
            response translators
        retry: Retry and wait bounds
        endpoint_preference: ``prod``, ``daily`` or ``auto``
        validity_cache: Optional model validity cache checked before the
            first upstream call
        default_cooldown_ms: Cooldown after an account exhausts every endpoint
            with server errors
        sleep: Injected for tests; defaults to ``asyncio.sleep``
    """

    def __init__(
        self,
        accounts: AccountManager,
        transport: Transport,
        builder: Optional[RequestBuilder] = None,
        retry: Optional[RetryConfig] = None,
        endpoint_preference: str = "auto",
        validity_cache: Optional[ModelValidityCache] = None,
        default_cooldown_ms: float = DEFAULT_COOLDOWN_MS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.accounts = accounts
        self.transport = transport
        self.builder = builder or RequestBuilder(SignatureCache())
        self.retry = retry or RetryConfig()
        self.endpoint_preference = endpoint_preference
        self.validity_cache = validity_cache
        self.default_cooldown_ms = default_cooldown_ms
        self._sleep = sleep

    @property
    def signature_cache(self) -> Optional[SignatureCache]:
        return self.builder.signature_cache

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def send_message(self, request: Request) -> Dict[str, Any]:
        """Batch call; returns a complete Anthropic message."""
        message: Dict[str, Any] = {}
        # Drain fully so the success notification runs
        async for message in self._execute(request, stream=False):
            pass
        return message

    async def stream_message(self, request: Request) -> AsyncIterator[Dict[str, Any]]:
        """
        Streaming call; yields Anthropic stream events.

        Errors before the first event are retried like batch calls. Once an
        event has been yielded the call is committed to that account and any
        later failure is raised to the caller.
        """
        async for event in self._execute(request, stream=True):
            yield event

    # =========================================================================
    # ACCOUNT LOOP
    # =========================================================================

    def _capacity_wait_ms(self, model: str, selection: SelectionResult) -> float:
        """Shortest rate-limit or cooldown wait across valid accounts."""
        waits = []
        for account in self.accounts.accounts:
            if not account.enabled or self.accounts.rate_limits.is_invalid(account.email):
                continue
            wait = max(
                self.accounts.get_rate_limit_info(account.email, model).wait_ms,
                self.accounts.get_cooldown_remaining(account.email),
            )
            if wait > 0:
                waits.append(wait)
        return min(waits) if waits else selection.wait_ms

    def _has_alternative(self, account: Account, model: str) -> bool:
        return any(
            a.email != account.email and not self.accounts.rate_limits.is_cooling_down(a.email)
            for a in self.accounts.get_available_accounts(model)
        )

    async def _execute(self, request: Request, stream: bool) -> AsyncIterator[Any]:
        data = as_request_dict(request)
        model = data.get("model") or ""
        max_attempts = self.retry.max_account_attempts or max(1, self.accounts.get_account_count())

        attempts = 0
        empty_retries = 0
        waited_ms = 0.0
        last_error: Optional[Exception] = None

        while attempts < max_attempts:
            selection = self.accounts.select_account(model)
            account = selection.account

            if account is None:
                wait_ms = self._capacity_wait_ms(model, selection)
                if (
                    self.accounts.get_account_count()
                    and wait_ms > 0
                    and waited_ms + wait_ms <= self.retry.max_wait_ms
                ):
                    lib_logger.info(
                        f"No account available for {model}, waiting {format_duration(wait_ms)}"
                    )
                    waited_ms += wait_ms
                    await self._sleep(wait_ms / 1000)
                    continue
                raise NoCapacityError(model, wait_ms, selection.reason or "") from last_error

            if selection.wait_ms:
                await self._sleep(selection.wait_ms / 1000)

            attempts += 1
            emitted = False
            summary: Dict[str, Any] = {"model": model}
            try:
                async for item in self._attempt(account, data, model, stream, summary):
                    emitted = True
                    yield item
                self.accounts.notify_success(account, model)
                return

            except EmptyResponseError as e:
                last_error = e
                log_failure(account.email, model, attempts, e, summary)
                self.accounts.notify_failure(account, model)
                if empty_retries >= self.retry.max_empty_response_retries:
                    raise
                empty_retries += 1
                attempts -= 1
                lib_logger.warning(
                    f"Empty response from {mask_credential(account.email)}, retrying "
                    f"({empty_retries}/{self.retry.max_empty_response_retries})"
                )

            except RateLimitedError as e:
                last_error = e
                log_failure(account.email, model, attempts, e, summary)
                self.accounts.mark_rate_limited(account.email, model, e.reset_ms)
                self.accounts.notify_rate_limit(account, model)
                if emitted:
                    raise

            except AccountInvalidError as e:
                last_error = e
                log_failure(account.email, model, attempts, e, summary)
                self.accounts.mark_invalid(account.email, e.reason)
                self.accounts.notify_failure(account, model)
                if emitted:
                    raise

            except UpstreamError as e:
                last_error = e
                log_failure(account.email, model, attempts, e, summary)
                if not is_server_error(e):
                    raise
                self.accounts.notify_failure(account, model)
                self._cool_down(account)
                if emitted:
                    raise

            except Exception:
                # Nothing completed upstream, e.g. an unknown model
                if not emitted:
                    self.accounts.notify_abandoned(account, model)
                raise

        if is_rate_limit_error(last_error):
            raise NoCapacityError(
                model, self.accounts.get_min_wait_time_ms(model), str(last_error)
            ) from last_error
        if last_error is not None:
            raise last_error
        raise NoCapacityError(model, 0, "no attempt was made")

    def _cool_down(self, account: Account) -> None:
        failures = self.accounts.increment_consecutive_failures(account.email)
        reason = (
            CooldownReason.CONSECUTIVE_FAILURES
            if failures >= CONSECUTIVE_FAILURE_THRESHOLD
            else CooldownReason.SERVER_ERROR
        )
        self.accounts.mark_cooling_down(account.email, self.default_cooldown_ms, reason)

    async def _attempt(
        self,
        account: Account,
        data: Dict[str, Any],
        model: str,
        stream: bool,
        summary: Dict[str, Any],
    ) -> AsyncIterator[Any]:
        """
        One account attempt. An auth rejection refreshes the token once;
        a second one marks the credential invalid.
        """
        token = await self.accounts.get_token_for_account(account)
        project_id = await self.accounts.get_project_for_account(account, token)

        if self.validity_cache is not None:
            if not await self.validity_cache.is_valid_model(model, token, project_id):
                raise ModelNotFoundError(model)

        payload = self.builder.build_payload(data, project_id)
        summary.update(_request_summary(payload))

        refreshed = False
        while True:
            try:
                async for item in self._call_endpoints(account, model, payload, token, stream):
                    yield item
                return
            except (AccountInvalidError, UpstreamError) as e:
                if not (isinstance(e, AccountInvalidError) or is_auth_error(e)):
                    raise
                if refreshed:
                    if isinstance(e, AccountInvalidError):
                        raise
                    raise AccountInvalidError(
                        account.email, f"credential rejected ({e.status_code})"
                    ) from e
                refreshed = True
                lib_logger.warning(
                    f"Credential rejected for {mask_credential(account.email)}, refreshing token"
                )
                self.accounts.clear_token_cache(account.email)
                token = await self.accounts.get_token_for_account(account)

    # =========================================================================
    # ENDPOINT LOOP
    # =========================================================================

    async def _call_endpoints(
        self,
        account: Account,
        model: str,
        payload: AntigravityRequest,
        token: str,
        stream: bool,
    ) -> AsyncIterator[Any]:
        sse = uses_sse(model, stream)
        headers = self.builder.build_headers(token, model, sse)
        last_error: Exception = UpstreamError("No endpoints available")

        for endpoint in resolve_endpoints(self.endpoint_preference):
            url = generate_url(endpoint, sse)
            for retry_attempt in range(self.retry.max_retries + 1):
                emitted = False
                try:
                    if stream:
                        async for event in self._stream_once(account, model, url, headers, payload):
                            emitted = True
                            yield event
                    else:
                        yield await self._request_once(account, model, url, headers, payload, sse)
                    return

                except RateLimitedError as e:
                    last_error = e
                    if emitted or self._has_alternative(account, model):
                        raise
                    if retry_attempt >= self.retry.max_retries:
                        break
                    delay = self.retry.backoff_ms(retry_attempt, e.reset_ms)
                    if delay > self.retry.max_wait_ms:
                        lib_logger.warning(
                            f"Rate limit delay {format_duration(delay)} at {endpoint} "
                            f"is too long, not retrying"
                        )
                        break
                    lib_logger.warning(
                        f"Rate limited at {endpoint}, retry {retry_attempt + 1}/"
                        f"{self.retry.max_retries} in {format_duration(delay)}"
                    )
                    await self._sleep(delay / 1000)

                except UpstreamError as e:
                    if emitted or not is_server_error(e):
                        raise
                    last_error = e
                    lib_logger.warning(f"Endpoint {endpoint} failed: {e}")
                    break

        raise last_error

    async def _request_once(
        self,
        account: Account,
        model: str,
        url: str,
        headers: Dict[str, str],
        payload: AntigravityRequest,
        sse: bool,
    ) -> Dict[str, Any]:
        response = await self.transport.request("POST", url, headers, payload)
        error = classify_response(response.status_code, response.text, response.headers, account.email)
        if error is not None:
            raise error

        if sse:
            upstream = accumulate_sse_response(response.text.splitlines())
        else:
            try:
                upstream = response.json()
            except ValueError as e:
                raise UpstreamError(f"Invalid JSON from upstream: {e}") from e
        return response_from_upstream(upstream, model, self.signature_cache)

    async def _stream_once(
        self,
        account: Account,
        model: str,
        url: str,
        headers: Dict[str, str],
        payload: AntigravityRequest,
    ) -> AsyncIterator[Dict[str, Any]]:
        async with self.transport.stream("POST", url, headers, payload) as response:
            if not 200 <= response.status_code < 300:
                text = await response.read_text()
                error = classify_response(response.status_code, text, response.headers, account.email)
                if error is not None:
                    raise error
            async for event in translate_stream(response.aiter_text(), model, self.signature_cache):
                yield event
