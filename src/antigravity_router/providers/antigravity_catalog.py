# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/antigravity_router/providers/antigravity_catalog.py
"""
Model catalog, quota snapshots, subscription tier and project discovery.

All calls go through the ``Transport`` protocol and try every endpoint in
preference order before giving up.
"""

import asyncio
import hashlib
import logging
from typing import Any, Dict, List, Optional, Tuple

from ..accounts.types import Account, QuotaSnapshot
from ..anthropic_compat.models import AnthropicModelInfo, AnthropicModelList
from ..core.constants import (
    ANTIGRAVITY_DEFAULT_PROJECT_ID,
    CLIENT_METADATA,
    MODEL_VALIDATION_CACHE_TTL_MS,
    PROJECT_CACHE_TTL_MS,
)
from ..core.errors import AntigravityError, UpstreamError
from ..error_handler import format_error_snippet
from ..utils import time_utils
from ..utils.credential_formatter import mask_credential
from .antigravity_request_builder import build_headers
from .antigravity_transport import Transport, resolve_endpoints
from .antigravity_types import ModelCatalog
from .antigravity_utils import get_model_family

lib_logger = logging.getLogger("antigravity_router")

ONBOARD_MAX_ATTEMPTS = 5
ONBOARD_POLL_DELAY_S = 2.0
DEFAULT_TIER_ID = "free-tier"


def is_supported_model(model_id: str) -> bool:
    return get_model_family(model_id) in ("claude", "gemini")


def parse_tier_id(tier_id: Optional[str]) -> str:
    """Map an upstream tier id to ``free``, ``pro``, ``ultra`` or ``unknown``."""
    if not tier_id:
        return "unknown"
    lower = tier_id.lower()
    if "ultra" in lower:
        return "ultra"
    # standard-tier is the paid, project-based plan
    if lower == "standard-tier":
        return "pro"
    if "pro" in lower or "premium" in lower:
        return "pro"
    if "free" in lower:
        return "free"
    return "unknown"


def _project_from(data: Dict[str, Any]) -> Optional[str]:
    project = data.get("cloudaicompanionProject")
    if isinstance(project, str) and project:
        return project
    if isinstance(project, dict) and project.get("id"):
        return str(project["id"])
    return None


def _default_tier_id(data: Dict[str, Any]) -> str:
    allowed = data.get("allowedTiers") or []
    for tier in allowed:
        if isinstance(tier, dict) and tier.get("isDefault") and tier.get("id"):
            return tier["id"]
    if allowed and isinstance(allowed[0], dict) and allowed[0].get("id"):
        return allowed[0]["id"]
    return DEFAULT_TIER_ID


class AntigravityCatalog:
    """
    Read-only upstream metadata calls.

    Args:
        transport: HTTP capability
        endpoint_preference: ``prod``, ``daily`` or ``auto``
    """

    def __init__(self, transport: Transport, endpoint_preference: str = "auto"):
        self.transport = transport
        self.endpoint_preference = endpoint_preference

    async def _post(self, path: str, token: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """POST to each endpoint in turn; raise the last error if all fail."""
        last_error: Exception = UpstreamError("No endpoints available")
        for endpoint in resolve_endpoints(self.endpoint_preference):
            url = f"{endpoint}/v1internal:{path}"
            try:
                response = await self.transport.request("POST", url, build_headers(token, ""), body)
                if not response.ok:
                    raise UpstreamError(
                        f"{path} error at {endpoint}: {response.status_code}",
                        status_code=response.status_code,
                        error_text=format_error_snippet(response.text),
                    )
                data = response.json()
                if not isinstance(data, dict):
                    raise UpstreamError(f"{path} returned a non-object body at {endpoint}")
                return data
            except (AntigravityError, ValueError) as e:
                lib_logger.warning(f"{path} failed at {endpoint}: {e}")
                last_error = e
        raise last_error

    # =========================================================================
    # MODELS AND QUOTAS
    # =========================================================================

    async def fetch_available_models(
        self, token: str, project_id: Optional[str] = None
    ) -> ModelCatalog:
        body = {"project": project_id} if project_id else {}
        data = await self._post("fetchAvailableModels", token, body)
        models = data.get("models")
        data["models"] = models if isinstance(models, dict) else {}
        return data  # type: ignore[return-value]

    async def get_model_quotas(
        self, token: str, project_id: Optional[str] = None
    ) -> Dict[str, QuotaSnapshot]:
        """
        Quota snapshots for every Claude/Gemini model in the catalog.

        A missing ``remainingFraction`` together with a ``resetTime`` is
        reported as exhausted (0.0).
        """
        data = await self.fetch_available_models(token, project_id)
        now = time_utils.now_ms()
        quotas: Dict[str, QuotaSnapshot] = {}
        for model_id, info in data["models"].items():
            if not is_supported_model(model_id):
                continue
            quota_info = (info or {}).get("quotaInfo")
            if not quota_info:
                continue
            fraction = quota_info.get("remainingFraction")
            reset_time = quota_info.get("resetTime")
            if fraction is None and reset_time:
                fraction = 0.0
            quotas[model_id] = QuotaSnapshot(
                remaining_fraction=fraction,
                reset_time=reset_time,
                fetched_at=now,
            )
        return quotas

    async def list_models(
        self,
        token: str,
        project_id: Optional[str] = None,
        validity_cache: Optional["ModelValidityCache"] = None,
    ) -> Dict[str, Any]:
        """Supported models in Anthropic list format; warms ``validity_cache``."""
        data = await self.fetch_available_models(token, project_id)
        created = int(time_utils.now_ms() // 1000)
        listing = AnthropicModelList(
            data=[
                AnthropicModelInfo(
                    id=model_id,
                    created=created,
                    description=str((info or {}).get("displayName") or model_id),
                )
                for model_id, info in data["models"].items()
                if is_supported_model(model_id)
            ]
        )
        if validity_cache is not None:
            validity_cache.populate([item.id for item in listing.data])
        return listing.model_dump()

    # =========================================================================
    # SUBSCRIPTION / PROJECT
    # =========================================================================

    async def load_code_assist(self, token: str, project_hint: Optional[str] = None) -> Dict[str, Any]:
        metadata = dict(CLIENT_METADATA)
        metadata["duetProject"] = project_hint or ANTIGRAVITY_DEFAULT_PROJECT_ID
        return await self._post("loadCodeAssist", token, {"metadata": metadata})

    async def get_subscription_tier(self, token: str) -> Tuple[str, Optional[str]]:
        """
        Returns ``(tier, project_id)``; tier source priority is paidTier,
        currentTier, then the default allowed tier. Falls back to
        ``("free", None)`` when every endpoint fails.
        """
        try:
            data = await self.load_code_assist(token)
        except AntigravityError as e:
            lib_logger.warning(f"Could not detect subscription tier, defaulting to free: {e}")
            return "free", None

        tier = "unknown"
        for key in ("paidTier", "currentTier"):
            info = data.get(key)
            if tier == "unknown" and isinstance(info, dict) and info.get("id"):
                tier = parse_tier_id(info["id"])
        if tier == "unknown" and data.get("allowedTiers"):
            tier = parse_tier_id(_default_tier_id(data))
        return tier, _project_from(data)

    async def onboard_user(
        self,
        token: str,
        tier_id: str,
        project_hint: Optional[str] = None,
        max_attempts: int = ONBOARD_MAX_ATTEMPTS,
        poll_delay_s: float = ONBOARD_POLL_DELAY_S,
    ) -> Optional[str]:
        """Poll ``onboardUser`` until the managed project is ready."""
        metadata = dict(CLIENT_METADATA)
        if project_hint:
            metadata["duetProject"] = project_hint
        body = {"tierId": tier_id, "metadata": metadata}

        for endpoint in resolve_endpoints(self.endpoint_preference):
            url = f"{endpoint}/v1internal:onboardUser"
            for _ in range(max_attempts):
                try:
                    response = await self.transport.request("POST", url, build_headers(token, ""), body)
                    data = response.json() if response.ok else None
                except (AntigravityError, ValueError) as e:
                    lib_logger.warning(f"onboardUser failed at {endpoint}: {e}")
                    break
                if data is None:
                    lib_logger.warning(f"onboardUser error at {endpoint}: {response.status_code}")
                    break
                if data.get("done"):
                    project = _project_from(data.get("response") or {})
                    if project:
                        return project
                await asyncio.sleep(poll_delay_s)
        return None


class ModelValidityCache:
    """
    TTL cache of supported model ids.

    Concurrent callers share one in-flight refresh. When the refresh fails
    the cache stays empty and every model is treated as valid, leaving the
    final say to the upstream.
    """

    def __init__(self, catalog: AntigravityCatalog, ttl_ms: float = MODEL_VALIDATION_CACHE_TTL_MS):
        self.catalog = catalog
        self.ttl_ms = ttl_ms
        self._valid_models: set = set()
        self._last_fetched = 0.0
        self._inflight: Optional["asyncio.Task[None]"] = None
        self._lock = asyncio.Lock()

    def populate(self, model_ids: List[str]) -> None:
        self._valid_models = set(model_ids)
        self._last_fetched = time_utils.now_ms()

    def _is_fresh(self) -> bool:
        return bool(self._valid_models) and time_utils.now_ms() - self._last_fetched < self.ttl_ms

    async def _refresh(self, token: str, project_id: Optional[str]) -> None:
        try:
            data = await self.catalog.fetch_available_models(token, project_id)
        except Exception as e:
            lib_logger.warning(f"Failed to populate model cache: {e}")
            return
        ids = [model_id for model_id in data["models"] if is_supported_model(model_id)]
        if ids:
            self.populate(ids)
            lib_logger.debug(f"Model cache populated with {len(ids)} models")

    async def ensure_fresh(self, token: str, project_id: Optional[str] = None) -> None:
        if self._is_fresh():
            return
        async with self._lock:
            if self._inflight is None:
                self._inflight = asyncio.ensure_future(self._refresh(token, project_id))
            task = self._inflight
        try:
            await asyncio.shield(task)
        finally:
            if task.done() and self._inflight is task:
                self._inflight = None

    async def is_valid_model(self, model: str, token: str, project_id: Optional[str] = None) -> bool:
        await self.ensure_fresh(token, project_id)
        if self._valid_models:
            return model in self._valid_models
        return True


class ProjectResolver:
    """
    Resolves the upstream project for an account.

    Order: explicit override, the 24 h cache keyed by a hash of the refresh
    token, ``loadCodeAssist``, then ``onboardUser`` with the default tier.
    Usable directly as AccountManager's ``project_resolver``.
    """

    def __init__(
        self,
        catalog: AntigravityCatalog,
        override: Optional[str] = None,
        ttl_ms: float = PROJECT_CACHE_TTL_MS,
        onboard_poll_delay_s: float = ONBOARD_POLL_DELAY_S,
    ):
        self.catalog = catalog
        self.override = (override or "").strip() or None
        self.ttl_ms = ttl_ms
        self.onboard_poll_delay_s = onboard_poll_delay_s
        self._cache: Dict[str, Tuple[str, float]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    @staticmethod
    def cache_key(account: Account) -> str:
        if account.refresh_token:
            return hashlib.sha256(account.refresh_token.encode("utf-8")).hexdigest()[:12]
        return account.email

    def _cached(self, key: str) -> Optional[str]:
        entry = self._cache.get(key)
        if entry and time_utils.now_ms() - entry[1] < self.ttl_ms:
            return entry[0]
        return None

    def clear(self) -> None:
        self._cache.clear()

    async def __call__(self, account: Account, token: str) -> str:
        if self.override:
            return self.override

        key = self.cache_key(account)
        cached = self._cached(key)
        if cached:
            return cached

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            cached = self._cached(key)
            if cached:
                return cached
            project_id = await self._discover(account, token)
            self._cache[key] = (project_id, time_utils.now_ms())
            lib_logger.info(f"Resolved project for {mask_credential(account.email)}")
            return project_id

    async def _discover(self, account: Account, token: str) -> str:
        data = await self.catalog.load_code_assist(token, account.project_id)
        project_id = _project_from(data)
        if project_id:
            return project_id

        tier_id = _default_tier_id(data)
        lib_logger.info(f"Onboarding {mask_credential(account.email)} on tier {tier_id}")
        project_id = await self.catalog.onboard_user(
            token, tier_id, account.project_id, poll_delay_s=self.onboard_poll_delay_s
        )
        if project_id:
            return project_id
        raise UpstreamError(f"Failed to discover project ID for {mask_credential(account.email)}")
