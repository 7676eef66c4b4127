# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

import asyncio
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from ..accounts.config import RouterConfig
from ..accounts.manager import AccountManager, ProjectResolverFn, TokenResolver
from ..accounts.types import Account, QuotaSnapshot
from ..core.errors import AntigravityError, NoCapacityError
from ..failure_logger import configure_failure_logger
from ..providers.antigravity_catalog import AntigravityCatalog, ModelValidityCache, ProjectResolver
from ..providers.antigravity_request_builder import RequestBuilder
from ..providers.antigravity_transport import HttpxTransport, Transport
from ..providers.antigravity_utils import SignatureCache, policy_for
from ..utils.credential_formatter import mask_credential
from .orchestrator import Request, RequestOrchestrator

lib_logger = logging.getLogger("antigravity_router")


class AntigravityClient:
    """
    Routes Anthropic-format requests over a pool of Antigravity accounts.

    This is a slim facade that wires the components together:
    - AccountManager + HybridStrategy: account state and selection
    - RequestBuilder: envelope, headers, system instruction policy
    - RequestOrchestrator: retry, endpoint fallback, account rotation
    - AntigravityCatalog: models, quotas, project discovery

    Args:
        accounts: ``Account`` objects or plain dicts (see ``Account.from_dict``)
        token_resolver: ``async (account) -> access token``; the OAuth
            exchange itself is owned by the caller
        config: Router configuration; defaults to ``RouterConfig()``
        transport: HTTP capability; an ``HttpxTransport`` is created if omitted
        project_resolver: Overrides the built-in ``ProjectResolver``
        validate_models: Check model ids against the catalog before calling
        configure_logging: Let the library logger propagate to the host app
        sleep: Injected for tests
    """

    def __init__(
        self,
        accounts: Sequence[Union[Account, Dict[str, Any]]],
        token_resolver: TokenResolver,
        config: Optional[RouterConfig] = None,
        transport: Optional[Transport] = None,
        project_resolver: Optional[ProjectResolverFn] = None,
        validate_models: bool = True,
        configure_logging: bool = True,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config or RouterConfig()

        if configure_logging:
            lib_logger.propagate = True
            if lib_logger.hasHandlers():
                lib_logger.handlers.clear()
                lib_logger.addHandler(logging.NullHandler())
        else:
            lib_logger.propagate = False

        if self.config.failure_log_dir:
            configure_failure_logger(self.config.failure_log_dir)

        pool = [a if isinstance(a, Account) else Account.from_dict(a) for a in accounts]
        if not pool:
            lib_logger.warning("No accounts configured. Client will be unable to make requests.")

        self._owns_transport = transport is None
        self.transport: Transport = transport or HttpxTransport()
        self.catalog = AntigravityCatalog(self.transport, self.config.endpoint_preference)
        self.project_resolver = project_resolver or ProjectResolver(
            self.catalog,
            override=self.config.project_id_override,
            ttl_ms=self.config.project_cache_ttl_ms,
        )
        self.validity_cache = (
            ModelValidityCache(self.catalog, self.config.model_cache_ttl_ms)
            if validate_models
            else None
        )

        self.accounts = AccountManager(
            pool,
            token_resolver=token_resolver,
            project_resolver=self.project_resolver,
            strategy_config=self.config.strategy,
            default_cooldown_ms=self.config.default_cooldown_ms,
        )
        self.signature_cache = SignatureCache()
        self.builder = RequestBuilder(
            self.signature_cache, policy_for(self.config.inject_identity_preamble)
        )
        self.orchestrator = RequestOrchestrator(
            self.accounts,
            self.transport,
            builder=self.builder,
            retry=self.config.retry,
            endpoint_preference=self.config.endpoint_preference,
            validity_cache=self.validity_cache,
            default_cooldown_ms=self.config.default_cooldown_ms,
            sleep=sleep,
        )

    async def __aenter__(self) -> "AntigravityClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the transport if this client created it."""
        if self._owns_transport:
            await self.transport.close()

    # =========================================================================
    # MESSAGES
    # =========================================================================

    async def send_message(self, request: Request) -> Dict[str, Any]:
        return await self.orchestrator.send_message(request)

    def stream_message(self, request: Request) -> AsyncIterator[Dict[str, Any]]:
        return self.orchestrator.stream_message(request)

    # =========================================================================
    # CATALOG
    # =========================================================================

    def _first_usable_account(self) -> Account:
        available = self.accounts.get_available_accounts()
        if not available:
            raise NoCapacityError("*", 0, "no valid account to query the catalog")
        return available[0]

    async def list_models(self) -> Dict[str, Any]:
        """Supported models in Anthropic list format, using the first valid account."""
        account = self._first_usable_account()
        token = await self.accounts.get_token_for_account(account)
        project_id = await self.accounts.get_project_for_account(account, token)
        return await self.catalog.list_models(token, project_id, self.validity_cache)

    async def refresh_quotas(self) -> Dict[str, Dict[str, QuotaSnapshot]]:
        """
        Fetch quota snapshots for every valid account and feed them to the
        selection strategy. Accounts whose fetch fails are skipped.
        """
        results: Dict[str, Dict[str, QuotaSnapshot]] = {}
        for account in self.accounts.get_available_accounts():
            try:
                token = await self.accounts.get_token_for_account(account)
                project_id = await self.accounts.get_project_for_account(account, token)
                quotas = await self.catalog.get_model_quotas(token, project_id)
            except AntigravityError as e:
                lib_logger.warning(
                    f"Quota refresh failed for {mask_credential(account.email)}: {e}"
                )
                continue
            self.accounts.update_quotas(account.email, quotas)
            results[account.email] = quotas
        lib_logger.info(f"Refreshed quotas for {len(results)} account(s)")
        return results

    def get_invalid_accounts(self) -> List[Account]:
        return self.accounts.get_invalid_accounts()
