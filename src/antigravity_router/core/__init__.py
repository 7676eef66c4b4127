# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from .errors import (
    AntigravityError,
    RateLimitedError,
    EmptyResponseError,
    AccountInvalidError,
    MalformedChunkError,
    NoCapacityError,
    UpstreamError,
    ModelNotFoundError,
)

__all__ = [
    "AntigravityError",
    "RateLimitedError",
    "EmptyResponseError",
    "AccountInvalidError",
    "MalformedChunkError",
    "NoCapacityError",
    "UpstreamError",
    "ModelNotFoundError",
]
