# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Default values shared across the router.

All durations ending in ``_MS`` are milliseconds.
"""

# =============================================================================
# RATE LIMITS AND RETRIES
# =============================================================================

# Cooldown applied when the upstream gives no reset hint. Also the cut line
# between "rate limited" (short) and "quota exhausted" (long) in logs.
DEFAULT_COOLDOWN_MS = 10_000

DEFAULT_MAX_RETRIES = 2
DEFAULT_BASE_DELAY_MS = 1_000
DEFAULT_MAX_DELAY_MS = 15_000
DEFAULT_MAX_WAIT_MS = 120_000
DEFAULT_MAX_EMPTY_RESPONSE_RETRIES = 2

# Throttle applied by the hybrid strategy when filters had to be relaxed
LAST_RESORT_THROTTLE_MS = 500
EMERGENCY_THROTTLE_MS = 250

# =============================================================================
# HEALTH / TOKEN BUCKET / QUOTA
# =============================================================================

DEFAULT_HEALTH_INITIAL = 70
DEFAULT_HEALTH_SUCCESS_REWARD = 1
DEFAULT_HEALTH_RATE_LIMIT_PENALTY = -10
DEFAULT_HEALTH_FAILURE_PENALTY = -20
DEFAULT_HEALTH_RECOVERY_PER_HOUR = 10
DEFAULT_HEALTH_MIN_USABLE = 50
DEFAULT_HEALTH_MAX_SCORE = 100
DEFAULT_HEALTH_MIN_SCORE = 0

DEFAULT_BUCKET_MAX_TOKENS = 50
DEFAULT_BUCKET_TOKENS_PER_MINUTE = 6
DEFAULT_BUCKET_INITIAL_TOKENS = 50

DEFAULT_QUOTA_LOW_THRESHOLD = 0.10
DEFAULT_QUOTA_CRITICAL_THRESHOLD = 0.05
DEFAULT_QUOTA_STALE_MS = 5 * 60 * 1000
DEFAULT_QUOTA_UNKNOWN_SCORE = 50

DEFAULT_WEIGHT_HEALTH = 2.0
DEFAULT_WEIGHT_TOKENS = 5.0
DEFAULT_WEIGHT_QUOTA = 3.0
DEFAULT_WEIGHT_LRU = 0.1

# LRU component is capped at one hour of idleness
LRU_CAP_MS = 60 * 60 * 1000

# =============================================================================
# CACHES
# =============================================================================

MODEL_VALIDATION_CACHE_TTL_MS = 5 * 60 * 1000
PROJECT_CACHE_TTL_MS = 24 * 60 * 60 * 1000
SIGNATURE_CACHE_TTL_MS = 2 * 60 * 60 * 1000
MIN_SIGNATURE_LENGTH = 50

# =============================================================================
# UPSTREAM
# =============================================================================

ANTIGRAVITY_VERSION = "1.15.8"
ANTIGRAVITY_ENDPOINT_PROD = "https://cloudcode-pa.googleapis.com"
ANTIGRAVITY_ENDPOINT_DAILY = "https://daily-cloudcode-pa.googleapis.com"
ANTIGRAVITY_ENDPOINTS = [ANTIGRAVITY_ENDPOINT_PROD, ANTIGRAVITY_ENDPOINT_DAILY]
ANTIGRAVITY_DEFAULT_PROJECT_ID = "rising-fact-p41fc"

CLIENT_METADATA = {
    "ideType": "IDE_UNSPECIFIED",
    "platform": "PLATFORM_UNSPECIFIED",
    "pluginType": "GEMINI",
}

ANTIGRAVITY_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        f"(KHTML, like Gecko) Antigravity/{ANTIGRAVITY_VERSION} "
        "Chrome/138.0.7204.235 Electron/37.3.1 Safari/537.36"
    ),
    "X-Goog-Api-Client": "google-cloud-sdk vscode_cloudshelleditor/0.1",
    "Client-Metadata": (
        '{"ideType":"IDE_UNSPECIFIED","platform":"PLATFORM_UNSPECIFIED",'
        '"pluginType":"GEMINI"}'
    ),
}

CLAUDE_INTERLEAVED_THINKING_BETA = "interleaved-thinking-2025-05-14"

# Upper bound for maxOutputTokens on Gemini models
GEMINI_MAX_OUTPUT_TOKENS = 16384

ANTIGRAVITY_SYSTEM_INSTRUCTION = (
    "You are Antigravity, a powerful agentic AI coding assistant designed by the "
    "Google Deepmind team working on Advanced Agentic Coding."
    "You are pair programming with a USER to solve their coding task. The task may "
    "require creating a new codebase, modifying or debugging an existing codebase, "
    "or simply answering a question."
    "**Absolute paths only****Proactiveness**"
)

ENV_PREFIX = "ANTIGRAVITY_"
