# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/antigravity_router/providers/__init__.py
"""
Antigravity (Cloud Code) upstream pieces.

Submodules are imported directly (``providers.antigravity_transport``,
``providers.antigravity_catalog`` ...); the translators depend on
``antigravity_utils`` so nothing heavier is imported here.
"""
