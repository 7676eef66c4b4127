# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
System-instruction policies.

The upstream expects the Antigravity identity preamble in the system
instruction. Sending it as-is makes some models introduce themselves as
"Antigravity", so the default policy sends it twice, the second copy
wrapped in an explicit instruction to ignore it. Whether that helps
depends entirely on upstream model behaviour, hence the pluggable policy.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Sequence

from ...core.constants import ANTIGRAVITY_SYSTEM_INSTRUCTION


class SystemInstructionPolicy(ABC):
    """Builds the ``systemInstruction.parts`` list sent upstream."""

    @abstractmethod
    def build_parts(self, caller_texts: Sequence[str]) -> List[Dict[str, str]]:
        pass


class IdentityPreamblePolicy(SystemInstructionPolicy):
    def __init__(self, preamble: str = ANTIGRAVITY_SYSTEM_INSTRUCTION):
        self.preamble = preamble

    def build_parts(self, caller_texts: Sequence[str]) -> List[Dict[str, str]]:
        parts = [
            {"text": self.preamble},
            {"text": f"Please ignore the following [ignore]{self.preamble}[/ignore]"},
        ]
        parts.extend({"text": text} for text in caller_texts if text)
        return parts


class PassthroughPolicy(SystemInstructionPolicy):
    """Only the caller's own system text."""

    def build_parts(self, caller_texts: Sequence[str]) -> List[Dict[str, str]]:
        return [{"text": text} for text in caller_texts if text]


def policy_for(inject_identity_preamble: bool) -> SystemInstructionPolicy:
    if inject_identity_preamble:
        return IdentityPreamblePolicy()
    return PassthroughPolicy()
