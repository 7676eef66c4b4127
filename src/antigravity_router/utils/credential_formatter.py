# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Utility for formatting account identifiers for display in logs.

Account e-mails keep their first characters and domain, tokens keep only
their last 6 characters.
"""


def mask_credential(credential: str, style: str = "partial") -> str:
    """
    Format an account e-mail or token for display in logs.

    Args:
        credential: E-mail address, refresh token or access token
        style: "partial" masks the local part of e-mails and the body of
            tokens; "full" returns e-mails unchanged and tokens masked

    Returns:
        A display-safe string representation of the credential

    Examples:
        >>> mask_credential("alice.smith@example.com")
        "al***@example.com"
        >>> mask_credential("ya29.a0AfH6SMBx1234567890abcdef")
        "...abcdef"
    """
    if not credential:
        return "<none>"
    if "@" in credential:
        if style == "full":
            return credential
        local, _, domain = credential.partition("@")
        return f"{local[:2]}***@{domain}"
    if len(credential) <= 6:
        return "..." + credential[-2:]
    return f"...{credential[-6:]}"
