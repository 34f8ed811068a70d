# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Framework Integrations - FastAPI admin plugin.
"""

from wpvault.integrations.fastapi import (
    setup_wpvault_plugin,
    register_wpvault_routes,
    verify_api_key,
)

__all__ = [
    "setup_wpvault_plugin",
    "register_wpvault_routes",
    "verify_api_key",
]
