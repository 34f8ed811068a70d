# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
WPVault FastAPI Integration - Admin endpoints for a hosting dashboard.

This module provides:
- Journal initialization on startup
- Protected admin endpoints (backup trigger, listings, history, health)

Restore is not exposed over HTTP; it stays an operator action on the host.
"""

import os
from datetime import datetime, UTC

import aiosqlite
import structlog
from fastapi import Depends, FastAPI, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from wpvault.backup.manager import list_local_archives
from wpvault.backup.restore import list_remote_archives
from wpvault.config import VaultConfig
from wpvault.core import get_status, run_backup
from wpvault.exceptions import LockContentionError, WPVaultError
from wpvault.remote import RemoteStore, create_remote_store
from wpvault.vault.journal import init_journal_db, list_runs

logger = structlog.get_logger()

API_KEY_ENV = "WPVAULT_ADMIN_API_KEY"

# Security
security = HTTPBearer(auto_error=False)


async def verify_api_key(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> bool:
    """
    Verify API key from Authorization header.

    The API key is read from the WPVAULT_ADMIN_API_KEY environment variable.
    Requests must include: Authorization: Bearer <api_key>

    Raises:
        HTTPException: If API key is missing or invalid
    """
    api_key = os.getenv(API_KEY_ENV)

    if not api_key:
        raise HTTPException(
            status_code=500,
            detail=f"{API_KEY_ENV} environment variable not set",
        )

    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Authorization header required",
        )

    if credentials.credentials != api_key:
        raise HTTPException(
            status_code=403,
            detail="Invalid API key",
        )

    return True


def register_wpvault_routes(
    app: FastAPI,
    config: VaultConfig,
    store: RemoteStore | None = None,
    prefix: str = "/admin/wpvault",
) -> None:
    """
    Register WPVault admin endpoints on a FastAPI app.

    All endpoints require Bearer token authentication.

    Args:
        app: FastAPI application
        config: Vault configuration
        store: Remote store (default: built from config)
        prefix: URL prefix for endpoints (default: /admin/wpvault)
    """
    store = store or create_remote_store(config)

    @app.post(f"{prefix}/run", dependencies=[Depends(verify_api_key)])
    async def trigger_backup() -> dict:
        """
        Run the backup pipeline now.

        Returns 409 while another run holds the lock.
        """
        try:
            result = await run_backup(config, store)
        except LockContentionError as e:
            raise HTTPException(
                status_code=409,
                detail={"kind": e.kind.value, "error": e.message},
            ) from e
        except WPVaultError as e:
            raise HTTPException(
                status_code=500,
                detail={"kind": e.kind.value, "error": e.message, "details": e.details},
            ) from e
        return result.summary()

    @app.get(f"{prefix}/archives", dependencies=[Depends(verify_api_key)])
    async def get_archives() -> dict:
        """
        Archives in the local backup directory and on the remote store.
        """
        local = list(reversed(list_local_archives(config.backup_dir)))
        try:
            remote = await list_remote_archives(config, store)
            remote_error = None
        except WPVaultError as e:
            remote, remote_error = [], e.message
        return {
            "local": local,
            "remote": remote,
            "remote_error": remote_error,
        }

    @app.get(f"{prefix}/history", dependencies=[Depends(verify_api_key)])
    async def get_history(
        limit: int = 50,
        offset: int = 0,
        kind: str | None = None,
    ) -> list:
        """
        List journal runs with pagination.

        Args:
            limit: Maximum number of runs to return
            offset: Number of runs to skip
            kind: Filter by kind (backup, restore, rollback)
        """
        await init_journal_db(config.journal_path)
        async with aiosqlite.connect(config.journal_path) as db:
            return await list_runs(db, limit, offset, kind)

    @app.get(f"{prefix}/stats", dependencies=[Depends(verify_api_key)])
    async def get_stats() -> dict:
        """
        Local backup statistics plus journal statistics.
        """
        return await get_status(config)

    @app.get(f"{prefix}/health", dependencies=[Depends(verify_api_key)])
    async def health_check() -> dict:
        """
        Health check endpoint.

        Verifies the journal and the remote store are reachable.
        """
        journal_ok = config.journal_path.exists()
        backup_dir_ok = config.backup_dir.is_dir()

        remote_ok = False
        remote_error = None
        try:
            await store.list_files(config.remote_path)
            remote_ok = True
        except WPVaultError as e:
            remote_error = e.message

        status = "healthy"
        if not journal_ok or not remote_ok:
            status = "degraded"
        if not journal_ok and not remote_ok:
            status = "unhealthy"

        return {
            "status": status,
            "journal_accessible": journal_ok,
            "backup_dir_present": backup_dir_ok,
            "remote_reachable": remote_ok,
            "remote": store.describe(),
            "remote_error": remote_error,
            "timestamp": datetime.now(UTC).isoformat(),
        }

    @app.get(f"{prefix}/config", dependencies=[Depends(verify_api_key)])
    async def get_config() -> dict:
        """
        Get current configuration (sensitive values redacted).
        """
        return config.redacted()


def setup_wpvault_plugin(
    app: FastAPI,
    config: VaultConfig,
    store: RemoteStore | None = None,
    prefix: str = "/admin/wpvault",
) -> None:
    """
    Set up the WPVault plugin on a FastAPI app.

    Registers the admin endpoints and creates the run journal on startup.

    Args:
        app: FastAPI application
        config: Vault configuration
        store: Remote store (default: built from config)
        prefix: URL prefix for admin endpoints
    """
    app.state.wpvault_config = config
    register_wpvault_routes(app, config, store, prefix)

    @app.on_event("startup")
    async def startup():
        """Create the run journal on app startup."""
        logger.info(
            "wpvault_plugin_starting",
            site_dir=str(config.site_dir),
            remote_backend=config.remote_backend.value,
        )
        await init_journal_db(config.journal_path)
        logger.info("wpvault_plugin_started")


def get_wpvault_config(app: FastAPI) -> VaultConfig:
    """
    Get the WPVault config from a FastAPI app.

    Raises:
        RuntimeError: If the plugin was not set up
    """
    config = getattr(app.state, "wpvault_config", None)
    if not config:
        raise RuntimeError("WPVault not initialized. Call setup_wpvault_plugin first.")
    return config
