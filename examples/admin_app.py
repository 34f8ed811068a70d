# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Example FastAPI Application with WPVault Integration.

This example exposes the WPVault admin endpoints from a small hosting
dashboard, so backups can be triggered and inspected over HTTP.
Restores stay on the command line.

Run with:
    uvicorn examples.admin_app:app --reload

Environment variables:
    WPVAULT_DB_NAME, WPVAULT_DB_USER, WPVAULT_DB_PASSWORD: Database credentials
    WPVAULT_REMOTE_NAME: rclone remote (e.g. "onedrive")
    WPVAULT_SITE_DIR: WordPress root (default: /var/www/wordpress)
    WPVAULT_ADMIN_API_KEY: API key for admin endpoints
"""

import os

from fastapi import FastAPI

from wpvault.builder import (
    build_config,
    create_empty_config,
    keep_local,
    keep_remote,
    with_database,
    with_paths,
    with_remote,
    with_retries,
    with_site,
)
from wpvault.env import create_config_from_env
from wpvault.exceptions import ConfigurationError
from wpvault.integrations.fastapi import get_wpvault_config, setup_wpvault_plugin

# Create FastAPI app
app = FastAPI(
    title="Hosting Dashboard with WPVault",
    description="Example application exposing WordPress backup endpoints",
    version="1.0.0",
)


def create_development_config():
    """
    Local configuration for trying the endpoints without a real server.

    Archives are mirrored into ./wpvault_data/remote instead of rclone.
    """
    config = create_empty_config()
    config = with_database(config, "wordpress", "wp_user", os.getenv("WPVAULT_DB_PASSWORD", "dev"))
    config = with_remote(config, "./wpvault_data/remote", "wordpress/backups", "local")
    config = with_site(config, "./wpvault_data/wordpress")
    config = with_paths(
        config,
        backup_dir="./wpvault_data/backups",
        safety_dir="./wpvault_data/safety",
        log_dir="./wpvault_data/log",
        state_dir="./wpvault_data/state",
        lock_path="./wpvault_data/wpvault.lock",
    )
    config = keep_local(config, 3)
    config = keep_remote(config, 7)
    config = with_retries(config, 3, initial_delay=1.0)
    return build_config(config)


# Initialize configuration
try:
    wpvault_config = create_config_from_env()
except ConfigurationError as e:
    print(f"Failed to create WPVault config from environment: {e.message}")
    wpvault_config = create_development_config()

# Setup WPVault plugin
setup_wpvault_plugin(app, wpvault_config)


@app.get("/")
async def root():
    """Root endpoint."""
    config = get_wpvault_config(app)
    return {
        "message": "Hosting dashboard",
        "site_dir": str(config.site_dir),
        "remote": config.remote_backend.value,
        "docs": "/docs",
        "wpvault_admin": "/admin/wpvault/health",
    }


# ============================================================================
# WPVault Admin Endpoints (auto-registered by plugin)
# ============================================================================
#
# POST /admin/wpvault/run       - Run the backup pipeline now
# GET  /admin/wpvault/archives  - Local and remote archives
# GET  /admin/wpvault/history   - Journal of backup/restore/rollback runs
# GET  /admin/wpvault/stats     - Local backup and journal statistics
# GET  /admin/wpvault/health    - Journal and remote reachability
# GET  /admin/wpvault/config    - Configuration (redacted)
#
# All admin endpoints require: Authorization: Bearer <WPVAULT_ADMIN_API_KEY>


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="127.0.0.1", port=8000)
