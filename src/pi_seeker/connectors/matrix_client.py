# src/pi_seeker/connectors/matrix_client.py

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from nio import AsyncClient, AsyncClientConfig, LoginResponse

logger = logging.getLogger(__name__)

SESSION_FILE = "session.json"


def _read_session(path: Path) -> dict[str, str] | None:
    try:
        data = json.loads(path.read_text("utf-8"))
    except (OSError, ValueError) as e:
        logger.warning("Unreadable Matrix session file %s: %r", path, e)
        return None
    if not isinstance(data, dict):
        return None
    fields = ("access_token", "user_id", "device_id")
    if not all(data.get(f) for f in fields):
        logger.warning("Matrix session file %s is missing fields, ignoring it", path)
        return None
    return {f: str(data[f]) for f in fields}


def _write_session(path: Path, data: dict[str, Any]) -> None:
    tmp = path.with_suffix(".tmp")
    tmp.write_text(json.dumps(data), "utf-8")
    os.replace(tmp, path)
    try:
        os.chmod(path, 0o600)
    except OSError:
        # Not critical on Windows or restricted FS.
        pass


async def create_matrix_client(settings) -> AsyncClient | None:
    """
    Create a logged-in Matrix AsyncClient, or None if Matrix is not usable.

    The access token is kept in <matrix_store_path>/session.json so the bot
    does not log in (and create a new device) on every restart. The file holds
    credentials and lives under the gitignored data dir.
    """
    homeserver = (settings.matrix_homeserver or "").strip()
    user_id = (settings.matrix_user_id or "").strip()
    password = (settings.matrix_password or "").strip()
    store_dir = Path(settings.matrix_store_path)

    if not homeserver or not user_id:
        logger.error("Matrix is not configured: set PISEEK_MATRIX_HOMESERVER and PISEEK_MATRIX_USER_ID")
        return None

    store_dir.mkdir(parents=True, exist_ok=True)
    session_path = store_dir / SESSION_FILE

    client = AsyncClient(
        homeserver,
        user_id,
        config=AsyncClientConfig(store_sync_tokens=True),
    )

    session = _read_session(session_path) if session_path.exists() else None
    if session is not None:
        client.access_token = session["access_token"]
        client.user_id = session["user_id"]
        client.device_id = session["device_id"]
        logger.info("Matrix session restored for %s", client.user_id)
        return client

    if not password:
        logger.error(
            "No Matrix session found and no password set. "
            "Set PISEEK_MATRIX_PASSWORD once to bootstrap a session."
        )
        await client.close()
        return None

    device_name = f"{settings.app_name} (Python)"
    logger.info("Logging in to Matrix (device_name=%r)...", device_name)
    resp = await client.login(password=password, device_name=device_name)
    if not isinstance(resp, LoginResponse):
        logger.error("Matrix login failed: %r", resp)
        await client.close()
        return None

    try:
        _write_session(
            session_path,
            {"access_token": resp.access_token, "user_id": resp.user_id, "device_id": resp.device_id},
        )
        logger.info("Matrix session saved to %s (user=%s)", session_path, resp.user_id)
    except OSError as e:
        # The login itself worked; we just log in again next time.
        logger.warning("Failed to write Matrix session file %s: %r", session_path, e)

    return client
