# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
Do NOT commit real secrets; keep them in .env (local, gitignored).

This file exists to make the repo self-documenting even without opening .env.example.
"""

ENV_VARS = {
    # App / logging
    "PISEEK_APP_NAME": "App display name (default: pi-seeker).",
    "PISEEK_LOG_LEVEL": "Console logging level (default: INFO).",
    # Connectors
    "PISEEK_CONSOLE_ENABLED": "Enable console connector (true/false, default true).",
    "PISEEK_MATRIX_ENABLED": "Enable Matrix connector (true/false, default false).",
    # Matrix
    "PISEEK_MATRIX_HOMESERVER": "Matrix homeserver URL.",
    "PISEEK_MATRIX_USER_ID": "Matrix user ID (bot).",
    "PISEEK_MATRIX_PASSWORD": "Password for first login (session stored locally).",
    "PISEEK_MATRIX_ROOMS": "Optional allowlist of room IDs (empty => all rooms).",
    # Paths (gitignored)
    "PISEEK_DATA_DIR": "Local data directory (default: .local/pi-seeker).",
    "PISEEK_MATRIX_STORE_PATH": "Matrix session directory (default: <data_dir>/matrix_store).",
    "PISEEK_TASKS_DB_PATH": "Search task SQLite path (default: <data_dir>/pi_tasks.sqlite3).",
    # Search tuning
    "PISEEK_ISOLATE_MODE": "Where searches run: process (default) or thread.",
    "PISEEK_CHUNK_SIZE": "Digits scanned per chunk; bounds cancel latency (default: 10000).",
    "PISEEK_PROGRESS_INTERVAL_SECONDS": "Minimum seconds between progress checkpoints (default: 60).",
    "PISEEK_MAX_DIGITS": "Optional digit limit; unset means search until found.",
    "PISEEK_GUARD_DIGITS": "Initial guard digits for pi generation (default: 10).",
    "PISEEK_RESUME_ON_START": "Relaunch interrupted searches at startup (default: true).",
}
