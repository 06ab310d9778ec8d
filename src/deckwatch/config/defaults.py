"""Default values for the deckwatch orchestrator."""

from __future__ import annotations

from typing import Any

DEFAULT_CONFIG_FILE = "deckwatch.yaml"

# Orchestrator-wide defaults
DEFAULT_GRACE_PERIOD = 5.0  # seconds between SIGTERM and SIGKILL
DEFAULT_LOG_CAPACITY = 100  # entries per channel
DEFAULT_REPLAY_TAIL = 20  # entries per channel sent to a new observer
DEFAULT_LOG_LIMIT = 50  # entries returned by the logs endpoint

# Control server
DEFAULT_SERVER: dict[str, Any] = {
    "host": "127.0.0.1",
    "port": 3012,
    "cors_origins": ["*"],
    "observer_queue_size": 256,
}

# Local launcher: `launcher [--service=NAME]` on a fixed port
DEFAULT_LOCAL: dict[str, Any] = {
    "command": ["node", "local-api-server.js"],
    "port": 3010,
    "startup_delay": 2.0,
    "services": {
        "all": [],
        "api-explorer": ["--explorer-only"],
        "therapist": ["--service=therapist"],
        "auth": ["--service=auth"],
        "client": ["--service=client"],
        "verification": ["--service=verification"],
    },
}

# Infrastructure tool: `tool <environment>`
DEFAULT_CLOUD: dict[str, Any] = {
    "command": ["./scripts/deploy-with-cdk.sh"],
    "default_environment": "dev",
    "outputs_file": "cdk-outputs.json",
    "url_output_key": "OutputApiGatewayUrl",
    "url_pattern": r"OutputApiGatewayUrl\s*=\s*(https?://\S+)",
    "env_file": ".env",
    "auto_validate": True,
    "validation_delay": 5.0,
}

DEFAULT_PREFLIGHT_TIMEOUT = 120.0
DEFAULT_DATABASE_PORT = 5432
DEFAULT_DATABASE_TIMEOUT = 3.0
DEFAULT_PROBE_TIMEOUT = 10.0

DEFAULT_PROBES: list[dict[str, Any]] = [
    {
        "method": "GET",
        "path": "/api/therapist",
        "description": "List therapists",
        "expect_status": [200],
    },
    {
        "method": "GET",
        "path": "/api/therapist/search",
        "description": "Search therapists",
        "expect_status": [200],
    },
    {
        "method": "GET",
        "path": "/api/therapist/search?specialty=anxiety&limit=5",
        "description": "Advanced search",
        "expect_status": [200],
    },
    {
        "method": "GET",
        "path": "/api/therapist/1000008",
        "description": "Get specific therapist",
        "expect_status": [200, 404],
    },
    {
        "method": "POST",
        "path": "/api/auth/login",
        "description": "Authentication",
        "expect_status": [400, 401],
    },
    {
        "method": "GET",
        "path": "/api/verification/status/test",
        "description": "Verification status",
        "expect_status": [200, 404],
    },
]

# Environment variable to config path mapping (highest precedence)
ENV_OVERRIDES: dict[str, tuple[str, ...]] = {
    "DECKWATCH_HOST": ("server", "host"),
    "DECKWATCH_PORT": ("server", "port"),
    "DECKWATCH_WORKDIR": ("working_dir",),
    "DECKWATCH_API_URL": ("validation", "default_base_url"),
}
