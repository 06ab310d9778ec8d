"""Extraction of the deployed endpoint address from tool results.

The key-value artifact written by the infrastructure tool is the primary
source; scanning the tool's stdout is the fallback. Both are best-effort
enrichment: a missing address never fails a deployment.
"""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from deckwatch.lib.logging_config import get_logger

logger = get_logger(__name__)

SOURCE_ARTIFACT = "artifact"
SOURCE_OUTPUT = "output"


def read_outputs_artifact(
    path: Path, not_before: datetime | None = None
) -> dict[str, Any] | None:
    """Load the tool's outputs file.

    Args:
        path: Artifact location
        not_before: Ignore the artifact if it was last written before this
            time (left over from an earlier run)

    Returns:
        Parsed mapping, or None when absent, stale or unreadable
    """
    try:
        stat = path.stat()
    except OSError:
        return None

    if not_before is not None:
        modified = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
        if modified < not_before:
            logger.debug(f"Ignoring stale outputs artifact {path}")
            return None

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning(f"Unreadable outputs artifact {path}: {exc}")
        return None
    return data if isinstance(data, dict) else None


def find_output(outputs: dict[str, Any], key: str) -> str | None:
    """Find ``key`` at the top level or inside any per-stack mapping."""
    value = outputs.get(key)
    if isinstance(value, str) and value:
        return value
    for stack_outputs in outputs.values():
        if isinstance(stack_outputs, dict):
            value = stack_outputs.get(key)
            if isinstance(value, str) and value:
                return value
    return None


def scan_output_for_url(text: str, pattern: str) -> str | None:
    """Return the first capture of ``pattern`` in the tool's output."""
    match = re.search(pattern, text)
    return match.group(1) if match else None


def resolve_deployment_address(
    *,
    artifact_path: Path | None,
    output_key: str,
    output_text: str,
    url_pattern: str,
    not_before: datetime | None = None,
) -> tuple[str | None, dict[str, Any], str | None]:
    """Determine the deployed address.

    Returns:
        ``(address, artifact_outputs, source)`` where source is
        ``"artifact"``, ``"output"`` or None
    """
    outputs: dict[str, Any] = {}
    if artifact_path is not None:
        outputs = read_outputs_artifact(artifact_path, not_before) or {}
        address = find_output(outputs, output_key)
        if address:
            return address, outputs, SOURCE_ARTIFACT

    address = scan_output_for_url(output_text, url_pattern)
    if address:
        return address, outputs, SOURCE_OUTPUT
    return None, outputs, None
