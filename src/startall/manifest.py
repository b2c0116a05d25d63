"""Read runnable scripts from package.json."""
import json
import logging
from pathlib import Path
from typing import List, Union

from .models.command import Command

logger = logging.getLogger(__name__)

MANIFEST_NAME = "package.json"
RESERVED_NAMES = {"start"}
HOOK_PREFIXES = ("pre", "post")


class ManifestError(Exception):
    """The manifest is missing or cannot be read."""


def is_runnable(name: str) -> bool:
    """Lifecycle hooks (pre*/post*) and `start` itself are not offered."""
    return name not in RESERVED_NAMES and not name.startswith(HOOK_PREFIXES)


def load_manifest(root: Union[str, Path]) -> List[Command]:
    """Load the scripts of `<root>/package.json` in declaration order.

    Raises:
        ManifestError: if the file is missing, unreadable or not valid JSON
    """
    path = Path(root) / MANIFEST_NAME
    if not path.exists():
        raise ManifestError(f"No {MANIFEST_NAME} found in {Path(root).resolve()}")

    try:
        data = json.loads(path.read_text())
    except (OSError, ValueError) as e:
        raise ManifestError(f"Error reading {MANIFEST_NAME}: {e}") from e

    scripts = data.get("scripts") if isinstance(data, dict) else None
    if not isinstance(scripts, dict):
        logger.debug(f"{path} has no scripts table")
        return []

    return [
        Command(name=name, display_name=name, invocation=f"npm run {name}")
        for name in scripts
        if is_runnable(name)
    ]
