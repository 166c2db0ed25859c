"""Resource payload templating."""

import json
import string
from pathlib import Path
from typing import Any, Dict, List


def render_payload(template: str, tokens: Dict[str, str]) -> Dict[str, Any]:
    """Substitute ``${TOKEN}`` placeholders and parse the result as JSON.

    Unknown placeholders are left untouched.

    Raises:
        ValueError: If the rendered text is not a JSON object
    """
    rendered = string.Template(template).safe_substitute(tokens)
    try:
        payload = json.loads(rendered)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid payload JSON: {e}") from e
    if not isinstance(payload, dict):
        raise ValueError("Payload must be a JSON object")
    return payload


def load_payloads(directory: Path, tokens: Dict[str, str]) -> List[Dict[str, Any]]:
    """Render every ``*.json`` file in a directory, sorted by file name.

    A missing directory yields no payloads.
    """
    if not directory.is_dir():
        return []
    return [
        render_payload(path.read_text(encoding="utf-8"), tokens)
        for path in sorted(directory.glob("*.json"))
    ]


def load_payload(path: Path, tokens: Dict[str, str]) -> Dict[str, Any]:
    """Render a single payload file.

    Raises:
        FileNotFoundError: If the file does not exist
    """
    return render_payload(path.read_text(encoding="utf-8"), tokens)
