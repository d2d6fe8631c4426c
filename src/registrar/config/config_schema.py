"""JSON Schema-based validation for registrar YAML configuration.

The schema document ships next to this module as ``config-schema.json``.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from jsonschema import Draft202012Validator, ValidationError

logger = logging.getLogger(__name__)


def get_default_schema_path() -> Path:
    """Brief: Path of the bundled configuration schema.

    Inputs:
      - None.

    Outputs:
      - Path to ``config-schema.json`` beside this module.
    """

    return Path(__file__).resolve().parent / "config-schema.json"


def _load_schema(schema_path: Optional[Path] = None) -> Dict[str, Any]:
    path = schema_path or get_default_schema_path()
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def _format_errors(errors: List[ValidationError], *, config_path: Optional[str]) -> str:
    """Brief: Format jsonschema validation errors into a human-readable string.

    Inputs:
      - errors: List of jsonschema.ValidationError instances.
      - config_path: Optional path to the YAML config being validated.

    Outputs:
      - String suitable for display in logs or CLI output.
    """

    lines: List[str] = [f"Invalid configuration in {config_path or '<config dict>'}:"]
    for err in errors:
        instance_path = "/".join(str(p) for p in err.path) or "<root>"
        lines.append(f"- {instance_path}: {err.message}")
    return "\n".join(lines)


def validate_config(
    cfg: Dict[str, Any],
    *,
    config_path: Optional[str] = None,
    schema_path: Optional[Path] = None,
) -> None:
    """Brief: Validate a parsed config mapping against the JSON Schema.

    Inputs:
      - cfg: Parsed YAML configuration mapping.
      - config_path: Source path, used only in error messages.
      - schema_path: Alternate schema file (tests).

    Outputs:
      - None; raises ValueError listing every violation.

    Example:
      >>> validate_config({"ttl": 30, "ttl_refresh": 10})
      >>> validate_config({"deregister": "never"})
      Traceback (most recent call last):
      ...
      ValueError: Invalid configuration in <config dict>:
      - deregister: 'never' is not one of ['always', 'on-success']
    """

    validator = Draft202012Validator(_load_schema(schema_path))
    errors = sorted(validator.iter_errors(cfg), key=lambda e: list(e.path))
    if errors:
        raise ValueError(_format_errors(errors, config_path=config_path))
    logger.debug("configuration %s passed schema validation", config_path or "<dict>")
