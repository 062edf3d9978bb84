"""Log format selection for the stub server."""

import os
from typing import Literal


LogFormat = Literal["json", "console", "plain"]

ENV_VAR_NAME = "STUB_SERVER_LOG_FORMAT"

_OUTPUT_ALIASES: dict[str, LogFormat] = {
    "json": "json",
    "plain": "plain",
    "console": "console",
    "auto": "console",
    "rich": "console",
}


def get_log_format(cli_override: str | None = None) -> LogFormat:
    """
    Get the log format with priority: CLI parameter > Environment variable > Default (console).

    Accepts the log formats themselves plus the console aliases ``auto`` and
    ``rich``. Unknown values fall through to the next source.

    Args:
        cli_override: Optional CLI parameter value that takes precedence

    Returns:
        LogFormat value
    """
    for candidate in (cli_override, os.environ.get(ENV_VAR_NAME)):
        if candidate:
            resolved = _OUTPUT_ALIASES.get(candidate.strip().lower())
            if resolved:
                return resolved

    return "console"
