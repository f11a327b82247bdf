"""Shared helpers for GitHub Actions scripts.

Covers the three runner touch points every action script needs: reading
``INPUT_*`` variables, reporting through workflow commands on stderr, and
appending step outputs to ``GITHUB_OUTPUT``.
"""

from __future__ import annotations

import logging
import os
import sys
import typing as typ
from pathlib import Path

__all__ = [
    "WorkflowCommandFormatter",
    "configure_logging",
    "normalize_input_env",
    "write_github_output",
    "write_step_outputs",
]


def _collect_normalization_updates(
    prefix: str, alt_prefix: str, *, prefer_dashed: bool
) -> tuple[dict[str, str], list[str]]:
    """Scan os.environ for dashed input keys and collect normalization updates.

    Returns a tuple of (updates, removals) where updates is a dict of normalized
    keys to values, and removals is a list of original dashed keys to remove.
    """
    updates: dict[str, str] = {}
    removals: list[str] = []

    for key, value in os.environ.items():
        if not key.startswith((prefix, alt_prefix)) or "-" not in key:
            continue
        normalized = key.replace("-", "_")
        if prefer_dashed or normalized not in os.environ:
            updates[normalized] = value
        removals.append(key)

    return updates, removals


def normalize_input_env(prefix: str = "INPUT_", *, prefer_dashed: bool = False) -> None:
    """Normalise INPUT_ environment variables to avoid duplicate keys.

    The runner exports an input named ``release-repo`` as
    ``INPUT_RELEASE-REPO``. This rewrites such keys to ``INPUT_RELEASE_REPO``
    so the cyclopts environment source can bind them, removing the dashed
    originals.

    Parameters
    ----------
    prefix : str, default="INPUT_"
        The environment variable prefix to normalise.
    prefer_dashed : bool, default=False
        If True, dashed variants override existing underscore keys.
        If False, existing underscore keys are preserved.
    """
    alt_prefix = prefix.replace("_", "-")
    updates, removals = _collect_normalization_updates(
        prefix, alt_prefix, prefer_dashed=prefer_dashed
    )
    for key, value in updates.items():
        os.environ[key] = value
    for key in removals:
        os.environ.pop(key, None)


class WorkflowCommandFormatter(logging.Formatter):
    """Render warnings and errors as GitHub workflow commands.

    ``::warning::`` and ``::error::`` lines become annotations in the run
    summary; info and debug records stay plain text.
    """

    _COMMANDS: typ.ClassVar[dict[int, str]] = {
        logging.DEBUG: "debug",
        logging.WARNING: "warning",
        logging.ERROR: "error",
        logging.CRITICAL: "error",
    }

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        command = self._COMMANDS.get(record.levelno)
        if command is None:
            return message
        # Workflow commands are single line; the runner decodes %0A.
        escaped = message.replace("%", "%25").replace("\r", "%0D")
        escaped = escaped.replace("\n", "%0A")
        return f"::{command}::{escaped}"


def configure_logging(*, stream: typ.TextIO | None = None) -> logging.Handler:
    """Route root logging to ``stream`` using :class:`WorkflowCommandFormatter`.

    Debug output is enabled when the runner sets ``RUNNER_DEBUG=1`` (the
    "Enable debug logging" re-run option).
    """
    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(WorkflowCommandFormatter("%(message)s"))
    root = logging.getLogger()
    for existing in list(root.handlers):
        if isinstance(existing.formatter, WorkflowCommandFormatter):
            root.removeHandler(existing)
    root.addHandler(handler)
    debug = os.environ.get("RUNNER_DEBUG", "").strip() == "1"
    root.setLevel(logging.DEBUG if debug else logging.INFO)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    return handler


def _format_scalar_output(key: str, value: str) -> str:
    """Format a scalar value for GitHub Actions output."""
    if "\n" in value or "\r" in value:
        delimiter = f"gh_{key.upper()}"
        return f"{key}<<{delimiter}\n{value}\n{delimiter}\n"
    return f"{key}={value}\n"


def write_github_output(file: Path, values: typ.Mapping[str, object]) -> None:
    """Append ``values`` to the GitHub Actions output ``file``.

    Parameters
    ----------
    file
        Target ``GITHUB_OUTPUT`` file that receives the exported values.
    values
        Mapping of output names to values. ``None`` becomes an empty string,
        booleans are written as ``true``/``false`` and multi-line strings use
        the heredoc syntax.
    """
    file.parent.mkdir(parents=True, exist_ok=True)
    with file.open("a", encoding="utf-8") as handle:
        for key, value in values.items():
            if value is None:
                text = ""
            elif isinstance(value, bool):
                text = "true" if value else "false"
            else:
                text = str(value)
            handle.write(_format_scalar_output(key, text))


def write_step_outputs(values: typ.Mapping[str, object]) -> None:
    """Write ``values`` to ``GITHUB_OUTPUT`` when running inside a workflow."""
    output_path = os.environ.get("GITHUB_OUTPUT")
    if not output_path:
        return
    write_github_output(Path(output_path), values)
