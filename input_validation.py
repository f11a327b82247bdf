"""Validation helpers for GitHub Actions inputs.

GitHub Actions forwards every ``with:`` input as a string. These helpers turn
those strings into typed values and raise :class:`InputValidationError` before
any network call is made when an input is malformed.
"""

from __future__ import annotations

import dataclasses as dc
import re

__all__ = [
    "InputValidationError",
    "RepositoryRef",
    "coerce_bool",
    "parse_numeric_id",
    "parse_repository",
    "validate_tag_name",
]

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}

_SLUG_PART = re.compile(r"^[A-Za-z0-9_.-]+$")
_DIGITS = re.compile(r"^[0-9]+$")
# Characters git refuses in ref names (see git-check-ref-format).
_FORBIDDEN_REF_CHARS = re.compile(r"[\x00-\x20\x7f~^:?*\[\\]")


class InputValidationError(ValueError):
    """Raised when an action input cannot be interpreted."""


@dc.dataclass(frozen=True, slots=True)
class RepositoryRef:
    """Repository identified by its owner and name."""

    owner: str
    name: str

    @property
    def slug(self) -> str:
        """Return the ``owner/name`` form used in API paths."""
        return f"{self.owner}/{self.name}"

    def __str__(self) -> str:
        return self.slug


def coerce_bool(value: object, *, default: bool, parameter: str = "value") -> bool:
    """Coerce ``value`` to bool, returning ``default`` for ``None``/empty.

    Parameters
    ----------
    value
        The value to coerce. Accepts bool, str, or None.
    default
        The value to return when ``value`` is None or an empty string.
    parameter
        Input name used in the error message.

    Returns
    -------
    bool
        The coerced boolean value.

    Raises
    ------
    InputValidationError
        If the value is a string that cannot be interpreted as a boolean.

    Examples
    --------
    >>> coerce_bool("true", default=False)
    True
    >>> coerce_bool(None, default=True)
    True
    >>> coerce_bool(" OFF ", default=True)
    False
    """
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalised = value.strip().lower()
        if not normalised:
            return default
        if normalised in _TRUTHY:
            return True
        if normalised in _FALSY:
            return False
    msg = f"Invalid value for {parameter}: {value!r}. Expected a boolean-like string."
    raise InputValidationError(msg)


def parse_repository(value: str, *, parameter: str = "repository") -> RepositoryRef:
    """Parse an ``owner/name`` string into a :class:`RepositoryRef`.

    Exactly one ``/`` is allowed and both halves must be non-empty and made of
    ``[A-Za-z0-9_.-]`` characters. Surrounding whitespace is rejected rather
    than trimmed.

    Examples
    --------
    >>> parse_repository("octo-org/hello.world")
    RepositoryRef(owner='octo-org', name='hello.world')
    """
    parts = (value or "").split("/")
    if len(parts) != 2:
        msg = f"Invalid {parameter} {value!r}: expected 'owner/name'"
        raise InputValidationError(msg)
    owner, name = parts
    for part in (owner, name):
        if not _SLUG_PART.fullmatch(part) or part in {".", ".."}:
            msg = (
                f"Invalid {parameter} {value!r}: owner and name may only contain "
                "letters, digits, '_', '.' and '-'"
            )
            raise InputValidationError(msg)
    return RepositoryRef(owner=owner, name=name)


def parse_numeric_id(value: str | int, *, parameter: str) -> int:
    """Return ``value`` as an integer identifier.

    Only plain digit strings are accepted; signs, whitespace inside the value,
    decimals and the empty string are rejected.
    """
    if isinstance(value, bool):
        msg = f"Invalid {parameter} {value!r}: expected a numeric identifier"
        raise InputValidationError(msg)
    if isinstance(value, int):
        if value < 0:
            msg = f"Invalid {parameter} {value!r}: expected a numeric identifier"
            raise InputValidationError(msg)
        return value
    text = (value or "").strip()
    # ``str.isdigit`` accepts superscripts and other Unicode digits.
    if not _DIGITS.fullmatch(text):
        msg = f"Invalid {parameter} {value!r}: expected a numeric identifier"
        raise InputValidationError(msg)
    return int(text, base=10)


def validate_tag_name(value: str) -> str:
    """Return ``value`` stripped when it is usable as a tag name.

    Applies the subset of ``git check-ref-format`` rules that matter for a
    single tag: no control characters, spaces or ``~^:?*[\\``, no ``..``, no
    ``@{``, no leading or trailing ``/`` or ``.``, no ``.lock`` suffix.
    """
    name = (value or "").strip()
    if name.startswith("refs/tags/"):
        name = name.removeprefix("refs/tags/")
    problems: list[str] = []
    if not name:
        problems.append("tag name is empty")
    if _FORBIDDEN_REF_CHARS.search(name):
        problems.append("contains forbidden characters")
    if ".." in name or "@{" in name or "//" in name:
        problems.append("contains '..', '@{' or '//'")
    if name.startswith(("/", ".")) or name.endswith(("/", ".")):
        problems.append("starts or ends with an invalid character")
    if name.endswith(".lock") or name == "@":
        problems.append("is a reserved name")
    if problems:
        msg = f"Invalid tag {value!r}: {'; '.join(problems)}"
        raise InputValidationError(msg)
    return name
