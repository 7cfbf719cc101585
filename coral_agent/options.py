"""Typed agent options.

The orchestrator passes the options declared for an agent as environment
variables. An option with the file-system transport holds a path instead, and
the value is the file's content.

    model = get_option("MODEL", str, default="gpt-4.1-mini")
    max_tokens = get_option("MAX_TOKENS", int)
    system_prompt = get_option("SYSTEM_PROMPT", str, fs=True)
    keywords = get_options("KEYWORDS", str)
"""

from __future__ import annotations

import base64
import binascii
import os
from pathlib import Path
from typing import Any, Callable, TypeVar

from coral_agent.errors import OptionError

T = TypeVar("T")

MISSING: Any = object()
VALUE_SEPARATOR = ","

_BOOL_VALUES = {"true": True, "1": True, "false": False, "0": False}


def _parse_bool(raw: str) -> bool:
    try:
        return _BOOL_VALUES[raw.strip().lower()]
    except KeyError:
        raise ValueError(raw) from None


def _parse_int(raw: str) -> int:
    raw = raw.strip()
    if not raw.lstrip("+-").isdigit():
        raise ValueError(raw)
    return int(raw)


def _parse_bytes(raw: str) -> bytes:
    try:
        return base64.b64decode(raw, validate=True)
    except binascii.Error as e:
        raise ValueError(raw) from e


_PARSERS: dict[type, Callable[[str], Any]] = {
    str: str,
    int: _parse_int,
    float: lambda raw: float(raw.strip()),
    bool: _parse_bool,
    bytes: _parse_bytes,
}


def _parser(kind: type) -> Callable[[str], Any]:
    try:
        return _PARSERS[kind]
    except KeyError:
        raise TypeError(f"unsupported option kind: {kind!r}") from None


def _parse(name: str, raw: str, kind: type[T]) -> T:
    try:
        return _parser(kind)(raw)
    except ValueError as e:
        raise OptionError(name, f'bad value "{raw}" given for {name}') from e


def _read_file(name: str, path: str, kind: type[T]) -> T:
    try:
        data = Path(path).read_bytes()
    except OSError as e:
        raise OptionError(name, f"io error reading {path} for {name}: {e}") from e
    if kind is bytes:
        return data  # type: ignore[return-value]
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise OptionError(name, f"unexpected data in file {path}: invalid utf8 bytes") from e
    if kind is str:
        return text  # type: ignore[return-value]
    return _parse(name, text, kind)


def _raw(name: str) -> str | None:
    return os.environ.get(name)


def get_option(name: str, kind: type[T] = str, *, fs: bool = False, default: Any = MISSING) -> T:
    """Read one option.

    Args:
        name: Environment variable holding the option
        kind: str, int, float, bool or bytes. bytes values are base64 in the
            environment and raw in files.
        fs: The variable holds a file path; the value is the file's content
        default: Returned when the variable is unset

    Raises:
        OptionError: If the option is unset with no default, or cannot be parsed
    """
    _parser(kind)
    raw = _raw(name)
    if raw is None:
        if default is not MISSING:
            return default
        raise OptionError(name, f"option {name} is missing")
    if fs:
        return _read_file(name, raw, kind)
    return _parse(name, raw, kind)


def get_options(name: str, kind: type[T] = str, *, fs: bool = False) -> list[T]:
    """Read a list option.

    Values are separated by ``,``; file lists use the platform path separator.

    Raises:
        OptionError: If the option is unset or any item cannot be parsed
    """
    _parser(kind)
    raw = _raw(name)
    if raw is None:
        raise OptionError(name, f"option {name} is missing")
    if fs:
        return [_read_file(name, path, kind) for path in raw.split(os.pathsep)]
    return [_parse(name, item, kind) for item in raw.split(VALUE_SEPARATOR)]
