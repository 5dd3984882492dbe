"""Windows path references and their translation to the VM share."""
from __future__ import annotations

from dataclasses import dataclass

_SEPARATORS = ("\\", "/")


@dataclass(slots=True, frozen=True)
class PathReference:
    """A drive-letter path such as ``C:\\data`` found inside a payload string.

    ``suffix`` holds whatever followed the sub-path verbatim, for bind
    entries that is the container side and mount mode (``:/app:ro``).
    """

    drive: str
    sub_path: str
    suffix: str = ""


def parse_path_reference(text: str, *, stop_at_colon: bool = False) -> PathReference | None:
    """Parse ``<letter>:<sep><remainder>`` or return ``None``.

    With ``stop_at_colon`` the sub-path ends at the next colon and must not be
    empty; everything from that colon on becomes the suffix.
    """

    if len(text) < 3:
        return None
    drive, colon, separator = text[0], text[1], text[2]
    if not (drive.isascii() and drive.isalpha()) or colon != ":" or separator not in _SEPARATORS:
        return None

    remainder = text[3:]
    if not stop_at_colon:
        return PathReference(drive=drive, sub_path=remainder)

    end = remainder.find(":")
    if end == -1:
        end = len(remainder)
    if end == 0:
        return None
    return PathReference(drive=drive, sub_path=remainder[:end], suffix=remainder[end:])


def translate(base: str, drive: str, sub_path: str) -> str:
    """Map ``drive`` + ``sub_path`` under ``base``: ``C``, ``a\\b`` -> ``<base>C/a/b``."""

    if not base.endswith("/"):
        base += "/"
    normalized = sub_path.replace("\\", "/")
    return f"{base}{drive.upper()}/{normalized}"


def translate_bind(entry: str, base: str) -> str | None:
    """Rewrite a ``source:destination[:mode]`` bind whose source is a drive path."""

    ref = parse_path_reference(entry, stop_at_colon=True)
    if ref is None:
        return None
    return translate(base, ref.drive, ref.sub_path) + ref.suffix


def translate_env(entry: str, base: str) -> str | None:
    """Rewrite the value of a ``KEY=VALUE`` entry when it is a drive path."""

    key, sep, value = entry.partition("=")
    if not sep:
        return None
    ref = parse_path_reference(value)
    if ref is None:
        return None
    return f"{key}={translate(base, ref.drive, ref.sub_path)}"
