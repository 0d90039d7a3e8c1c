"""
Input sanitization.

Sanitization here is rejecting, not permissive: callers compare the cleaned
text with the original and refuse the original when they differ.
"""

from __future__ import annotations


class InvalidEncoding(ValueError):
    """Raised when input bytes are not valid UTF-8 text."""


def decode_text(data: str | bytes) -> str:
    """
    Return `data` as text, enforcing strict UTF-8.

    Raises:
        InvalidEncoding: For undecodable bytes or strings holding lone surrogates.
    """
    if isinstance(data, bytes):
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise InvalidEncoding(str(exc)) from exc
    try:
        data.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise InvalidEncoding(str(exc)) from exc
    return data


def _is_kept(char: str) -> bool:
    return char in "\t\n" or " " <= char <= "~"


def sanitize(text: str) -> str:
    """Keep printable ASCII, tab and newline; drop everything else."""
    return "".join(char for char in text if _is_kept(char))


def has_control_characters(text: str) -> bool:
    """True if `text` holds C0/C1 control characters other than tab, LF and CR."""
    for char in text:
        code = ord(char)
        if char in "\t\n\r":
            continue
        if code < 32 or code == 127 or 0x80 <= code <= 0x9F:
            return True
    return False
