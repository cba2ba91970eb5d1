"""
Reversible URL obfuscation for anonymous mode.

A token is ``<payload>.<checksum>`` where payload is the unpadded base64url
encoding of the URL's UTF-8 bytes and checksum is the CRC-32 of the same
bytes as 8 lowercase hex digits. This keeps the target out of history and
referrer strings and detects corruption in transit; it is not encryption.
The injected client script (webrelay.rewrite.client_script) computes the
identical token, so any change here must be mirrored there.
"""

import base64
import binascii
import logging
import re
import zlib

from webrelay.proxy.errors import ChecksumMismatch, MalformedToken

logger = logging.getLogger("uvicorn.error")

CHECKSUM_LENGTH = 8
PAYLOAD_RE = re.compile(r"[A-Za-z0-9_-]+")


def checksum(data: bytes) -> str:
    return f"{zlib.crc32(data) & 0xFFFFFFFF:08x}"


def encode(url: str) -> str:
    raw = url.encode("utf-8")
    payload = base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")
    return f"{payload}.{checksum(raw)}"


def decode(token: str) -> str:
    """Turn a token back into its URL, failing closed on any inconsistency."""
    if not token:
        raise MalformedToken("Invalid proxy token")

    payload, sep, expected = token.strip().rpartition(".")
    if not sep or not PAYLOAD_RE.fullmatch(payload) or len(expected) != CHECKSUM_LENGTH:
        raise MalformedToken("Invalid proxy token")

    try:
        padded = payload + "=" * (-len(payload) % 4)
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
        url = raw.decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError):
        raise MalformedToken("Invalid proxy token")

    if checksum(raw) != expected:
        logger.warning("[Codec] Checksum mismatch - possible tampering")
        raise ChecksumMismatch("Proxy token checksum mismatch")
    return url
