"""GZip + Base64 codec used by every XML payload on the wire."""

from __future__ import annotations

import base64
import binascii
import gzip


def compress(data: bytes | str) -> bytes:
    if isinstance(data, str):
        data = data.encode("utf-8")
    return gzip.compress(data, compresslevel=9)


def decompress(data: bytes) -> bytes:
    try:
        return gzip.decompress(data)
    except (OSError, EOFError) as exc:
        raise ValueError(f"Conteudo GZip invalido: {exc}") from exc


def compress_and_encode(data: bytes | str) -> str:
    """GZip compress and Base64 encode, ready for a JSON payload field."""
    return base64.b64encode(compress(data)).decode("ascii")


def decode_and_decompress_bytes(encoded: str) -> bytes:
    try:
        raw = base64.b64decode(encoded, validate=True)
    except binascii.Error as exc:
        raise ValueError(f"Base64 invalido: {exc}") from exc
    return decompress(raw)


def decode_and_decompress(encoded: str) -> str:
    """Inverse of ``compress_and_encode`` for text content (UTF-8)."""
    return decode_and_decompress_bytes(encoded).decode("utf-8")
