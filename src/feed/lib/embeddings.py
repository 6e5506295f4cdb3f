"""Shared embedding utilities (packing, unpacking, mock generation).

These helpers are used by the post store and the embedding sources.
"""

import hashlib
import math
import random
import struct

MOCK_MODEL = "mock-model"
MOCK_DIMENSIONS = 384


def pack_vector(vec: list[float]) -> bytes:
    """Encode a list of floats as little-endian float64 bytes.

    float64 keeps stored vectors bit-identical to the floats that were passed in.
    """
    if vec is None:
        raise TypeError("vec must not be None")
    if not isinstance(vec, (list, tuple)):
        raise TypeError("vec must be a list or tuple of floats")
    return struct.pack(f"<{len(vec)}d", *vec)


def unpack_vector(raw: bytes) -> list[float]:
    """Decode little-endian float64 bytes produced by :func:`pack_vector`."""
    if len(raw) % 8 != 0:
        raise ValueError("invalid float64 byte length")
    count = len(raw) // 8
    return list(struct.unpack(f"<{count}d", raw))


def mock_embedding(text: str, dimensions: int = MOCK_DIMENSIONS) -> list[float]:
    """Deterministic pseudo-embedding derived from the character codes of *text*.

    Each component is ``sin(code + i) * 0.1`` plus noise in ``[-0.1, 0.1)``
    drawn from a generator seeded by a hash of the text, so identical text
    always yields the identical vector.
    """
    seed = int.from_bytes(hashlib.blake2b(text.encode("utf-8"), digest_size=8).digest(), "big")
    rng = random.Random(seed)
    vec = []
    for i in range(dimensions):
        code = ord(text[i % len(text)]) if text else 0
        vec.append(math.sin(code + i) * 0.1 + (rng.random() - 0.5) * 0.2)
    return vec
