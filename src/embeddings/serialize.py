"""Embedding serialization for sqlite-vec storage."""

import struct


def serialize_embedding(embedding: list[float]) -> bytes:
    """Pack as little-endian float32, the layout vec_distance_cosine reads."""
    return struct.pack(f'<{len(embedding)}f', *embedding)


def deserialize_embedding(data: bytes) -> list[float]:
    """Unpack a float32 blob; the dimension follows from the blob length."""
    return list(struct.unpack(f'<{len(data) // 4}f', data))
