"""AES-256-GCM streaming encryption for stored objects.

Ciphertext is produced and consumed as async iterators of ``bytes`` so that
storage and HTTP layers never need the whole object in memory. The IV and the
authentication tag travel next to the ciphertext (in the share record), not
inside it.
"""
from __future__ import annotations

import logging
import os
from typing import AsyncIterable, AsyncIterator

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from sealshare.core.errors import IntegrityError
from sealshare.core.keys import KeyProvider

logger = logging.getLogger("sealshare")

IV_LENGTH = 12
TAG_LENGTH = 16
CHUNK_SIZE = 64 * 1024


async def iter_bytes(data: bytes, chunk_size: int = CHUNK_SIZE) -> AsyncIterator[bytes]:
    for offset in range(0, len(data), chunk_size):
        yield data[offset:offset + chunk_size]


async def read_stream(chunks: AsyncIterable[bytes]) -> bytes:
    parts = []
    async for chunk in chunks:
        parts.append(chunk)
    return b"".join(parts)


class EncryptedStream:
    """Ciphertext of one encryption call.

    Iterate it exactly once; ``tag`` is only known after the last chunk.
    """

    def __init__(self, source: AsyncIterable[bytes], key: bytes):
        self.iv = os.urandom(IV_LENGTH)
        self._source = source
        self._encryptor = Cipher(algorithms.AES(key), modes.GCM(self.iv)).encryptor()
        self._tag: bytes | None = None
        self._started = False

    async def __aiter__(self) -> AsyncIterator[bytes]:
        if self._started:
            raise RuntimeError("EncryptedStream can only be consumed once")
        self._started = True

        async for chunk in self._source:
            if not chunk:
                continue
            out = self._encryptor.update(chunk)
            if out:
                yield out

        tail = self._encryptor.finalize()
        self._tag = self._encryptor.tag
        if tail:
            yield tail

    @property
    def tag(self) -> bytes:
        if self._tag is None:
            raise RuntimeError("authentication tag is only available after the stream is consumed")
        return self._tag


class CipherStream:
    def __init__(self, keys: KeyProvider):
        self._keys = keys

    def encrypt(self, plaintext: AsyncIterable[bytes]) -> EncryptedStream:
        return EncryptedStream(plaintext, self._keys.key)

    def _decryptor(self, iv: bytes, tag: bytes):
        if len(iv) != IV_LENGTH or len(tag) != TAG_LENGTH:
            raise IntegrityError()
        return Cipher(algorithms.AES(self._keys.key), modes.GCM(iv, tag)).decryptor()

    async def decrypt(
        self, ciphertext: AsyncIterable[bytes], iv: bytes, tag: bytes
    ) -> AsyncIterator[bytes]:
        """Yield plaintext; raises ``IntegrityError`` once the tag fails.

        Bytes yielded before the failure are not authenticated. Callers that
        must not release unauthenticated plaintext run ``verify`` first.
        """
        decryptor = self._decryptor(iv, tag)
        async for chunk in ciphertext:
            out = decryptor.update(chunk)
            if out:
                yield out
        try:
            tail = decryptor.finalize()
        except InvalidTag:
            raise IntegrityError() from None
        if tail:
            yield tail

    async def verify(self, ciphertext: AsyncIterable[bytes], iv: bytes, tag: bytes) -> None:
        decryptor = self._decryptor(iv, tag)
        async for chunk in ciphertext:
            decryptor.update(chunk)
        try:
            decryptor.finalize()
        except InvalidTag:
            raise IntegrityError() from None
