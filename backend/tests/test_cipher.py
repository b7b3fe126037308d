"""Tests for AES-256-GCM streaming encryption."""
import pytest

from sealshare.core.errors import IntegrityError
from sealshare.core.keys import KeyProvider
from sealshare.services.cipher import (
    CHUNK_SIZE,
    IV_LENGTH,
    TAG_LENGTH,
    CipherStream,
    iter_bytes,
    read_stream,
)


async def encrypt_all(cipher, data, chunk_size=CHUNK_SIZE):
    stream = cipher.encrypt(iter_bytes(data, chunk_size))
    ciphertext = await read_stream(stream)
    return ciphertext, stream.iv, stream.tag


class TestRoundTrip:

    @pytest.mark.asyncio
    @pytest.mark.parametrize('data', [
        b'',
        b'hello1234',
        bytes(range(256)) * ((CHUNK_SIZE * 3) // 256 + 7),
    ], ids=['empty', 'small', 'multi-chunk'])
    async def test_decrypt_returns_plaintext(self, cipher, data):
        ciphertext, iv, tag = await encrypt_all(cipher, data)

        assert len(iv) == IV_LENGTH
        assert len(tag) == TAG_LENGTH
        assert len(ciphertext) == len(data)
        assert await read_stream(cipher.decrypt(iter_bytes(ciphertext, 1000), iv, tag)) == data

    @pytest.mark.asyncio
    async def test_odd_chunking_does_not_matter(self, cipher):
        data = b'x' * 10_001
        ciphertext, iv, tag = await encrypt_all(cipher, data, chunk_size=7)
        assert await read_stream(cipher.decrypt(iter_bytes(ciphertext, 4096), iv, tag)) == data

    @pytest.mark.asyncio
    async def test_verify_accepts_untouched_ciphertext(self, cipher):
        ciphertext, iv, tag = await encrypt_all(cipher, b'payload')
        await cipher.verify(iter_bytes(ciphertext), iv, tag)


class TestTamperDetection:

    @pytest.mark.asyncio
    @pytest.mark.parametrize('position', [0, 50, 99])
    async def test_flipped_ciphertext_bit(self, cipher, position):
        ciphertext, iv, tag = await encrypt_all(cipher, b'a' * 100)
        tampered = bytearray(ciphertext)
        tampered[position] ^= 0x01

        with pytest.raises(IntegrityError):
            await read_stream(cipher.decrypt(iter_bytes(bytes(tampered)), iv, tag))

    @pytest.mark.asyncio
    async def test_flipped_tag_bit(self, cipher):
        ciphertext, iv, tag = await encrypt_all(cipher, b'a' * 100)
        bad_tag = bytes([tag[0] ^ 0x80]) + tag[1:]

        with pytest.raises(IntegrityError):
            await cipher.verify(iter_bytes(ciphertext), iv, bad_tag)

    @pytest.mark.asyncio
    async def test_truncated_ciphertext(self, cipher):
        ciphertext, iv, tag = await encrypt_all(cipher, b'a' * 100)

        with pytest.raises(IntegrityError):
            await read_stream(cipher.decrypt(iter_bytes(ciphertext[:-1]), iv, tag))

    @pytest.mark.asyncio
    async def test_wrong_key(self, cipher):
        ciphertext, iv, tag = await encrypt_all(cipher, b'secret')
        other = CipherStream(KeyProvider(b'\x01' * 32))

        with pytest.raises(IntegrityError):
            await other.verify(iter_bytes(ciphertext), iv, tag)

    @pytest.mark.asyncio
    async def test_wrong_length_iv_is_integrity_error(self, cipher):
        ciphertext, iv, tag = await encrypt_all(cipher, b'secret')

        with pytest.raises(IntegrityError):
            await read_stream(cipher.decrypt(iter_bytes(ciphertext), iv[:8], tag))


class TestEncryptedStream:

    @pytest.mark.asyncio
    async def test_same_plaintext_gives_different_iv_and_ciphertext(self, cipher):
        first = await encrypt_all(cipher, b'same bytes')
        second = await encrypt_all(cipher, b'same bytes')

        assert first[1] != second[1]
        assert first[0] != second[0]

    @pytest.mark.asyncio
    async def test_tag_unavailable_until_consumed(self, cipher):
        stream = cipher.encrypt(iter_bytes(b'data'))
        with pytest.raises(RuntimeError):
            stream.tag

        await read_stream(stream)
        assert len(stream.tag) == TAG_LENGTH

    @pytest.mark.asyncio
    async def test_can_only_be_consumed_once(self, cipher):
        stream = cipher.encrypt(iter_bytes(b'data'))
        await read_stream(stream)

        with pytest.raises(RuntimeError):
            await read_stream(stream)
