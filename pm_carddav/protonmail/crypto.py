"""OpenPGP primitives for contact cards.

Cards are protected with detached signatures: a signed card keeps its vCard
in cleartext next to an armored signature, an encrypted card carries an
armored message plus a signature over the plaintext. Reading a card never
returns a verdict up front; the signature is checked once the caller has
consumed the whole body (see :class:`MessageDetails`).
"""

from __future__ import annotations

import io
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import pgpy
from pgpy.constants import SymmetricKeyAlgorithm
from pgpy.errors import PGPError

from ..errors import CryptoError
from .contacts import CardType, ContactCard


class Keyring:
    """The owner's private keys.

    The first key is the primary one: it signs new cards and its public half
    is the recipient of encrypted cards. Passphrase-protected keys are only
    unlocked for the duration of a single operation.
    """

    def __init__(self, keys: list[pgpy.PGPKey], passphrase: str | None = None) -> None:
        if not keys:
            raise CryptoError("crypto: no private key available")
        self.keys = keys
        self._passphrase = passphrase

    @classmethod
    def from_blob(cls, armored: str | bytes, passphrase: str | None = None) -> Keyring:
        try:
            key, others = pgpy.PGPKey.from_blob(armored)
        except (PGPError, ValueError) as e:
            raise CryptoError(f"crypto: cannot load private key: {e}") from e
        if key.is_public:
            raise CryptoError("crypto: expected a private key, got a public key")
        keys = [key]
        for k in others.values():
            if k.is_primary and not k.is_public and k.fingerprint != key.fingerprint:
                keys.append(k)
        return cls(keys, passphrase)

    @classmethod
    def from_file(cls, path: str | Path, passphrase: str | None = None) -> Keyring:
        return cls.from_blob(Path(path).read_text(), passphrase)

    @property
    def primary(self) -> pgpy.PGPKey:
        return self.keys[0]

    @contextmanager
    def unlocked(self, key: pgpy.PGPKey) -> Iterator[pgpy.PGPKey]:
        """Yield ``key`` ready for private-key operations."""
        if not key.is_protected or key.is_unlocked:
            yield key
            return
        if self._passphrase is None:
            raise CryptoError("crypto: private key is protected and no passphrase was given")
        with key.unlock(self._passphrase):
            yield key

    def find(self, keyid: str) -> pgpy.PGPKey | None:
        """Find the key owning ``keyid``, either as primary or as subkey."""
        for key in self.keys:
            if key.fingerprint.keyid == keyid or keyid in key.subkeys:
                return key
        return None


def _public(key: pgpy.PGPKey) -> pgpy.PGPKey:
    return key if key.is_public else key.pubkey


def _detached_signature(data: bytes, keyring: Keyring) -> str:
    with keyring.unlocked(keyring.primary) as key:
        return str(key.sign(data))


def new_signed_card(data: bytes, keyring: Keyring) -> ContactCard:
    """Create a cleartext card with a detached signature."""
    try:
        signature = _detached_signature(data, keyring)
    except (PGPError, ValueError) as e:
        raise CryptoError(f"crypto: cannot sign card: {e}") from e
    return ContactCard(type=CardType.SIGNED, data=data.decode("utf-8"), signature=signature)


def new_encrypted_card(
    data: bytes, recipients: list[pgpy.PGPKey], keyring: Keyring
) -> ContactCard:
    """Create a card encrypted to ``recipients`` and signed by the keyring."""
    if not recipients:
        raise CryptoError("crypto: no recipient for encrypted card")
    try:
        cipher = SymmetricKeyAlgorithm.AES256
        session_key = cipher.gen_key()
        encrypted = pgpy.PGPMessage.new(data, format="b")
        for recipient in recipients:
            encrypted = _public(recipient).encrypt(
                encrypted, cipher=cipher, sessionkey=session_key
            )
        del session_key
        signature = _detached_signature(data, keyring)
    except (PGPError, ValueError) as e:
        raise CryptoError(f"crypto: cannot encrypt card: {e}") from e
    return ContactCard(
        type=CardType.ENCRYPTED_SIGNED, data=str(encrypted), signature=signature
    )


class _VerifyingReader(io.RawIOBase):
    """Byte stream that checks a detached signature when it reaches EOF."""

    def __init__(self, data: bytes, verify) -> None:
        self._buf = io.BytesIO(data)
        self._verify = verify
        self._consumed = bytearray()
        self.done = False
        self.error: CryptoError | None = None

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        n = self._buf.readinto(b)
        if n:
            self._consumed += bytes(b[:n])
        elif not self.done:
            self.done = True
            self.error = self._verify(bytes(self._consumed))
        return n


class MessageDetails:
    """Result of opening a card.

    ``unverified_body`` must be read to EOF before ``signature_error`` means
    anything; until then it reports that the signature was not checked.
    """

    def __init__(self, card: ContactCard, plaintext: bytes, keyring: Keyring) -> None:
        self.is_encrypted = card.encrypted
        self.is_signed = card.signed
        if card.signed:
            self._reader: _VerifyingReader | None = _VerifyingReader(
                plaintext, lambda consumed: _verify(consumed, card.signature, keyring)
            )
            self.unverified_body: io.RawIOBase = self._reader
        else:
            self._reader = None
            self.unverified_body = io.BytesIO(plaintext)

    @property
    def signature_error(self) -> CryptoError | None:
        if self._reader is None:
            return None
        if not self._reader.done:
            return CryptoError("crypto: signature not checked, body was not read to the end")
        return self._reader.error


def _verify(data: bytes, armored_signature: str, keyring: Keyring) -> CryptoError | None:
    try:
        signature = pgpy.PGPSignature.from_blob(armored_signature)
    except (PGPError, ValueError) as e:
        return CryptoError(f"crypto: malformed signature: {e}")

    key = keyring.find(signature.signer)
    if key is None:
        return CryptoError(f"crypto: signature made by unknown key {signature.signer}")

    try:
        verification = _public(key).verify(data, signature)
    except (PGPError, ValueError) as e:
        return CryptoError(f"crypto: cannot verify signature: {e}")
    if not verification:
        return CryptoError("crypto: invalid signature")
    return None


def read_card(card: ContactCard, keyring: Keyring) -> MessageDetails:
    """Open a card, decrypting it if needed."""
    if not card.encrypted:
        return MessageDetails(card, card.data.encode("utf-8"), keyring)

    try:
        message = pgpy.PGPMessage.from_blob(card.data)
    except (PGPError, ValueError) as e:
        raise CryptoError(f"crypto: malformed encrypted card: {e}") from e

    key = next((k for k in keyring.keys if _can_decrypt(k, message)), None)
    if key is None:
        raise CryptoError("crypto: card is not encrypted to any available key")

    try:
        with keyring.unlocked(key) as unlocked:
            decrypted = unlocked.decrypt(message)
    except (PGPError, ValueError) as e:
        raise CryptoError(f"crypto: cannot decrypt card: {e}") from e

    plaintext = decrypted.message
    if isinstance(plaintext, str):
        plaintext = plaintext.encode("utf-8")
    return MessageDetails(card, bytes(plaintext), keyring)


def _can_decrypt(key: pgpy.PGPKey, message: pgpy.PGPMessage) -> bool:
    encrypters = message.encrypters
    return key.fingerprint.keyid in encrypters or any(
        keyid in encrypters for keyid in key.subkeys
    )
