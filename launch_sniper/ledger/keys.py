"""
Wallet keys and signing.

Sui wallets are plain ed25519 keypairs. The address is the blake2b-256 hash
of the signature scheme flag followed by the public key, and a transaction
signature is produced over the blake2b-256 digest of the intent-prefixed
transaction bytes.
"""

import base64
import binascii
import hashlib
from dataclasses import dataclass

import bech32
from nacl.signing import SigningKey

ED25519_FLAG = 0x00
PRIVATE_KEY_PREFIX = "suiprivkey"
# IntentScope::TransactionData, IntentVersion::V0, AppId::Sui
TRANSACTION_INTENT = bytes([0, 0, 0])


def blake2b_256(data: bytes) -> bytes:
    return hashlib.blake2b(data, digest_size=32).digest()


def address_from_public_key(public_key: bytes) -> str:
    return "0x" + blake2b_256(bytes([ED25519_FLAG]) + public_key).hex()


def _seed_from_bytes(raw: bytes) -> bytes:
    # Either the bare 32-byte seed or flag byte + seed (sui keystore format)
    if len(raw) == 32:
        return raw
    if len(raw) == 33 and raw[0] == ED25519_FLAG:
        return raw[1:]
    if len(raw) == 64:  # seed + public key
        return raw[:32]
    raise ValueError(f"unsupported key length: {len(raw)} bytes")


def decode_private_key(raw: str) -> bytes:
    """
    Turn a pasted private key into a 32-byte ed25519 seed.

    Accepts, in order:
    1. Bech32 ``suiprivkey1...`` strings (what wallets export)
    2. Base64 keystore entries (flag byte + seed, or the bare seed)
    3. Hex strings, with or without 0x
    """
    s = (raw or "").strip().strip("'").strip('"')
    if not s:
        raise ValueError("empty private key")

    if s.startswith(PRIVATE_KEY_PREFIX):
        hrp, data = bech32.bech32_decode(s)
        if hrp != PRIVATE_KEY_PREFIX or data is None:
            raise ValueError("invalid suiprivkey checksum")
        decoded = bech32.convertbits(data, 5, 8, False)
        if decoded is None:
            raise ValueError("invalid suiprivkey payload")
        payload = bytes(decoded)
        if payload[0] != ED25519_FLAG:
            raise ValueError("only ed25519 keys are supported")
        return _seed_from_bytes(payload)

    hx = s[2:] if s.lower().startswith("0x") else s
    if len(hx) in (64, 66, 128):
        try:
            return _seed_from_bytes(binascii.unhexlify(hx))
        except binascii.Error:
            pass

    try:
        return _seed_from_bytes(base64.b64decode(s, validate=True))
    except binascii.Error:
        raise ValueError("unsupported private key format") from None


def encode_private_key(seed: bytes) -> str:
    """Inverse of the bech32 branch of :func:`decode_private_key`."""
    data = bech32.convertbits(bytes([ED25519_FLAG]) + seed, 8, 5, True)
    return bech32.bech32_encode(PRIVATE_KEY_PREFIX, data)


@dataclass(frozen=True)
class Wallet:
    signing_key: SigningKey
    address: str

    @classmethod
    def from_seed(cls, seed: bytes) -> "Wallet":
        key = SigningKey(seed)
        return cls(signing_key=key, address=address_from_public_key(key.verify_key.encode()))

    @classmethod
    def from_private_key(cls, raw: str) -> "Wallet":
        return cls.from_seed(decode_private_key(raw))

    @property
    def public_key(self) -> bytes:
        return self.signing_key.verify_key.encode()

    def sign_transaction(self, tx_bytes: bytes) -> str:
        """Return the base64 serialized signature: flag || signature || public key."""
        digest = blake2b_256(TRANSACTION_INTENT + tx_bytes)
        signature = self.signing_key.sign(digest).signature
        return base64.b64encode(bytes([ED25519_FLAG]) + signature + self.public_key).decode()


def load_wallets(private_keys: list[str]) -> list[Wallet]:
    return [Wallet.from_private_key(pk) for pk in private_keys]
