"""Signing key normalization and the signing identity derived from it.

Callers hand over key material in whatever shape their wallet tooling
produced: a bare 32-byte ed25519 seed as hex, a 64-byte "extended" key
(seed followed by the public key, as Go's ``ed25519.PrivateKey`` stores it)
or the ledger's canonical bech32 ``ed25519_sk1...`` text. Only the 32-byte
seed is ever used for signing.

Nothing in this module logs or persists key material.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from bech32 import bech32_decode, bech32_encode, convertbits
from pycardano import (
    Address,
    PaymentSigningKey,
    PaymentVerificationKey,
    Transaction,
    TransactionWitnessSet,
    VerificationKeyWitness,
)

from .errors import InvalidKeyError
from .models import SignedTransaction, UnsignedTransaction, is_hex, ledger_network

SIGNING_KEY_HRP = "ed25519_sk"
SEED_SIZE = 32
SEED_HEX_LENGTH = SEED_SIZE * 2
EXTENDED_KEY_HEX_LENGTH = SEED_HEX_LENGTH * 2


def _decode_bech32_seed(value: str) -> bytes | None:
    hrp, data = bech32_decode(value)
    if hrp != SIGNING_KEY_HRP or data is None:
        return None
    decoded = convertbits(data, 5, 8, False)
    if decoded is None or len(decoded) != SEED_SIZE:
        return None
    return bytes(decoded)


def normalize_signing_key(raw_key: str) -> str:
    """Return the canonical form of *raw_key*.

    * 64 hex characters (a 32-byte seed) are returned unchanged.
    * 128 hex characters (a 64-byte extended key) are cut down to the first
      64 characters; the trailing half is discarded without validation.
    * ``ed25519_sk1...`` bech32 keys that decode to a 32-byte seed pass
      through unchanged.

    A leading ``0x`` and surrounding whitespace are ignored. Anything else
    raises :class:`InvalidKeyError`.
    """

    if not isinstance(raw_key, str):
        raise InvalidKeyError("Signing key must be a string")
    key = raw_key.strip()
    if key.startswith(SIGNING_KEY_HRP):
        if _decode_bech32_seed(key) is None:
            raise InvalidKeyError("Signing key is not a valid ed25519_sk bech32 string")
        return key
    if key[:2].lower() == "0x":
        key = key[2:]
    if not is_hex(key):
        raise InvalidKeyError("Signing key must be hex encoded")
    if len(key) == SEED_HEX_LENGTH:
        return key
    if len(key) == EXTENDED_KEY_HEX_LENGTH:
        return key[:SEED_HEX_LENGTH]
    raise InvalidKeyError(
        f"Invalid signing key length: {len(key)} hex characters, expected "
        f"{SEED_HEX_LENGTH} or {EXTENDED_KEY_HEX_LENGTH}"
    )


def seed_from_key(canonical_key: str) -> bytes:
    """Decode a normalized key into its 32-byte seed."""

    if canonical_key.startswith(SIGNING_KEY_HRP):
        seed = _decode_bech32_seed(canonical_key)
        if seed is None:
            raise InvalidKeyError("Signing key is not a valid ed25519_sk bech32 string")
        return seed
    if len(canonical_key) != SEED_HEX_LENGTH or not is_hex(canonical_key):
        raise InvalidKeyError("Signing key is not normalized")
    return bytes.fromhex(canonical_key)


def seed_to_bech32(seed: bytes) -> str:
    """Render a seed in the ledger's ``ed25519_sk1...`` text encoding."""

    if len(seed) != SEED_SIZE:
        raise InvalidKeyError(f"Seed must be {SEED_SIZE} bytes, got {len(seed)}")
    return bech32_encode(SIGNING_KEY_HRP, convertbits(seed, 8, 5))


@dataclass
class SigningIdentity:
    """Wallet identity selected from a normalized signing key.

    The address is the enterprise payment address of the verification key,
    with no staking part.
    """

    address: str
    verification_key: PaymentVerificationKey
    _signing_key: PaymentSigningKey | None = field(default=None, repr=False)

    @classmethod
    def from_key(cls, canonical_key: str, network: str) -> "SigningIdentity":
        signing_key = PaymentSigningKey.from_primitive(seed_from_key(canonical_key))
        verification_key = PaymentVerificationKey.from_signing_key(signing_key)
        address = Address(payment_part=verification_key.hash(), network=ledger_network(network))
        return cls(
            address=str(address),
            verification_key=verification_key,
            _signing_key=signing_key,
        )

    def sign_transaction(self, unsigned: UnsignedTransaction) -> SignedTransaction:
        """Witness *unsigned* with this key over its body hash."""

        if self._signing_key is None:
            raise RuntimeError("Signing identity has already been released")
        signature = self._signing_key.sign(unsigned.body.hash())
        witness = VerificationKeyWitness(self.verification_key, signature)
        transaction = Transaction(unsigned.body, TransactionWitnessSet(vkey_witnesses=[witness]))
        return SignedTransaction(transaction)

    def forget(self) -> None:
        """Drop the private key reference once the invocation is over."""

        self._signing_key = None
