from __future__ import annotations

import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey
from pycardano import Address, Network, TransactionBody

from lcn_transfer.errors import InvalidKeyError
from lcn_transfer.keys import (
    SigningIdentity,
    normalize_signing_key,
    seed_from_key,
    seed_to_bech32,
)
from lcn_transfer.models import UnsignedTransaction

SEED_HEX = "58206f3b6f9e8e23f9c6c4c9d5f8a1b2c3d4e5f6a7b8c9d0e1f2a3b4c5d6e7f8"
PUBKEY_HALF = "d75a980182b10ab7d54bfed3c964073a0ee172f3daa62325af021a68f707511a"


def test_seed_hex_is_returned_unchanged() -> None:
    assert normalize_signing_key(SEED_HEX) == SEED_HEX
    assert normalize_signing_key(SEED_HEX.upper()) == SEED_HEX.upper()


def test_extended_key_is_truncated_to_seed() -> None:
    assert normalize_signing_key(SEED_HEX + PUBKEY_HALF) == SEED_HEX


def test_extended_key_tail_is_not_validated() -> None:
    assert normalize_signing_key(SEED_HEX + "00" * 32) == SEED_HEX


def test_hex_prefix_and_whitespace_are_ignored() -> None:
    assert normalize_signing_key(f"  0x{SEED_HEX}\n") == SEED_HEX


@pytest.mark.parametrize("length", [0, 2, 62, 63, 65, 96, 127, 129, 130])
def test_other_lengths_are_rejected(length: int) -> None:
    with pytest.raises(InvalidKeyError):
        normalize_signing_key("a" * length)


def test_non_hex_key_is_rejected() -> None:
    with pytest.raises(InvalidKeyError):
        normalize_signing_key("zz" + SEED_HEX[2:])


def test_non_string_key_is_rejected() -> None:
    with pytest.raises(InvalidKeyError):
        normalize_signing_key(1234)  # type: ignore[arg-type]


def test_bech32_key_passes_through() -> None:
    bech32_key = seed_to_bech32(bytes.fromhex(SEED_HEX))
    assert bech32_key.startswith("ed25519_sk1")
    assert normalize_signing_key(bech32_key) == bech32_key
    assert seed_from_key(bech32_key) == bytes.fromhex(SEED_HEX)


def test_corrupted_bech32_key_is_rejected() -> None:
    bech32_key = seed_to_bech32(bytes.fromhex(SEED_HEX))
    corrupted = bech32_key[:-1] + ("q" if bech32_key[-1] != "q" else "p")
    with pytest.raises(InvalidKeyError):
        normalize_signing_key(corrupted)


def test_identity_is_identical_for_seed_and_extended_forms() -> None:
    from_seed = SigningIdentity.from_key(normalize_signing_key(SEED_HEX), "preprod")
    from_extended = SigningIdentity.from_key(normalize_signing_key(SEED_HEX + PUBKEY_HALF), "preprod")
    from_bech32 = SigningIdentity.from_key(seed_to_bech32(bytes.fromhex(SEED_HEX)), "preprod")

    assert from_seed.address == from_extended.address == from_bech32.address
    assert from_seed.verification_key.payload == from_extended.verification_key.payload


def test_identity_address_is_enterprise_address_of_key() -> None:
    testnet = SigningIdentity.from_key(SEED_HEX, "preprod")
    mainnet = SigningIdentity.from_key(SEED_HEX, "mainnet")

    assert testnet.address.startswith("addr_test1")
    assert mainnet.address.startswith("addr1")
    parsed = Address.from_primitive(testnet.address)
    assert parsed.payment_part == testnet.verification_key.hash()
    assert parsed.staking_part is None
    assert parsed.network == Network.TESTNET
    assert len(testnet.verification_key.payload) == 32


def test_signature_covers_body_hash() -> None:
    identity = SigningIdentity.from_key(SEED_HEX, "preprod")
    unsigned = UnsignedTransaction(TransactionBody(fee=170_000))

    signed = identity.sign_transaction(unsigned)

    assert signed.tx_hash == unsigned.tx_hash
    (witness,) = signed.witnesses
    assert witness.vkey.payload == identity.verification_key.payload
    public_key = Ed25519PublicKey.from_public_bytes(identity.verification_key.payload)
    public_key.verify(witness.signature, bytes.fromhex(unsigned.tx_hash))


def test_forgotten_identity_cannot_sign() -> None:
    identity = SigningIdentity.from_key(SEED_HEX, "preprod")
    identity.forget()

    with pytest.raises(RuntimeError):
        identity.sign_transaction(UnsignedTransaction(TransactionBody(fee=0)))


def test_key_material_is_not_in_repr() -> None:
    identity = SigningIdentity.from_key(SEED_HEX, "preprod")
    assert SEED_HEX not in repr(identity)
