"""
Test configuration for ordtx tests.
"""

from __future__ import annotations

import itertools
from collections.abc import Callable

import pytest
from coincurve import PrivateKey

from ordtx.config import BITCOIN_MAINNET, BITCOIN_REGTEST, BlockchainConfig
from ordtx.models import AddressType, InscriptionRef, UnspentOutput
from ordtx.scripts import pubkey_to_address, script_pubkey_for
from ordtx.transaction import PartialTransaction

# Fixed-size signature material so fee arithmetic is deterministic
FAKE_SIG = b"\x30" * 72
FAKE_PUBKEY = b"\x02" * 33
FAKE_SCHNORR_SIG = b"\x01" * 64
FAKE_REDEEM_SCRIPT = b"\x00\x14" + b"\x11" * 20


class FakeSigner:
    """Signs nothing, but attaches witnesses and script sigs of realistic size."""

    def __init__(self, fail: bool = False):
        self.calls = 0
        self.fail = fail

    async def __call__(self, tx: PartialTransaction) -> None:
        self.calls += 1
        if self.fail:
            raise RuntimeError("signer unavailable")
        for inp in tx.inputs:
            if inp.address_type.is_taproot:
                inp.final_script_witness = [FAKE_SCHNORR_SIG]
            elif inp.address_type.is_legacy:
                # push(72-byte sig) + push(33-byte pubkey)
                inp.final_script_sig = b"\x48" + b"\x30" * 72 + b"\x21" + FAKE_PUBKEY
            else:
                inp.final_script_witness = [FAKE_SIG, FAKE_PUBKEY]
                if inp.address_type.is_wrapped_segwit:
                    inp.final_script_sig = b"\x16" + FAKE_REDEEM_SCRIPT


@pytest.fixture
def fake_signer() -> FakeSigner:
    return FakeSigner()


@pytest.fixture
def failing_signer() -> FakeSigner:
    return FakeSigner(fail=True)


@pytest.fixture
def private_key() -> PrivateKey:
    """Fixed test key (not for production use!)."""
    return PrivateKey(bytes.fromhex("01" * 32))


@pytest.fixture
def other_private_key() -> PrivateKey:
    return PrivateKey(bytes.fromhex("02" * 32))


@pytest.fixture
def pubkey(private_key: PrivateKey) -> bytes:
    return private_key.public_key.format(compressed=True)


@pytest.fixture
def mainnet_config() -> BlockchainConfig:
    return BlockchainConfig(network=BITCOIN_MAINNET)


@pytest.fixture
def regtest_config() -> BlockchainConfig:
    return BlockchainConfig(network=BITCOIN_REGTEST)


@pytest.fixture
def recipient_address(other_private_key: PrivateKey, mainnet_config: BlockchainConfig) -> str:
    return pubkey_to_address(
        other_private_key.public_key.format(compressed=True), AddressType.P2WPKH, mainnet_config
    )


@pytest.fixture
def second_recipient_address(
    other_private_key: PrivateKey, mainnet_config: BlockchainConfig
) -> str:
    return pubkey_to_address(
        other_private_key.public_key.format(compressed=True), AddressType.P2TR, mainnet_config
    )


@pytest.fixture
def change_address(pubkey: bytes, mainnet_config: BlockchainConfig) -> str:
    return pubkey_to_address(pubkey, AddressType.P2WPKH, mainnet_config)


@pytest.fixture
def make_utxo(pubkey: bytes) -> Callable[..., UnspentOutput]:
    """Factory for UTXOs paying to the fixed test key."""
    counter = itertools.count(1)

    def _make(
        satoshis: int,
        inscriptions: list[tuple[str, int]] | None = None,
        address_type: AddressType = AddressType.P2WPKH,
    ) -> UnspentOutput:
        index = next(counter)
        return UnspentOutput(
            txid=f"{index:064x}",
            vout=index % 4,
            satoshis=satoshis,
            inscriptions=[
                InscriptionRef(id=ins_id, offset=offset) for ins_id, offset in inscriptions or []
            ],
            script_pubkey=script_pubkey_for(address_type, pubkey).hex(),
            address_type=address_type,
        )

    return _make
