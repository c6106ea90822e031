"""
Tests for the OrdTransaction builder.
"""

from __future__ import annotations

from collections.abc import Callable

import pytest
from conftest import FakeSigner

from ordtx.builder import OrdTransaction, utxo_to_input
from ordtx.constants import SEQUENCE_FINAL, SEQUENCE_RBF, TX_VERSION
from ordtx.errors import ChangeOutputNotSetError, TransactionSigningError
from ordtx.models import AddressType, UnspentOutput
from ordtx.scripts import p2sh_p2wpkh_redeem_script

# One P2WPKH input with the fake witness: 41 byte input, 108 byte witness
ONE_IN_ONE_OUT_SIZE = 192
ONE_IN_TWO_OUT_SIZE = 223
WITNESS_SIZE = 108


def discounted(size: int, inputs: int = 1) -> float:
    return size - WITNESS_SIZE * 0.75 * inputs


@pytest.fixture
def builder(fake_signer: FakeSigner, pubkey: bytes, change_address: str) -> OrdTransaction:
    return OrdTransaction(fake_signer, pubkey.hex(), fee_rate=1, change_address=change_address)


class TestUtxoToInput:
    """Tests for utxo_to_input."""

    def test_native_segwit(self, make_utxo: Callable[..., UnspentOutput], pubkey: bytes) -> None:
        utxo = make_utxo(5000)
        txin = utxo_to_input(utxo, pubkey)
        assert txin.value == 5000
        assert txin.witness_utxo.script == bytes.fromhex(utxo.script_pubkey)
        assert txin.redeem_script is None

    def test_wrapped_segwit_gets_redeem_script(
        self, make_utxo: Callable[..., UnspentOutput], pubkey: bytes
    ) -> None:
        utxo = make_utxo(5000, address_type=AddressType.P2SH_P2WPKH)
        txin = utxo_to_input(utxo, pubkey)
        assert txin.redeem_script == p2sh_p2wpkh_redeem_script(pubkey)


class TestChangeBookkeeping:
    """Tests for output and change output handling."""

    def test_totals(
        self,
        builder: OrdTransaction,
        make_utxo: Callable[..., UnspentOutput],
        recipient_address: str,
    ) -> None:
        builder.add_input(make_utxo(10_000))
        builder.add_input(make_utxo(5000))
        builder.add_output(recipient_address, 12_000)
        assert builder.get_total_input() == 15_000
        assert builder.get_total_output() == 12_000
        assert builder.get_unspent() == 3000

    def test_change_output(self, builder: OrdTransaction, recipient_address: str) -> None:
        assert not builder.has_change_output()
        assert builder.get_change_amount() == 0
        with pytest.raises(ChangeOutputNotSetError):
            builder.get_change_output()

        builder.add_output(recipient_address, 1000)
        builder.add_change_output(2000)
        assert builder.has_change_output()
        assert builder.get_change_amount() == 2000
        assert builder.get_change_output() is builder.get_output(1)
        assert builder.get_change_output().address == builder.change_address

    def test_remove_change_output(self, builder: OrdTransaction, recipient_address: str) -> None:
        builder.add_output(recipient_address, 1000)
        builder.add_change_output(2000)
        builder.remove_change_output()
        assert len(builder.outputs) == 1
        assert not builder.has_change_output()

        # Removing again is a no-op
        builder.remove_change_output()
        assert len(builder.outputs) == 1

    def test_remove_recent_outputs(self, builder: OrdTransaction, recipient_address: str) -> None:
        builder.add_output(recipient_address, 1000)
        builder.add_change_output(2000)
        builder.add_output(recipient_address, 3000)

        builder.remove_recent_outputs(1)
        assert builder.has_change_output()

        builder.remove_recent_outputs(1)
        assert [out.value for out in builder.outputs] == [1000]
        assert not builder.has_change_output()

        builder.remove_recent_outputs(0)
        assert len(builder.outputs) == 1


class TestCreateSignedTransaction:
    """Tests for create_signed_transaction."""

    @pytest.mark.asyncio
    async def test_rbf_and_version(
        self,
        builder: OrdTransaction,
        make_utxo: Callable[..., UnspentOutput],
        recipient_address: str,
    ) -> None:
        builder.add_input(make_utxo(10_000))
        builder.add_output(recipient_address, 9000)
        tx = await builder.create_signed_transaction()

        assert tx.version == TX_VERSION == 1
        assert [inp.sequence for inp in tx.inputs] == [SEQUENCE_RBF]
        assert tx.is_complete()
        assert not tx.unsafe_sign_nonsegwit

    @pytest.mark.asyncio
    async def test_rbf_disabled(
        self,
        fake_signer: FakeSigner,
        pubkey: bytes,
        make_utxo: Callable[..., UnspentOutput],
        recipient_address: str,
    ) -> None:
        builder = OrdTransaction(fake_signer, pubkey.hex(), enable_rbf=False)
        builder.add_input(make_utxo(10_000))
        builder.add_output(recipient_address, 9000)
        tx = await builder.create_signed_transaction()
        assert [inp.sequence for inp in tx.inputs] == [SEQUENCE_FINAL]

    @pytest.mark.asyncio
    async def test_legacy_input_flags_transaction(
        self,
        builder: OrdTransaction,
        make_utxo: Callable[..., UnspentOutput],
        recipient_address: str,
    ) -> None:
        builder.add_input(make_utxo(10_000, address_type=AddressType.P2PKH))
        builder.add_output(recipient_address, 9000)
        tx = await builder.create_signed_transaction()
        assert tx.unsafe_sign_nonsegwit

    @pytest.mark.asyncio
    async def test_skip_sign(
        self,
        builder: OrdTransaction,
        fake_signer: FakeSigner,
        make_utxo: Callable[..., UnspentOutput],
        recipient_address: str,
    ) -> None:
        builder.add_input(make_utxo(10_000))
        builder.add_output(recipient_address, 9000)
        tx = await builder.create_signed_transaction(skip_sign=True)
        assert fake_signer.calls == 0
        assert not tx.is_complete()
        with pytest.raises(TransactionSigningError):
            tx.extract()


class TestCalNetworkFee:
    """Tests for fee estimation."""

    @pytest.mark.asyncio
    async def test_trial_signing_fee(
        self,
        fake_signer: FakeSigner,
        pubkey: bytes,
        make_utxo: Callable[..., UnspentOutput],
        recipient_address: str,
        change_address: str,
    ) -> None:
        """Size minus three quarters of the witness, times the fee rate, rounded up."""
        builder = OrdTransaction(
            fake_signer, pubkey.hex(), fee_rate=5, change_address=change_address
        )
        builder.add_input(make_utxo(100_000))
        builder.add_output(recipient_address, 50_000)
        assert await builder.cal_network_fee() == 5 * discounted(ONE_IN_ONE_OUT_SIZE) == 555

        builder.add_change_output(1)
        assert await builder.cal_network_fee() == 5 * discounted(ONE_IN_TWO_OUT_SIZE) == 710

    @pytest.mark.asyncio
    async def test_fractional_fee_rounded_up(
        self,
        fake_signer: FakeSigner,
        pubkey: bytes,
        make_utxo: Callable[..., UnspentOutput],
        recipient_address: str,
    ) -> None:
        builder = OrdTransaction(fake_signer, pubkey.hex(), fee_rate=1.5)
        builder.add_input(make_utxo(100_000))
        builder.add_output(recipient_address, 50_000)
        # 111 bytes * 1.5 = 166.5
        assert await builder.cal_network_fee() == 167

    @pytest.mark.asyncio
    async def test_outputs_unchanged_after_estimate(
        self,
        builder: OrdTransaction,
        make_utxo: Callable[..., UnspentOutput],
        recipient_address: str,
    ) -> None:
        builder.add_input(make_utxo(100_000))
        builder.add_output(recipient_address, 50_000)
        builder.add_change_output(1)
        before = list(builder.outputs)
        values = [(out.address, out.value) for out in builder.outputs]

        await builder.cal_network_fee()

        assert builder.outputs == before
        assert all(a is b for a, b in zip(builder.outputs, before))
        assert [(out.address, out.value) for out in builder.outputs] == values
        assert builder.get_change_output() is before[1]

    @pytest.mark.asyncio
    async def test_outputs_unchanged_after_signer_failure(
        self,
        failing_signer: FakeSigner,
        pubkey: bytes,
        make_utxo: Callable[..., UnspentOutput],
        recipient_address: str,
        change_address: str,
    ) -> None:
        builder = OrdTransaction(failing_signer, pubkey.hex(), change_address=change_address)
        builder.add_input(make_utxo(100_000))
        builder.add_output(recipient_address, 50_000)
        builder.add_change_output(49_000)
        before = list(builder.outputs)

        with pytest.raises(RuntimeError):
            await builder.cal_network_fee()

        assert builder.outputs == before
        assert builder.get_change_amount() == 49_000

    def test_preserved_outputs_restores_on_error(
        self, builder: OrdTransaction, recipient_address: str
    ) -> None:
        builder.add_output(recipient_address, 1000)
        builder.add_change_output(2000)

        with pytest.raises(ValueError):
            with builder.preserved_outputs():
                builder.remove_change_output()
                builder.get_output(0).value = 1
                builder.add_output(recipient_address, 5)
                raise ValueError("boom")

        assert [out.value for out in builder.outputs] == [1000, 2000]
        assert builder.get_change_amount() == 2000

    @pytest.mark.asyncio
    async def test_fee_oracle(
        self,
        fake_signer: FakeSigner,
        pubkey: bytes,
        make_utxo: Callable[..., UnspentOutput],
        recipient_address: str,
    ) -> None:
        """With a fee oracle the unsigned transaction is priced externally."""
        seen: list[tuple[str, float]] = []

        async def oracle(tx_hex: str, fee_rate: float) -> int:
            seen.append((tx_hex, fee_rate))
            return 1234

        builder = OrdTransaction(fake_signer, pubkey.hex(), fee_rate=7, calculate_fee=oracle)
        builder.add_input(make_utxo(100_000))
        builder.add_output(recipient_address, 50_000)

        assert await builder.cal_network_fee() == 1234
        assert fake_signer.calls == 0
        tx_hex, fee_rate = seen[0]
        assert fee_rate == 7
        assert tx_hex.startswith("01000000")

    @pytest.mark.asyncio
    async def test_fee_oracle_failure_restores_outputs(
        self,
        fake_signer: FakeSigner,
        pubkey: bytes,
        make_utxo: Callable[..., UnspentOutput],
        recipient_address: str,
        change_address: str,
    ) -> None:
        """An oracle error propagates and leaves outputs and change as they were."""

        async def oracle(tx_hex: str, fee_rate: float) -> int:
            raise RuntimeError("fee service down")

        builder = OrdTransaction(
            fake_signer, pubkey.hex(), calculate_fee=oracle, change_address=change_address
        )
        builder.add_input(make_utxo(100_000))
        builder.add_output(recipient_address, 50_000)
        builder.add_change_output(49_000)
        before = list(builder.outputs)

        with pytest.raises(RuntimeError, match="fee service down"):
            await builder.cal_network_fee()

        assert builder.outputs == before
        assert [out.value for out in builder.outputs] == [50_000, 49_000]
        assert builder.get_change_output() is before[1]
        assert builder.get_change_amount() == 49_000

    @pytest.mark.asyncio
    async def test_default_fee_rate_from_config(
        self, fake_signer: FakeSigner, pubkey: bytes
    ) -> None:
        builder = OrdTransaction(fake_signer, pubkey.hex())
        assert builder.fee_rate == builder.config.default_fee_rate == 5


class TestIsEnoughFee:
    """Tests for is_enough_fee."""

    @pytest.mark.asyncio
    async def test_enough_and_not_enough(
        self,
        builder: OrdTransaction,
        make_utxo: Callable[..., UnspentOutput],
        recipient_address: str,
    ) -> None:
        builder.add_input(make_utxo(100_000))
        builder.add_output(recipient_address, 99_000)
        assert await builder.is_enough_fee()

        builder.get_output(0).value = 100_000 - 10
        assert not await builder.is_enough_fee()


class TestGenerate:
    """Tests for generate."""

    @pytest.mark.asyncio
    async def test_change_added(
        self,
        builder: OrdTransaction,
        make_utxo: Callable[..., UnspentOutput],
        recipient_address: str,
    ) -> None:
        builder.add_input(make_utxo(100_000))
        builder.add_output(recipient_address, 50_000)

        result = await builder.generate(auto_adjust=False)

        assert result.estimate_fee == ONE_IN_TWO_OUT_SIZE
        assert result.fee == ONE_IN_TWO_OUT_SIZE
        assert result.to_satoshis == 50_000
        assert builder.get_change_amount() == 50_000 - ONE_IN_TWO_OUT_SIZE
        assert len(bytes.fromhex(result.raw_tx)) == ONE_IN_TWO_OUT_SIZE

    @pytest.mark.asyncio
    async def test_dust_change_dropped(
        self,
        builder: OrdTransaction,
        make_utxo: Callable[..., UnspentOutput],
        recipient_address: str,
    ) -> None:
        builder.add_input(make_utxo(51_000))
        builder.add_output(recipient_address, 50_000)

        result = await builder.generate(auto_adjust=False)

        assert not builder.has_change_output()
        assert result.fee == 1000
        assert result.estimate_fee == ONE_IN_TWO_OUT_SIZE

    @pytest.mark.asyncio
    async def test_auto_adjust_reduces_first_output(
        self,
        builder: OrdTransaction,
        make_utxo: Callable[..., UnspentOutput],
        recipient_address: str,
    ) -> None:
        builder.add_input(make_utxo(50_000))
        builder.add_output(recipient_address, 50_000)

        result = await builder.generate(auto_adjust=True)

        assert result.to_satoshis == 50_000 - ONE_IN_TWO_OUT_SIZE
        assert result.fee == ONE_IN_TWO_OUT_SIZE
        assert len(builder.outputs) == 1
