"""
Transaction builder for ordinal-aware spends.

Accumulates inputs and outputs for one transaction, keeps one output
designated as change, estimates the network fee through the caller's signer
(or an external fee oracle) and assembles the signed transaction.

A builder is not safe for concurrent use: fee probing temporarily changes
the output list and assumes exclusive ownership while it runs.
"""

from __future__ import annotations

import math
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from loguru import logger

from ordtx.config import BITCOIN_CONFIG, BlockchainConfig
from ordtx.constants import SEQUENCE_FINAL, SEQUENCE_RBF, TX_VERSION, WITNESS_DISCOUNT
from ordtx.errors import ChangeOutputNotSetError
from ordtx.models import TxInput, TxOutput, UnspentOutput, WitnessUtxo
from ordtx.scripts import p2sh_p2wpkh_redeem_script
from ordtx.transaction import PartialInput, PartialTransaction

SignTransaction = Callable[[PartialTransaction], Awaitable[None]]
CalculateFee = Callable[[str, float], Awaitable[int]]


def utxo_to_input(utxo: UnspentOutput, pubkey: bytes) -> TxInput:
    """Derive the signable input for a UTXO; wrapped segwit gets its redeem script."""
    witness_utxo = WitnessUtxo(value=utxo.satoshis, script=bytes.fromhex(utxo.script_pubkey))
    if utxo.address_type.is_wrapped_segwit:
        return TxInput(
            utxo=utxo, witness_utxo=witness_utxo, redeem_script=p2sh_p2wpkh_redeem_script(pubkey)
        )
    return TxInput(utxo=utxo, witness_utxo=witness_utxo)


@dataclass
class GeneratedTransaction:
    """Result of ``OrdTransaction.generate``."""

    fee: int  # fee actually paid
    raw_tx: str
    to_satoshis: int  # value of the first output after any adjustment
    estimate_fee: int  # fee used for sizing


class OrdTransaction:
    """
    Builds one transaction.

    The change output is tracked by position. Removing it splices the list,
    so the designation is reset whenever that happens.
    """

    def __init__(
        self,
        sign_transaction: SignTransaction,
        pubkey: str,
        *,
        fee_rate: float | None = None,
        calculate_fee: CalculateFee | None = None,
        config: BlockchainConfig | None = None,
        change_address: str = "",
        enable_rbf: bool = True,
    ):
        self.config = config or BITCOIN_CONFIG
        self.sign_transaction = sign_transaction
        self.calculate_fee = calculate_fee
        self.pubkey = pubkey
        self.fee_rate = fee_rate or self.config.default_fee_rate
        self.change_address = change_address
        self.enable_rbf = enable_rbf

        self.inputs: list[TxInput] = []
        self.outputs: list[TxOutput] = []
        self._change_output_index = -1

    def add_input(self, utxo: UnspentOutput) -> None:
        self.inputs.append(utxo_to_input(utxo, bytes.fromhex(self.pubkey)))

    def get_total_input(self) -> int:
        return sum(txin.value for txin in self.inputs)

    def get_total_output(self) -> int:
        return sum(out.value for out in self.outputs)

    def get_unspent(self) -> int:
        return self.get_total_input() - self.get_total_output()

    def add_output(self, address: str, value: int) -> None:
        self.outputs.append(TxOutput(address=address, value=value))

    def get_output(self, index: int) -> TxOutput:
        return self.outputs[index]

    def add_change_output(self, value: int) -> None:
        self.outputs.append(TxOutput(address=self.change_address, value=value))
        self._change_output_index = len(self.outputs) - 1
        logger.debug(
            f"Change output of {value} sats to {self.change_address} "
            f"at index {self._change_output_index}"
        )

    def has_change_output(self) -> bool:
        return 0 <= self._change_output_index < len(self.outputs)

    def get_change_output(self) -> TxOutput:
        if not self.has_change_output():
            raise ChangeOutputNotSetError("No change output has been added")
        return self.outputs[self._change_output_index]

    def get_change_amount(self) -> int:
        if not self.has_change_output():
            return 0
        return self.get_change_output().value

    def remove_change_output(self) -> None:
        if self.has_change_output():
            del self.outputs[self._change_output_index]
        self._change_output_index = -1

    def remove_recent_outputs(self, count: int) -> None:
        if count <= 0:
            return
        del self.outputs[-count:]
        if self._change_output_index >= len(self.outputs):
            self._change_output_index = -1

    @contextmanager
    def preserved_outputs(self) -> Iterator[None]:
        """
        Restore outputs (identity and values) and the change designation on exit.

        Runs on every exit path, including a failing signer or fee oracle.
        """
        snapshot = [(out, out.address, out.value) for out in self.outputs]
        change_index = self._change_output_index
        try:
            yield
        finally:
            for out, address, value in snapshot:
                out.address = address
                out.value = value
            self.outputs[:] = [out for out, _, _ in snapshot]
            self._change_output_index = change_index

    async def create_signed_transaction(self, skip_sign: bool = False) -> PartialTransaction:
        """Assemble the current inputs and outputs and sign them unless ``skip_sign``."""
        tx = PartialTransaction(version=TX_VERSION)
        sequence = SEQUENCE_RBF if self.enable_rbf else SEQUENCE_FINAL

        for txin in self.inputs:
            if txin.utxo.address_type.is_legacy:
                tx.unsafe_sign_nonsegwit = True
            tx.add_input(PartialInput.from_tx_input(txin, sequence=sequence))

        for out in self.outputs:
            tx.add_output(out.address, out.value, self.config)

        if not skip_sign:
            await self.sign_transaction(tx)

        return tx

    async def cal_network_fee(self) -> int:
        """
        Estimate the fee of the current input and output set.

        With a fee oracle, the unsigned transaction and fee rate are handed to
        it. Otherwise a trial transaction is signed and its size, discounted
        by a quarter for witness bytes, is multiplied by the fee rate.
        """
        with self.preserved_outputs():
            if self.calculate_fee is not None:
                tx = await self.create_signed_transaction(skip_sign=True)
                fee = await self.calculate_fee(tx.to_hex(), self.fee_rate)
                logger.debug(f"Fee oracle returned {fee} sats at {self.fee_rate} sat/byte")
                return fee

            tx = await self.create_signed_transaction()
            tx_size: float = len(tx.serialize())
            for inp in tx.inputs:
                if inp.final_script_witness:
                    tx_size -= len(inp.serialize_witness()) * WITNESS_DISCOUNT
            fee = math.ceil(tx_size * self.fee_rate)
            logger.debug(
                f"Estimated fee {fee} sats for {len(self.inputs)} inputs, "
                f"{len(self.outputs)} outputs ({tx_size} bytes)"
            )
            return fee

    async def is_enough_fee(self) -> bool:
        tx = await self.create_signed_transaction()
        return tx.get_fee_rate() >= self.fee_rate

    async def generate(self, auto_adjust: bool) -> GeneratedTransaction:
        """
        Size the fee with a trial change output, then assemble the final transaction.

        If the leftover does not cover the fee and ``auto_adjust`` is set, the
        first output is reduced by the shortfall.
        """
        unspent = self.get_unspent()
        self.add_change_output(max(unspent, 0))
        trial = await self.create_signed_transaction()
        self.remove_change_output()

        tx_size = len(trial.extract())
        fee = math.ceil(tx_size * self.fee_rate)

        if unspent > fee:
            left = unspent - fee
            if left > self.config.utxo_dust:
                self.add_change_output(left)
            else:
                logger.warning(f"Dropping change of {left} sats below dust")
        elif auto_adjust:
            self.outputs[0].value -= fee - unspent

        final = await self.create_signed_transaction()
        raw_tx = final.extract().hex()
        logger.info(f"Generated transaction {final.txid} paying {final.get_fee()} sats fee")

        return GeneratedTransaction(
            fee=final.get_fee(),
            raw_tx=raw_tx,
            to_satoshis=self.outputs[0].value,
            estimate_fee=fee,
        )
