"""
Send flows: coin to one recipient, coin to many recipients, one inscription.

All flows share one greedy coin-selection kernel. Candidates are taken in
the order the caller supplies them and are never re-sorted. The kernel is a
fixed-point approximation, not a minimal-input solver: it may add more
inputs than strictly needed, and it cannot converge when the fee grows with
each input at least as fast as the value the input adds (it then runs out of
candidates and the fee stage fails).
"""

from __future__ import annotations

import math
from collections.abc import Sequence

from loguru import logger

from ordtx.builder import CalculateFee, OrdTransaction, SignTransaction, utxo_to_input
from ordtx.config import BlockchainConfig, resolve_config
from ordtx.constants import PLACEHOLDER_CHANGE_VALUE, TX_VERSION
from ordtx.errors import (
    InscriptionNotFoundError,
    InsufficientFundsError,
    InsufficientFundsForFeeError,
    MissingNetworkParametersError,
    MultipleInscriptionsError,
)
from ordtx.models import UnspentOutput
from ordtx.transaction import PartialInput, PartialTransaction
from ordtx.utils import satoshis_to_amount


def split_utxos(
    utxos: Sequence[UnspentOutput],
) -> tuple[list[UnspentOutput], list[UnspentOutput]]:
    """Split into (plain, inscription-bearing), keeping the caller's order."""
    plain: list[UnspentOutput] = []
    inscribed: list[UnspentOutput] = []
    for utxo in utxos:
        if utxo.has_inscriptions():
            inscribed.append(utxo)
        else:
            plain.append(utxo)
    return plain, inscribed


async def select_inputs(
    tx: OrdTransaction, candidates: Sequence[UnspentOutput], output_amount: int
) -> int:
    """
    Greedily add candidates until inputs cover ``output_amount`` plus the fee.

    Candidates are added unconditionally while the inputs are below the
    output amount; after that the fee is re-estimated before each further
    addition. At most ``len(candidates)`` steps are taken.

    Returns:
        Total input value after selection

    Raises:
        InsufficientFundsError: candidates ran out before covering ``output_amount``
    """
    total = tx.get_total_input()
    for utxo in candidates:
        if total < output_amount:
            tx.add_input(utxo)
            total += utxo.satoshis
            continue

        fee = await tx.cal_network_fee()
        if total < output_amount + fee:
            logger.debug(f"Inputs {total} short of {output_amount} + fee {fee}, adding input")
            tx.add_input(utxo)
            total += utxo.satoshis
        else:
            break

    if total < output_amount:
        raise InsufficientFundsError(output_amount, total)

    logger.debug(f"Selected {len(tx.inputs)} inputs totalling {total} sats")
    return total


def _fee_error(
    fee: int, tick: str, config: BlockchainConfig, available: int | None = None
) -> InsufficientFundsForFeeError:
    message = (
        f"Balance not enough. Need {satoshis_to_amount(fee, config.denomination_factor)} "
        f"{tick} as network fee"
    )
    if available is not None:
        message += (
            f", but only {satoshis_to_amount(available, config.denomination_factor)} {tick}."
        )
    return InsufficientFundsForFeeError(message, fee=fee, available=available)


async def pay_fee_with_change(tx: OrdTransaction, tick: str) -> int:
    """
    Payer-pays-fee settlement.

    A 1-sat placeholder change output is added so the fee is measured with
    the change present, then it becomes the real change or is dropped when
    the leftover is below dust.

    Returns:
        The network fee
    """
    config = tx.config
    unspent = tx.get_unspent()
    if unspent <= 0:
        raise InsufficientFundsForFeeError(
            "Balance not enough to pay network fee.", fee=0, available=unspent
        )

    tx.add_change_output(PLACEHOLDER_CHANGE_VALUE)

    network_fee = await tx.cal_network_fee()
    if unspent < network_fee:
        raise _fee_error(network_fee, tick, config, available=unspent)

    left = unspent - network_fee
    if left >= config.utxo_dust:
        tx.get_change_output().value = left
    else:
        logger.debug(f"Leftover {left} below dust {config.utxo_dust}, dropping change")
        tx.remove_change_output()

    return network_fee


def _new_transaction(
    sign_transaction: SignTransaction,
    pubkey: str,
    change_address: str,
    fee_rate: float | None,
    calculate_fee: CalculateFee | None,
    enable_rbf: bool,
    config: BlockchainConfig,
) -> OrdTransaction:
    return OrdTransaction(
        sign_transaction,
        pubkey,
        fee_rate=fee_rate,
        calculate_fee=calculate_fee,
        config=config,
        change_address=change_address,
        enable_rbf=enable_rbf,
    )


async def create_send_coin(
    *,
    utxos: Sequence[UnspentOutput],
    to_address: str,
    to_amount: int,
    sign_transaction: SignTransaction,
    change_address: str,
    pubkey: str,
    receiver_to_pay_fee: bool = False,
    fee_rate: float | None = None,
    calculate_fee: CalculateFee | None = None,
    enable_rbf: bool = True,
    tick: str | None = None,
    config: BlockchainConfig | None = None,
) -> PartialTransaction:
    """
    Send coin to one recipient using plain UTXOs only.

    With ``receiver_to_pay_fee`` the fee is taken out of the recipient's
    output; otherwise it comes out of the change.
    """
    config = resolve_config(config)
    tick = tick or config.default_tick
    tx = _new_transaction(
        sign_transaction, pubkey, change_address, fee_rate, calculate_fee, enable_rbf, config
    )

    plain, _ = split_utxos(utxos)
    tx.add_output(to_address, to_amount)
    await select_inputs(tx, plain, tx.get_total_output())

    if receiver_to_pay_fee:
        unspent = tx.get_unspent()
        if unspent >= config.utxo_dust:
            tx.add_change_output(unspent)

        network_fee = await tx.cal_network_fee()
        output = next(out for out in tx.outputs if out.address == to_address)
        if output.value < network_fee:
            raise _fee_error(network_fee, tick, config)
        output.value -= network_fee
    else:
        await pay_fee_with_change(tx, tick)

    signed = await tx.create_signed_transaction()
    logger.info(f"Built send of {to_amount} sats to {to_address} with {len(tx.inputs)} inputs")
    return signed


async def create_multi_send_coin(
    *,
    utxos: Sequence[UnspentOutput],
    outputs: Sequence[tuple[str, int]],
    sign_transaction: SignTransaction,
    change_address: str,
    pubkey: str,
    receiver_to_pay_fee: bool = False,
    fee_rate: float | None = None,
    calculate_fee: CalculateFee | None = None,
    enable_rbf: bool = True,
    tick: str | None = None,
    config: BlockchainConfig | None = None,
) -> PartialTransaction:
    """
    Send coin to several recipients, given as (address, amount) pairs.

    With ``receiver_to_pay_fee`` the whole fee is deducted from the first
    output, and change is appended only after that deduction.
    """
    config = resolve_config(config)
    tick = tick or config.default_tick
    tx = _new_transaction(
        sign_transaction, pubkey, change_address, fee_rate, calculate_fee, enable_rbf, config
    )

    plain, _ = split_utxos(utxos)
    for address, amount in outputs:
        tx.add_output(address, amount)
    logger.debug(f"Multi send to {len(outputs)} outputs, {tx.get_total_output()} sats total")

    await select_inputs(tx, plain, tx.get_total_output())

    if receiver_to_pay_fee:
        network_fee = await tx.cal_network_fee()
        first = tx.get_output(0)
        if first.value < network_fee:
            raise _fee_error(network_fee, tick, config)
        first.value -= network_fee

        # The deducted fee is still part of the unspent value and must go to the miner
        left = tx.get_unspent() - network_fee
        if left >= config.utxo_dust:
            tx.add_change_output(left)
        else:
            logger.debug(f"No change output needed ({left} < dust {config.utxo_dust})")
    else:
        await pay_fee_with_change(tx, tick)

    return await tx.create_signed_transaction()


async def create_send_ord(
    *,
    utxos: Sequence[UnspentOutput],
    to_address: str,
    output_value: int,
    sign_transaction: SignTransaction,
    change_address: str,
    pubkey: str,
    fee_rate: float | None = None,
    calculate_fee: CalculateFee | None = None,
    enable_rbf: bool = True,
    tick: str | None = None,
    config: BlockchainConfig | None = None,
) -> PartialTransaction:
    """
    Send an inscription.

    Each inscription UTXO must hold exactly one inscription (split others
    with the partitioner first). The first inscription output is set to
    ``output_value`` (the postage) and plain UTXOs pay the fee.
    """
    config = resolve_config(config)
    tick = tick or config.default_tick
    tx = _new_transaction(
        sign_transaction, pubkey, change_address, fee_rate, calculate_fee, enable_rbf, config
    )

    plain, inscribed = split_utxos(utxos)
    for utxo in inscribed:
        if len(utxo.inscriptions) > 1:
            raise MultipleInscriptionsError(utxo.txid, utxo.vout, len(utxo.inscriptions))
        tx.add_input(utxo)
        tx.add_output(to_address, utxo.satoshis)

    if not inscribed:
        raise InscriptionNotFoundError("inscription not found.")

    tx.get_output(0).value = output_value

    await select_inputs(tx, plain, tx.get_total_output())
    await pay_fee_with_change(tx, tick)

    return await tx.create_signed_transaction()


async def create_multi_send_ord(
    *,
    utxos: Sequence[UnspentOutput],
    to_address: str,
    sign_transaction: SignTransaction,
    change_address: str,
    pubkey: str,
    fee_rate: float | None = None,
    config: BlockchainConfig | None = None,
) -> PartialTransaction:
    """
    Send every inscription UTXO to one address, sweeping all plain UTXOs for the fee.

    The fee is measured on a signed copy carrying a zero-value change
    output; the real change is the swept value minus that fee.
    """
    if config is None or config.network is None:
        raise MissingNetworkParametersError(
            "Network parameters are required to send multiple inscriptions"
        )
    rate = fee_rate or config.default_fee_rate
    key = bytes.fromhex(pubkey)

    plain, inscribed = split_utxos(utxos)
    tx = PartialTransaction(version=TX_VERSION)
    for utxo in inscribed:
        if len(utxo.inscriptions) > 1:
            raise MultipleInscriptionsError(utxo.txid, utxo.vout, len(utxo.inscriptions))
        tx.add_input(PartialInput.from_tx_input(utxo_to_input(utxo, key)))
        tx.add_output(to_address, utxo.satoshis, config)

    amount = 0
    for utxo in plain:
        amount += utxo.satoshis
        tx.add_input(PartialInput.from_tx_input(utxo_to_input(utxo, key)))

    tx.unsafe_sign_nonsegwit = any(inp.address_type.is_legacy for inp in tx.inputs)

    trial = tx.clone()
    trial.add_output(change_address, 0, config)
    await sign_transaction(trial)
    fee = math.ceil(len(trial.extract()) * rate)

    change = amount - fee
    if change < 0:
        raise InsufficientFundsForFeeError(
            "Balance not enough to pay network fee.", fee=fee, available=amount
        )
    if change >= config.utxo_dust:
        tx.add_output(change_address, change, config)
    else:
        logger.debug(f"Change {change} below dust {config.utxo_dust}, leaving it to the miner")
    await sign_transaction(tx)
    logger.info(f"Built multi inscription send of {len(inscribed)} UTXOs, fee {fee} sats")
    return tx
