"""
ordtx CLI - inspect inscription UTXOs and build spend transactions.
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Annotated

import typer
from coincurve import PrivateKey
from loguru import logger
from pydantic import ValidationError

from ordtx.config import BlockchainConfig, Settings, get_network, get_settings
from ordtx.errors import OrdTransactionError
from ordtx.models import UnspentOutput
from ordtx.partition import OrdUnspentOutput
from ordtx.send import create_send_coin
from ordtx.signing import KeySigner
from ordtx.utils import satoshis_to_amount

app = typer.Typer(
    name="ordtx",
    help="Ordinal-aware UTXO spending",
    add_completion=False,
)


def setup_logging(level: str = "INFO") -> None:
    """Configure loguru logging."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )


def load_utxos(path: Path) -> list[UnspentOutput]:
    """Load a JSON list of UTXOs."""
    try:
        data = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        raise ValueError(f"Cannot read UTXO file {path}: {e}") from e
    if not isinstance(data, list):
        raise ValueError(f"UTXO file {path} must contain a JSON list")
    try:
        return [UnspentOutput.model_validate(item) for item in data]
    except ValidationError as e:
        raise ValueError(f"Invalid UTXO in {path}: {e}") from e


def _load_config(
    settings: Settings, network: str | None, dust: int | None, fee_rate: float | None
) -> BlockchainConfig:
    config = settings.to_config()
    overrides: dict[str, object] = {}
    if network:
        overrides["network"] = get_network(network)
    if dust:
        overrides["utxo_dust"] = dust
    if fee_rate:
        overrides["default_fee_rate"] = fee_rate
    return config.merged(overrides)


@app.command()
def balance(
    utxo_file: Annotated[Path, typer.Argument(help="Path to UTXO JSON file")],
    dust: Annotated[int | None, typer.Option("--dust", help="Dust threshold in sats")] = None,
    unit_size: Annotated[
        int | None, typer.Option("--unit-size", help="Inscription unit size in sats")
    ] = None,
    log_level: Annotated[
        str | None, typer.Option("--log-level", "-l", help="Log level")
    ] = None,
) -> None:
    """Show how much of each UTXO is safe to spend."""
    settings = get_settings()
    setup_logging(log_level or settings.log_level)
    config = _load_config(settings, None, dust, None)

    try:
        utxos = load_utxos(utxo_file)
    except ValueError as e:
        logger.error(str(e))
        raise typer.Exit(1)

    total = free = spendable = 0
    for utxo in utxos:
        ord_utxo = OrdUnspentOutput(utxo, unit_size, config)
        total += utxo.satoshis
        free += ord_utxo.free_satoshis()
        spendable += ord_utxo.last_unit_free_satoshis()
        typer.echo(
            f"{utxo.outpoint}  {utxo.satoshis:>12}  free={ord_utxo.free_satoshis():>12}  "
            f"tail={ord_utxo.last_unit_free_satoshis():>12}  "
            f"inscriptions={len(utxo.inscriptions)}"
        )

    factor = config.denomination_factor
    tick = config.default_tick
    typer.echo(f"Total:      {satoshis_to_amount(total, factor)} {tick}")
    typer.echo(f"Free:       {satoshis_to_amount(free, factor)} {tick}")
    typer.echo(f"Spendable:  {satoshis_to_amount(spendable, factor)} {tick}")


@app.command()
def units(
    utxo_file: Annotated[Path, typer.Argument(help="Path to UTXO JSON file")],
    dust: Annotated[int | None, typer.Option("--dust", help="Dust threshold in sats")] = None,
    unit_size: Annotated[
        int | None, typer.Option("--unit-size", help="Inscription unit size in sats")
    ] = None,
    log_level: Annotated[
        str | None, typer.Option("--log-level", "-l", help="Log level")
    ] = None,
) -> None:
    """Print the satoshi units of every inscription UTXO."""
    settings = get_settings()
    setup_logging(log_level or settings.log_level)
    config = _load_config(settings, None, dust, None)

    try:
        utxos = load_utxos(utxo_file)
    except ValueError as e:
        logger.error(str(e))
        raise typer.Exit(1)

    for utxo in utxos:
        if not utxo.has_inscriptions():
            continue
        typer.echo(utxo.outpoint)
        ord_utxo = OrdUnspentOutput(utxo, unit_size, config)
        ord_utxo.dump()
        for unit in ord_utxo.units:
            placements = ", ".join(
                f"{ins.id}@{ins.unit_offset} (output offset {ins.output_offset})"
                for ins in unit.inscriptions
            )
            typer.echo(f"  {unit.satoshis:>12}  {placements or 'free'}")


@app.command("send-coin")
def send_coin(
    utxo_file: Annotated[Path, typer.Argument(help="Path to UTXO JSON file")],
    to_address: Annotated[str, typer.Option("--to", help="Destination address")],
    amount: Annotated[int, typer.Option("--amount", "-a", help="Amount in sats")],
    change_address: Annotated[str, typer.Option("--change", help="Change address")],
    private_key: Annotated[
        str, typer.Option("--key", envvar="ORDTX_PRIVATE_KEY", help="Private key (hex)")
    ],
    network: Annotated[
        str | None, typer.Option("--network", help="mainnet | testnet | signet | regtest")
    ] = None,
    fee_rate: Annotated[
        float | None, typer.Option("--fee-rate", help="Fee rate in sat/byte")
    ] = None,
    receiver_pays: Annotated[
        bool, typer.Option("--receiver-pays", help="Deduct the fee from the recipient")
    ] = False,
    rbf: Annotated[bool, typer.Option("--rbf/--no-rbf", help="Signal replace-by-fee")] = True,
    log_level: Annotated[
        str | None, typer.Option("--log-level", "-l", help="Log level")
    ] = None,
) -> None:
    """Build and sign a coin send; prints the raw transaction (not broadcast)."""
    settings = get_settings()
    setup_logging(log_level or settings.log_level)

    try:
        config = _load_config(settings, network, None, fee_rate)
        utxos = load_utxos(utxo_file)
        key = PrivateKey(bytes.fromhex(private_key))
    except (ValueError, KeyError) as e:
        logger.error(str(e))
        raise typer.Exit(1)

    signer = KeySigner(key, sighash_type=config.default_sighash_type)
    try:
        tx = asyncio.run(
            create_send_coin(
                utxos=utxos,
                to_address=to_address,
                to_amount=amount,
                sign_transaction=signer,
                change_address=change_address,
                pubkey=signer.pubkey.hex(),
                receiver_to_pay_fee=receiver_pays,
                enable_rbf=rbf,
                config=config,
            )
        )
    except (OrdTransactionError, ValueError) as e:
        logger.error(str(e))
        raise typer.Exit(1)

    logger.info(f"txid: {tx.txid}  fee: {tx.get_fee()} sats  vsize: {tx.vsize}")
    typer.echo(tx.extract().hex())


def main() -> None:
    app()


if __name__ == "__main__":
    main()
