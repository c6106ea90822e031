"""
Blockchain configuration.

There is no process-wide mutable configuration: every builder and send
function takes a ``BlockchainConfig`` (or falls back to the immutable
``BITCOIN_CONFIG``) and per-call overrides are merged into a new value.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ordtx.constants import DEFAULT_FEE_RATE, DEFAULT_TICK, DENOMINATION_FACTOR, UTXO_DUST


class NetworkType(str, Enum):
    MAINNET = "mainnet"
    TESTNET = "testnet"
    SIGNET = "signet"
    REGTEST = "regtest"


class NetworkParams(BaseModel):
    """Address encoding parameters of one network."""

    model_config = ConfigDict(frozen=True)

    name: str
    bech32_hrp: str = Field(..., min_length=1)
    pubkey_hash: int = Field(..., ge=0, le=0xFF)
    script_hash: int = Field(..., ge=0, le=0xFF)


BITCOIN_MAINNET = NetworkParams(name="mainnet", bech32_hrp="bc", pubkey_hash=0x00, script_hash=0x05)
BITCOIN_TESTNET = NetworkParams(name="testnet", bech32_hrp="tb", pubkey_hash=0x6F, script_hash=0xC4)
BITCOIN_REGTEST = NetworkParams(
    name="regtest", bech32_hrp="bcrt", pubkey_hash=0x6F, script_hash=0xC4
)

_NETWORKS: dict[NetworkType, NetworkParams] = {
    NetworkType.MAINNET: BITCOIN_MAINNET,
    NetworkType.TESTNET: BITCOIN_TESTNET,
    NetworkType.SIGNET: BITCOIN_TESTNET,
    NetworkType.REGTEST: BITCOIN_REGTEST,
}


def get_network(network: NetworkType | str) -> NetworkParams:
    """Get the address parameters for a named network."""
    return _NETWORKS[NetworkType(network)]


class AddressVersions(BaseModel):
    """Version bytes per address kind (base58 prefix or witness version)."""

    model_config = ConfigDict(frozen=True)

    p2pkh: int = Field(default=0x00, ge=0, le=0xFF)
    p2sh: int = Field(default=0x05, ge=0, le=0xFF)
    p2wpkh: int = Field(default=0x00, ge=0, le=16)
    p2tr: int = Field(default=0x01, ge=0, le=16)


class BlockchainConfig(BaseModel):
    """Chain-specific constants used by the partitioner, builder and send functions."""

    model_config = ConfigDict(frozen=True)

    network: NetworkParams | None = None
    utxo_dust: int = Field(default=UTXO_DUST, gt=0, description="Minimum standalone output")
    default_fee_rate: float = Field(default=DEFAULT_FEE_RATE, gt=0, description="sat/byte")
    denomination_factor: int = Field(default=DENOMINATION_FACTOR, gt=0)
    default_tick: str = DEFAULT_TICK
    address_versions: AddressVersions = Field(default_factory=AddressVersions)
    default_sighash_type: int | None = None

    def merged(self, overrides: dict[str, Any] | None = None, **kwargs: Any) -> BlockchainConfig:
        """
        Return a copy with overrides applied.

        Overrides are shallow-merged, except ``address_versions`` which is
        merged key by key so a partial override keeps the other versions.
        """
        changes = {**(overrides or {}), **kwargs}
        if not changes:
            return self

        versions = changes.pop("address_versions", None)
        if isinstance(versions, AddressVersions):
            versions = versions.model_dump(exclude_unset=True)

        data = self.model_dump()
        data.update(changes)
        data["address_versions"] = {**self.address_versions.model_dump(), **(versions or {})}
        return BlockchainConfig.model_validate(data)


BITCOIN_CONFIG = BlockchainConfig()


def resolve_config(config: BlockchainConfig | None = None, **overrides: Any) -> BlockchainConfig:
    """Get the config for one call: the given one (or the default) plus overrides."""
    base = config if config is not None else BITCOIN_CONFIG
    return base.merged(overrides)


class Settings(BaseSettings):
    """Environment-driven defaults for the command line tool."""

    model_config = SettingsConfigDict(
        env_prefix="ORDTX_", env_file=".env", env_file_encoding="utf-8", case_sensitive=False
    )

    network: Literal["mainnet", "testnet", "signet", "regtest"] = "mainnet"
    utxo_dust: int = UTXO_DUST
    default_fee_rate: float = DEFAULT_FEE_RATE
    denomination_factor: int = DENOMINATION_FACTOR
    default_tick: str = DEFAULT_TICK
    default_sighash_type: int | None = None

    log_level: str = "INFO"

    def to_config(self) -> BlockchainConfig:
        return BlockchainConfig(
            network=get_network(self.network),
            utxo_dust=self.utxo_dust,
            default_fee_rate=self.default_fee_rate,
            denomination_factor=self.denomination_factor,
            default_tick=self.default_tick,
            default_sighash_type=self.default_sighash_type,
        )


def get_settings() -> Settings:
    return Settings()
