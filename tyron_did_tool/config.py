# tyron_did_tool/config.py
"""
Tool configuration.

Built once from the TYRON_* environment variables plus explicit overrides
(command line or caller), and passed down to the pipeline and the resolver.
Overrides beat the environment, the environment beats the defaults.
"""

import logging
import os
from typing import Dict, Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from .constants import (
    DEFAULT_CONFIRMATION_TIMEOUT,
    DEFAULT_FACTORY_ADDRESS,
    DEFAULT_GAS_LIMIT,
    DEFAULT_GAS_PRICE,
    DEFAULT_INITIAL_STAKE,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_RPC_URLS,
    ENV_PREFIX,
)
from .crypto_utils import normalize_address
from .errors import ConfigurationError, TyronDidToolError
from .ledger import LedgerClient, ZilliqaRpcClient, load_signer_factory
from .schemas import DEFAULT_NETWORK, NetworkNamespace

logger = logging.getLogger(__name__)

_ENV_FIELDS = (
    "network",
    "rpc_url",
    "factory_address",
    "initial_stake",
    "gas_limit",
    "gas_price",
    "confirmation_timeout",
    "poll_interval",
    "contracts_dir",
    "signer",
    "client_private_key",
    "owner_private_key",
)


class ToolConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    network: NetworkNamespace = DEFAULT_NETWORK
    rpc_url: Optional[str] = None
    factory_address: str = DEFAULT_FACTORY_ADDRESS
    initial_stake: int = Field(DEFAULT_INITIAL_STAKE, ge=0)
    gas_limit: int = Field(DEFAULT_GAS_LIMIT, gt=0)
    gas_price: int = Field(DEFAULT_GAS_PRICE, gt=0)
    confirmation_timeout: float = Field(DEFAULT_CONFIRMATION_TIMEOUT, gt=0)
    poll_interval: float = Field(DEFAULT_POLL_INTERVAL, ge=0)
    contracts_dir: Optional[str] = None
    signer: Optional[str] = None
    client_private_key: Optional[SecretStr] = Field(None, repr=False)
    owner_private_key: Optional[SecretStr] = Field(None, repr=False)

    @field_validator("factory_address")
    @classmethod
    def _check_factory_address(cls, value: str) -> str:
        try:
            return normalize_address(value)
        except TyronDidToolError as e:
            raise ValueError(e.message) from e

    @model_validator(mode="after")
    def _default_rpc_url(self) -> "ToolConfig":
        if not self.rpc_url:
            object.__setattr__(self, "rpc_url", DEFAULT_RPC_URLS[self.network.value])
        return self


def env_var_name(field_name: str) -> str:
    return f"{ENV_PREFIX}{field_name.upper()}"

def load_config(environ: Optional[Mapping[str, str]] = None, **overrides: Any) -> ToolConfig:
    """
    Builds the configuration from `environ` (default os.environ) and `overrides`.

    Overrides set to None are ignored, so unset command line flags fall through
    to the environment.

    Raises:
        ConfigurationError: If a value is missing its expected type or range.
    """
    environ = os.environ if environ is None else environ
    values: Dict[str, Any] = {}
    for name in _ENV_FIELDS:
        raw = environ.get(env_var_name(name))
        if raw not in (None, ""):
            values[name] = raw
    unknown = sorted(set(overrides) - set(_ENV_FIELDS))
    if unknown:
        raise ConfigurationError(f"Unknown configuration option(s): {unknown}")
    values.update({k: v for k, v in overrides.items() if v is not None})

    try:
        config = ToolConfig(**values)
    except PydanticValidationError as e:
        problems = "; ".join(
            f"{env_var_name(str(err['loc'][0])) if err['loc'] else 'config'}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigurationError(f"Invalid configuration: {problems}") from e
    logger.debug(f"Loaded configuration for {config.network.value} via {config.rpc_url}")
    return config

def build_ledger(config: ToolConfig) -> LedgerClient:
    """JSON-RPC ledger client for the configured network. Signs with TYRON_SIGNER if set, else pyzil."""
    return ZilliqaRpcClient(
        rpc_url=config.rpc_url,
        network=config.network,
        signer_factory=load_signer_factory(config.signer),
        gas_price=config.gas_price,
    )

def require_secret(config: ToolConfig, field_name: str) -> str:
    """
    Returns a configured private key.

    Raises:
        ConfigurationError: If it is not set.
    """
    secret = getattr(config, field_name)
    if secret is None:
        raise ConfigurationError(f"{env_var_name(field_name)} is not set.")
    return secret.get_secret_value()
