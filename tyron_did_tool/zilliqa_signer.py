# tyron_did_tool/zilliqa_signer.py
"""
Default transaction signer, backed by pyzil.

pyzil encodes the transaction core info as protobuf and signs it with the
sender's Schnorr key, the way Zilliqa nodes verify it. It is an optional
dependency (`pip install 'tyron-did-tool[zilliqa]'`) imported when the first
signer is built, so resolution never needs it. TYRON_SIGNER replaces it.
"""

import logging
from typing import Dict, Any

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


def _load_pyzil():
    try:
        from pyzil.account import Account
        from pyzil.zilliqa import chain
    except ImportError as e:
        raise ConfigurationError(
            "Signing Zilliqa transactions needs pyzil: install 'tyron-did-tool[zilliqa]' "
            "or set TYRON_SIGNER to another 'module:callable' signer."
        ) from e
    return Account, chain


class PyzilSigner:
    """Signs transactions for one account with pyzil's Schnorr implementation."""

    def __init__(self, private_key: str):
        account_cls, self._chain = _load_pyzil()
        if private_key[:2].lower() == "0x":
            private_key = private_key[2:]
        self._zil_key = account_cls(private_key=private_key).zil_key

    @property
    def public_key(self) -> str:
        return self._zil_key.keypair_str.public

    def _blockchain(self, version: int):
        for blockchain in (self._chain.MainNet, self._chain.TestNet):
            if blockchain.version == version:
                return blockchain
        raise ConfigurationError(f"pyzil knows no chain with transaction version {version}.")

    def sign(self, transaction: Dict[str, Any]) -> str:
        blockchain = self._blockchain(transaction["version"])
        logger.debug(f"Signing transaction to {transaction['toAddr']} with nonce {transaction['nonce']}")
        params = blockchain.build_transaction_params(
            self._zil_key,
            transaction["toAddr"],
            transaction["amount"],
            transaction["nonce"],
            transaction["gasPrice"],
            int(transaction["gasLimit"]),
            transaction["code"],
            transaction["data"],
            transaction["priority"],
        )
        return params["signature"]
