# tyron_did_tool/ledger.py
"""
Ledger access for the tyron contracts.

`LedgerClient` is the boundary the transaction pipeline and the resolver talk to.
`ZilliqaRpcClient` implements it over the Zilliqa JSON-RPC API. Transaction
signing is delegated to a `TransactionSigner`: pyzil by default, or a plug-in.
"""

import importlib
import json
import logging
from abc import ABC, abstractmethod
from typing import Callable, Dict, Any, List, Optional, Protocol

import requests

from .constants import (
    CHAIN_IDS,
    MSG_VERSION,
    NULL_ADDRESS,
    RPC_MISSING_CONTRACT_ERROR_CODES,
    RPC_PENDING_ERROR_CODES,
)
from .crypto_utils import normalize_address, to_checksum_address
from .errors import ConfigurationError, LedgerRpcError, NetworkTimeoutError
from .schemas import Account, NetworkNamespace, SentTransaction, TransactionReceipt, TransitionCall
from .zilliqa_signer import PyzilSigner

logger = logging.getLogger(__name__)


class TransactionSigner(Protocol):
    """Signs raw ledger transactions. `PyzilSigner` unless a plug-in replaces it."""

    @property
    def public_key(self) -> str: ...

    def sign(self, transaction: Dict[str, Any]) -> str: ...


SignerFactory = Callable[[str], TransactionSigner]


def load_signer_factory(target: Optional[str]) -> Optional[SignerFactory]:
    """
    Imports a signer factory given as 'package.module:callable'.

    The callable receives a hex private key and returns a TransactionSigner.
    """
    if not target:
        return None
    module_name, _, attr = target.partition(":")
    if not module_name or not attr:
        raise ConfigurationError(f"Signer must be given as 'module:callable', got '{target}'.")
    try:
        module = importlib.import_module(module_name)
        factory = getattr(module, attr)
    except (ImportError, AttributeError) as e:
        raise ConfigurationError(f"Could not load signer factory '{target}': {e}") from e
    if not callable(factory):
        raise ConfigurationError(f"Signer factory '{target}' is not callable.")
    return factory


class LedgerClient(ABC):
    """What the pipeline and the resolver need from a ledger."""

    @abstractmethod
    def send_deploy(
        self,
        code: str,
        init_params: List[Dict[str, str]],
        sender: Account,
        gas_limit: int
    ) -> SentTransaction:
        """Sends a contract deployment. Returns as soon as the node accepted it."""

    @abstractmethod
    def send_call(
        self,
        contract_address: str,
        call: TransitionCall,
        sender: Account,
        gas_limit: int,
        amount: int = 0
    ) -> SentTransaction:
        """Sends a transition call. Returns as soon as the node accepted it."""

    @abstractmethod
    def get_receipt(self, transaction_id: str) -> Optional[TransactionReceipt]:
        """The receipt once the transaction is in a block, None while it is pending."""

    @abstractmethod
    def get_contract_state(self, contract_address: str) -> Optional[Dict[str, Any]]:
        """Current state of a contract, None if there is no contract at the address."""

    @abstractmethod
    def get_contract_code(self, contract_address: str) -> Optional[str]:
        """Source of a deployed contract, None if there is no contract at the address."""


class ZilliqaRpcClient(LedgerClient):
    """JSON-RPC client for a Zilliqa node."""

    def __init__(
        self,
        rpc_url: str,
        network: NetworkNamespace,
        signer_factory: Optional[SignerFactory] = None,
        gas_price: int = 2000000000,
        request_timeout: float = 30.0,
        session: Optional[requests.Session] = None
    ):
        self.rpc_url = rpc_url
        self.network = NetworkNamespace(network)
        self.signer_factory = signer_factory or PyzilSigner
        self.gas_price = gas_price
        self.request_timeout = request_timeout
        self.session = session or requests.Session()
        self._request_id = 0

    @property
    def version(self) -> int:
        return (CHAIN_IDS[self.network.value] << 16) + MSG_VERSION

    def _call(self, method: str, params: List[Any]) -> Any:
        self._request_id += 1
        payload = {"id": str(self._request_id), "jsonrpc": "2.0", "method": method, "params": params}
        logger.debug(f"JSON-RPC {method} -> {self.rpc_url}")
        try:
            response = self.session.post(self.rpc_url, json=payload, timeout=self.request_timeout)
            response.raise_for_status()
            body = response.json()
        except (requests.Timeout, requests.ConnectionError) as e:
            raise NetworkTimeoutError(f"{method} did not get an answer from {self.rpc_url}: {e}") from e
        except requests.RequestException as e:
            raise LedgerRpcError(f"{method} failed: {e}") from e
        except ValueError as e:
            raise LedgerRpcError(f"{method} returned a non-JSON body: {e}") from e

        if not isinstance(body, dict):
            raise LedgerRpcError(f"{method} returned an unexpected body: {body!r}")
        error = body.get("error")
        if error:
            if not isinstance(error, dict):
                raise LedgerRpcError(f"{method}: {error}")
            raise LedgerRpcError(f"{method}: {error.get('message', error)}", code=error.get("code"))
        return body.get("result")

    def _call_for_object(self, method: str, params: List[Any]) -> Dict[str, Any]:
        result = self._call(method, params)
        if not isinstance(result, dict):
            raise LedgerRpcError(f"{method} returned {result!r} instead of an object.")
        return result

    def _next_nonce(self, address: str) -> int:
        try:
            result = self._call_for_object("GetBalance", [normalize_address(address)[2:]])
        except LedgerRpcError as e:
            # accounts that never transacted are unknown to the node
            logger.debug(f"No balance record for {address}: {e}")
            return 1
        return int(result.get("nonce", 0)) + 1

    def _signer(self, sender: Account) -> TransactionSigner:
        return self.signer_factory(sender.private_key.get_secret_value())

    def _send(self, to_address: str, sender: Account, gas_limit: int, amount: int,
              code: str = "", data: str = "") -> Dict[str, Any]:
        signer = self._signer(sender)
        transaction = {
            "version": self.version,
            "nonce": self._next_nonce(sender.address),
            "toAddr": to_checksum_address(to_address),
            "amount": str(amount),
            "pubKey": signer.public_key,
            "gasPrice": str(self.gas_price),
            "gasLimit": str(gas_limit),
            "code": code,
            "data": data,
            "priority": False,
        }
        transaction["signature"] = signer.sign(transaction)
        result = self._call_for_object("CreateTransaction", [transaction])
        if not result.get("TranID"):
            raise LedgerRpcError(f"CreateTransaction returned no transaction id: {result!r}")
        return result

    def send_deploy(self, code, init_params, sender, gas_limit):
        result = self._send(NULL_ADDRESS, sender, gas_limit, 0, code=code, data=json.dumps(init_params))
        contract_address = result.get("ContractAddress")
        logger.info(f"Deployment accepted by node: {result.get('TranID')}")
        return SentTransaction(
            transaction_id=result["TranID"],
            contract_address=normalize_address(contract_address) if contract_address else None,
        )

    def send_call(self, contract_address, call, sender, gas_limit, amount=0):
        result = self._send(normalize_address(contract_address), sender, gas_limit, amount,
                            data=json.dumps(call.to_data()))
        logger.info(f"{call.tag.value} call accepted by node: {result.get('TranID')}")
        return SentTransaction(transaction_id=result["TranID"])

    def get_receipt(self, transaction_id):
        try:
            result = self._call_for_object("GetTransaction", [transaction_id])
        except LedgerRpcError as e:
            if e.code in RPC_PENDING_ERROR_CODES:
                return None
            raise
        receipt = result.get("receipt")
        if not isinstance(receipt, dict):
            raise LedgerRpcError(f"GetTransaction returned no receipt for {transaction_id}.")
        errors = []
        errors_by_epoch = receipt.get("errors")
        if isinstance(errors_by_epoch, dict):
            for epoch_errors in errors_by_epoch.values():
                errors.extend(str(code) for code in epoch_errors or [])
        exceptions = [
            x.get("message", str(x)) if isinstance(x, dict) else str(x)
            for x in receipt.get("exceptions") or []
        ]
        block = receipt.get("epoch_num")
        return TransactionReceipt(
            transaction_id=transaction_id,
            success=bool(receipt.get("success")),
            block=int(block) if block is not None else None,
            errors=errors + exceptions,
        )

    def get_contract_state(self, contract_address):
        try:
            return self._call_for_object("GetSmartContractState", [normalize_address(contract_address)[2:]])
        except LedgerRpcError as e:
            if e.code in RPC_MISSING_CONTRACT_ERROR_CODES:
                return None
            raise

    def get_contract_code(self, contract_address):
        try:
            result = self._call_for_object("GetSmartContractCode", [normalize_address(contract_address)[2:]])
        except LedgerRpcError as e:
            if e.code in RPC_MISSING_CONTRACT_ERROR_CODES:
                return None
            raise
        return result.get("code")
