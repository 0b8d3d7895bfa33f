# tyron_did_tool/transaction.py
"""
The on-chain half of a DID operation.

A `PipelineHandle` walks through Uninitialized -> Initialized -> Deployed ->
Submitted. Each stage needs the previous one to have succeeded, holds the
handle exclusively while it talks to the ledger, and never retries anything
that may already have landed on chain.
"""

import logging
import threading
import time
from contextlib import contextmanager
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from .constants import DEFAULT_CONFIRMATION_TIMEOUT, DEFAULT_POLL_INTERVAL
from .contract_loader import ContractLoader
from .crypto_utils import normalize_address
from .errors import (
    DeploymentFailedError,
    InvalidAddressError,
    LedgerRpcError,
    NetworkTimeoutError,
    PipelineStateError,
    SubmissionFailedError,
    ValidationError,
)
from .ledger import LedgerClient
from .schemas import (
    Account,
    ContractInit,
    DeployedContract,
    NetworkNamespace,
    SignedOperation,
    TransactionReceipt,
    TransitionCall,
    TransitionParam,
    TransitionTag,
)

logger = logging.getLogger(__name__)

TRANSITION_SCHEMAS: Dict[TransitionTag, Tuple[str, ...]] = {
    TransitionTag.CREATE: ("did", "encodedSuffixData", "encodedDelta", "updateCommitment", "recoveryCommitment"),
    TransitionTag.UPDATE: ("did", "revealValue", "signedData", "encodedDelta"),
    TransitionTag.RECOVER: ("did", "revealValue", "signedData", "encodedDelta"),
    TransitionTag.DEACTIVATE: ("did", "revealValue", "signedData"),
}


class PipelineState(str, Enum):
    UNINITIALIZED = "Uninitialized"
    INITIALIZED = "Initialized"
    DEPLOYED = "Deployed"
    SUBMITTED = "Submitted"


def build_transition(tag: TransitionTag, **params: str) -> TransitionCall:
    """
    Builds the call payload for `tag`, parameters ordered as the contract expects.

    Raises:
        ValidationError: If a parameter is missing, unexpected or not a non-empty string.
    """
    try:
        tag = TransitionTag(tag)
    except ValueError as e:
        raise ValidationError(f"Unknown transition tag '{tag}'.") from e
    expected = TRANSITION_SCHEMAS[tag]
    missing = [name for name in expected if name not in params]
    unexpected = sorted(set(params) - set(expected))
    if missing or unexpected:
        raise ValidationError(
            f"{tag.value} transition expects {list(expected)}; missing {missing}, unexpected {unexpected}."
        )
    for name in expected:
        if not isinstance(params[name], str) or not params[name]:
            raise ValidationError(f"{tag.value} parameter '{name}' must be a non-empty string.")
    return TransitionCall(tag=tag, params=[TransitionParam(vname=name, value=params[name]) for name in expected])


def await_confirmation(
    ledger: LedgerClient,
    transaction_id: str,
    stage: str,
    timeout: float,
    poll_interval: float,
    sleep: Callable[[float], None] = time.sleep
) -> TransactionReceipt:
    """
    Polls for the receipt of `transaction_id` until it shows up or `timeout` passes.

    Raises:
        NetworkTimeoutError: If no receipt was seen in time. The transaction may still land.
        LedgerRpcError: If the node answered the receipt query with an error.
    """
    deadline = time.monotonic() + timeout
    while True:
        try:
            receipt = ledger.get_receipt(transaction_id)
        except NetworkTimeoutError as e:
            logger.warning(f"[{stage}] receipt poll for {transaction_id} failed, will retry: {e}")
            receipt = None
        except LedgerRpcError as e:
            raise LedgerRpcError(
                f"Receipt query for {transaction_id} failed after it was sent: {e.message}",
                code=e.code,
                stage=stage,
                transaction_id=transaction_id,
            ) from e
        if receipt is not None:
            logger.debug(f"[{stage}] {transaction_id} confirmed in block {receipt.block}")
            return receipt
        if time.monotonic() >= deadline:
            raise NetworkTimeoutError(
                f"No confirmation for {transaction_id} after {timeout}s. Query the ledger before retrying.",
                stage=stage,
                transaction_id=transaction_id,
            )
        sleep(poll_interval)


class PipelineHandle:
    """
    Carries one identity's pipeline: its ledger, its contract parameters and the
    signing accounts. The accounts are owned by the handle and dropped by close().
    """

    def __init__(
        self,
        network: NetworkNamespace,
        contract_init: ContractInit,
        client: Account,
        owner: Account,
        gas_limit: int,
        ledger: LedgerClient,
        confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.network = network
        self.contract_init = contract_init
        self.gas_limit = gas_limit
        self.ledger = ledger
        self.confirmation_timeout = confirmation_timeout
        self.poll_interval = poll_interval
        self.sleep = sleep
        self.state = PipelineState.INITIALIZED
        self.deployed: Optional[DeployedContract] = None
        self.receipts: List[TransactionReceipt] = []
        self._client: Optional[Account] = client
        self._owner: Optional[Account] = owner
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._client is None and self._owner is None

    def close(self) -> None:
        self._client = None
        self._owner = None
        logger.debug("Pipeline credentials discarded")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def _account(self, role: str) -> Account:
        account = self._client if role == "client" else self._owner
        if account is None:
            raise PipelineStateError("Pipeline handle is closed; its signing credentials are gone.")
        return account

    def _require(self, stage: str, *states: PipelineState) -> None:
        if self.state not in states:
            raise PipelineStateError(
                f"Cannot {stage} from state {self.state.value}; expected {[s.value for s in states]}."
            )

    @contextmanager
    def _exclusive(self, stage: str):
        if not self._lock.acquire(blocking=False):
            raise PipelineStateError(f"Cannot {stage}: another ledger interaction is still in flight.")
        try:
            yield
        finally:
            self._lock.release()

    def __repr__(self):
        address = self.deployed.address if self.deployed else None
        return f"PipelineHandle(state={self.state.value}, network={self.network.value}, contract={address})"


class TyronTransaction:
    """Stages of the anchoring pipeline."""

    @staticmethod
    def initialize(
        network: NetworkNamespace,
        contract_init: ContractInit,
        client_private_key: str,
        owner_private_key: str,
        gas_limit: int,
        ledger: LedgerClient,
        confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        sleep: Callable[[float], None] = time.sleep
    ) -> PipelineHandle:
        """
        Validates the contract parameters and keys. Does not touch the network.

        Raises:
            InvalidAddressError: If an address is malformed or a key does not control its address.
            ValidationError: For a bad network, key or gas limit.
        """
        try:
            network = NetworkNamespace(network)
        except ValueError as e:
            raise ValidationError(f"Unknown network '{network}'.") from e
        if not isinstance(gas_limit, int) or gas_limit <= 0:
            raise ValidationError(f"Gas limit must be a positive integer, got {gas_limit!r}.")
        if confirmation_timeout <= 0 or poll_interval < 0:
            raise ValidationError("Confirmation timeout must be positive and poll interval non-negative.")

        contract_init = contract_init.model_copy(update={
            "factory_address": normalize_address(contract_init.factory_address),
            "contract_owner_address": normalize_address(contract_init.contract_owner_address),
            "client_address": normalize_address(contract_init.client_address),
        })
        client = Account.from_private_key(client_private_key)
        owner = Account.from_private_key(owner_private_key)
        if client.address != contract_init.client_address:
            raise InvalidAddressError(
                f"Client key controls {client.address}, not the client address {contract_init.client_address}."
            )
        if owner.address != contract_init.contract_owner_address:
            raise InvalidAddressError(
                f"Owner key controls {owner.address}, not the contract owner {contract_init.contract_owner_address}."
            )

        logger.info(f"Initialized tyron pipeline on {network.value} for owner {owner.address}")
        return PipelineHandle(
            network=network,
            contract_init=contract_init,
            client=client,
            owner=owner,
            gas_limit=gas_limit,
            ledger=ledger,
            confirmation_timeout=confirmation_timeout,
            poll_interval=poll_interval,
            sleep=sleep,
        )

    @staticmethod
    def deploy(handle: PipelineHandle, contract_version: str, contract_loader: ContractLoader) -> DeployedContract:
        """
        Deploys the identity's contract, signed by the owner, and waits for it to be confirmed.

        Raises:
            DeploymentFailedError: If the deployment is rejected or yields no address.
            NetworkTimeoutError: If confirmation did not arrive in time.
            LedgerRpcError: If the receipt query failed after the deployment was sent.
        """
        with handle._exclusive("deploy"):
            handle._require("deploy", PipelineState.INITIALIZED)
            owner = handle._account("owner")
            code = contract_loader(contract_version)
            logger.info(f"Deploying tyron contract version {contract_version}")
            try:
                sent = handle.ledger.send_deploy(
                    code, handle.contract_init.to_init_params(), owner, handle.gas_limit
                )
            except NetworkTimeoutError as e:
                raise NetworkTimeoutError(e.message, stage="deploy") from e
            except LedgerRpcError as e:
                raise DeploymentFailedError(f"Node rejected the deployment: {e.message}") from e

            receipt = await_confirmation(
                handle.ledger, sent.transaction_id, "deploy",
                handle.confirmation_timeout, handle.poll_interval, handle.sleep
            )
            handle.receipts.append(receipt)
            if not receipt.success:
                raise DeploymentFailedError(
                    f"Deployment rejected: {', '.join(receipt.errors) or 'no reason given'}",
                    transaction_id=sent.transaction_id,
                )
            address = receipt.contract_address or sent.contract_address
            if not address:
                raise DeploymentFailedError("Ledger returned no contract address.", transaction_id=sent.transaction_id)

            deployed = DeployedContract(address=normalize_address(address), init_transaction_id=sent.transaction_id)
            handle.deployed = deployed
            handle.state = PipelineState.DEPLOYED
            logger.info(f"Tyron contract deployed at {deployed.address}")
            return deployed

    @staticmethod
    def attach(handle: PipelineHandle, contract_address: str) -> DeployedContract:
        """
        Points an initialized handle at a contract deployed earlier, for later operations
        or after a deployment timed out but landed.
        """
        address = normalize_address(contract_address)
        with handle._exclusive("attach"):
            handle._require("attach", PipelineState.INITIALIZED)
            state = handle.ledger.get_contract_state(address)
            if state is None:
                raise DeploymentFailedError(f"No contract found at {address}.")
            deployed = DeployedContract(address=address)
            handle.deployed = deployed
            handle.state = PipelineState.DEPLOYED
            logger.info(f"Attached to tyron contract at {address}")
            return deployed

    @staticmethod
    def submit(handle: PipelineHandle, contract_address: str, call: TransitionCall) -> TransactionReceipt:
        """
        Sends `call` to the identity's contract, signed by the client, and waits for it.

        Raises:
            SubmissionFailedError: If the contract or the node rejected the call. Not retriable.
            NetworkTimeoutError: If the call could not be sent or confirmed in time.
            LedgerRpcError: If the receipt query failed after the call was sent.
        """
        address = normalize_address(contract_address)
        with handle._exclusive("submit"):
            handle._require("submit", PipelineState.DEPLOYED, PipelineState.SUBMITTED)
            if address != handle.deployed.address:
                raise PipelineStateError(
                    f"Handle is bound to contract {handle.deployed.address}, not {address}."
                )
            client = handle._account("client")
            logger.info(f"Submitting {call.tag.value} transition to {address}")
            try:
                sent = handle.ledger.send_call(address, call, client, handle.gas_limit)
            except NetworkTimeoutError as e:
                raise NetworkTimeoutError(e.message, stage="submit") from e
            except LedgerRpcError as e:
                raise SubmissionFailedError(f"Node rejected the call: {e.message}") from e

            receipt = await_confirmation(
                handle.ledger, sent.transaction_id, "submit",
                handle.confirmation_timeout, handle.poll_interval, handle.sleep
            )
            handle.receipts.append(receipt)
            if not receipt.success:
                raise SubmissionFailedError(
                    f"{call.tag.value} rejected by the contract: {', '.join(receipt.errors) or 'no reason given'}",
                    transaction_id=sent.transaction_id,
                )
            handle.state = PipelineState.SUBMITTED
            logger.info(f"{call.tag.value} confirmed in block {receipt.block}")
            return receipt

    @staticmethod
    def create(did: str, encoded_suffix_data: str, encoded_delta: str,
               update_commitment: str, recovery_commitment: str) -> TransitionCall:
        return build_transition(
            TransitionTag.CREATE,
            did=did,
            encodedSuffixData=encoded_suffix_data,
            encodedDelta=encoded_delta,
            updateCommitment=update_commitment,
            recoveryCommitment=recovery_commitment,
        )

    @staticmethod
    def update(did: str, operation: SignedOperation) -> TransitionCall:
        return build_transition(
            TransitionTag.UPDATE,
            did=did,
            revealValue=operation.reveal_value,
            signedData=operation.signed_data,
            encodedDelta=operation.encoded_delta,
        )

    @staticmethod
    def recover(did: str, operation: SignedOperation) -> TransitionCall:
        return build_transition(
            TransitionTag.RECOVER,
            did=did,
            revealValue=operation.reveal_value,
            signedData=operation.signed_data,
            encodedDelta=operation.encoded_delta,
        )

    @staticmethod
    def deactivate(did: str, operation: SignedOperation) -> TransitionCall:
        return build_transition(
            TransitionTag.DEACTIVATE,
            did=did,
            revealValue=operation.reveal_value,
            signedData=operation.signed_data,
        )

