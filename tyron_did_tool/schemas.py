"""Pydantic models for input validation and output structuring."""

from enum import Enum
from typing import Dict, Any, Optional, Literal, List

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from .constants import SCILLA_VERSION


class NetworkNamespace(str, Enum):
    MAINNET = "mainnet"
    TESTNET = "testnet"

DEFAULT_NETWORK = NetworkNamespace.TESTNET

class PublicKeyPurpose(str, Enum):
    GENERAL = "general"
    AUTH = "auth"

class TransitionTag(str, Enum):
    CREATE = "Create"
    UPDATE = "Update"
    RECOVER = "Recover"
    DEACTIVATE = "Deactivate"

class Accept(str, Enum):
    """What the caller wants back from resolution."""
    DOCUMENT = "Document"
    RESOLUTION_RESULT = "ResolutionResult"

class PatchAction(str, Enum):
    ADD_PUBLIC_KEYS = "add-public-keys"
    REMOVE_PUBLIC_KEYS = "remove-public-keys"
    ADD_SERVICES = "add-services"
    REMOVE_SERVICES = "remove-services"
    REPLACE = "replace"


class InputSchema(BaseModel):
    func_name: Literal["create", "create-did", "resolve", "resolve-did"]

    func_input_data: Dict[str, Any] = Field(default_factory=dict)

class Account(BaseModel):
    """A ledger account held only for the duration of a session."""
    model_config = ConfigDict(frozen=True)

    address: str
    private_key: SecretStr

    @classmethod
    def from_private_key(cls, private_key_hex: str) -> "Account":
        from .crypto_utils import address_from_private_key
        return cls(address=address_from_private_key(private_key_hex), private_key=SecretStr(private_key_hex))

class PublicKeyInput(BaseModel):
    id: str
    purposes: List[PublicKeyPurpose]

    @property
    def is_primary(self) -> bool:
        return PublicKeyPurpose.GENERAL in self.purposes and PublicKeyPurpose.AUTH in self.purposes

class ServiceEndpointInput(BaseModel):
    id: str
    type: str
    endpoint: str

class CreateOperationInput(BaseModel):
    """Everything needed to build a create operation, collected upstream."""
    network: NetworkNamespace = DEFAULT_NETWORK
    public_key_input: List[PublicKeyInput]
    service_endpoint_input: List[ServiceEndpointInput] = Field(default_factory=list)

class CreateOperationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    did_unique_suffix: str
    private_keys: Dict[str, Dict[str, Any]] = Field(repr=False, description="Private JWK per key id. Handle with care.")
    update_private_key: Dict[str, Any] = Field(repr=False)
    recovery_private_key: Dict[str, Any] = Field(repr=False)
    encoded_suffix_data: str
    encoded_delta: str
    update_commitment: str
    recovery_commitment: str

class SignedOperation(BaseModel):
    """Output of the update, recover and deactivate builders."""
    model_config = ConfigDict(frozen=True)

    did_unique_suffix: str
    signed_data: str
    reveal_value: str
    encoded_delta: Optional[str] = None
    private_keys: Dict[str, Dict[str, Any]] = Field(default_factory=dict, repr=False)
    next_update_private_key: Optional[Dict[str, Any]] = Field(None, repr=False)
    next_recovery_private_key: Optional[Dict[str, Any]] = Field(None, repr=False)

class SchemeInput(BaseModel):
    network: NetworkNamespace = DEFAULT_NETWORK
    did_unique_suffix: str

class LongFormDidInput(BaseModel):
    scheme_input: SchemeInput
    encoded_suffix_data: str
    encoded_delta: str

class ParsedDid(BaseModel):
    network: NetworkNamespace
    did_unique_suffix: str
    encoded_suffix_data: Optional[str] = None
    encoded_delta: Optional[str] = None

    @property
    def is_long_form(self) -> bool:
        return self.encoded_suffix_data is not None

class ContractInit(BaseModel):
    """Init parameters of a per-identity tyron contract."""
    factory_address: str
    contract_owner_address: str
    client_address: str
    initial_stake: int = Field(..., ge=0)

    def to_init_params(self) -> List[Dict[str, str]]:
        return [
            {"vname": "_scilla_version", "type": "Uint32", "value": SCILLA_VERSION},
            {"vname": "tyron_init", "type": "ByStr20", "value": self.factory_address},
            {"vname": "contract_owner", "type": "ByStr20", "value": self.contract_owner_address},
            {"vname": "client_addr", "type": "ByStr20", "value": self.client_address},
            {"vname": "tyron_stake", "type": "Uint128", "value": str(self.initial_stake)},
        ]

class DeployedContract(BaseModel):
    model_config = ConfigDict(frozen=True)

    address: str
    init_transaction_id: Optional[str] = None

class TransitionParam(BaseModel):
    model_config = ConfigDict(frozen=True)

    vname: str
    type: str = "String"
    value: str

class TransitionCall(BaseModel):
    """A named, parameterized invocation of the identity's contract."""
    model_config = ConfigDict(frozen=True)

    tag: TransitionTag
    params: List[TransitionParam]

    def to_data(self) -> Dict[str, Any]:
        return {"_tag": self.tag.value, "params": [p.model_dump() for p in self.params]}

    def params_dict(self) -> Dict[str, str]:
        return {p.vname: p.value for p in self.params}

class SentTransaction(BaseModel):
    transaction_id: str
    contract_address: Optional[str] = None

class TransactionReceipt(BaseModel):
    model_config = ConfigDict(frozen=True)

    transaction_id: str
    success: bool
    block: Optional[int] = None
    contract_address: Optional[str] = None
    errors: List[str] = Field(default_factory=list)

class AnchoredOperation(BaseModel):
    """One entry of the operation log kept in contract state."""
    tag: TransitionTag
    params: Dict[str, str]
    block: Optional[int] = None
    timestamp: Optional[str] = None

class ResolutionInput(BaseModel):
    did: str
    accept: Accept = Accept.DOCUMENT

class ResolutionResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    document: Dict[str, Any]
    document_metadata: Dict[str, Any] = Field(default_factory=dict, alias="documentMetadata")
    resolution_metadata: Dict[str, Any] = Field(default_factory=dict, alias="resolutionMetadata")

class PrivateKeys(BaseModel):
    """Shape of the exported key file."""
    model_config = ConfigDict(populate_by_name=True)

    private_keys: Dict[str, str] = Field(..., alias="privateKeys")
    update_private_key: str = Field(..., alias="updatePrivateKey")
    recovery_private_key: str = Field(..., alias="recoveryPrivateKey")

class ErrorOutput(BaseModel):
    """Standardized error output format."""
    error: str = Field(..., description="A short error code or category.")
    message: str = Field(..., description="A human-readable description of the error.")
