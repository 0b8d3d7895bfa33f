# tyron_did_tool/constants.py
"""Shared constants for the tyron-did-tool."""

ENV_PREFIX: str = "TYRON_"

DID_METHOD: str = "tyron"
DID_BLOCKCHAIN: str = "zil"
DID_TYRON_PREFIX: str = f"did:{DID_METHOD}:{DID_BLOCKCHAIN}:"
MAINNET_SEGMENT: str = "main"
LONG_FORM_SEPARATOR: str = "."

SUPPORTED_KEY_TYPE: str = "EcdsaSecp256k1VerificationKey2019"
SUPPORTED_CURVE: str = "secp256k1"
JWS_ALGORITHM: str = "ES256K"

SHA2_256_CODEC: str = "sha2-256"
SHA2_256_DIGEST_LENGTH: int = 32
MULTIHASH_SHA2_256_HEADER: bytes = b'\x12\x20'
ENCODED_SUFFIX_LENGTH: int = 46

KEY_ID_PATTERN: str = r"^[A-Za-z0-9_-]{1,50}$"
DEFAULT_PRIMARY_KEY_ID: str = "primarySigningKey"

DID_CONTEXT_V1: str = "https://www.w3.org/ns/did/v1"
DID_CONTENT_TYPE: str = "application/did+ld+json"

# Zilliqa chain ids, combined with the message version into the tx version field
CHAIN_IDS = {
    "mainnet": 1,
    "testnet": 333,
}
MSG_VERSION: int = 1
DEFAULT_RPC_URLS = {
    "mainnet": "https://api.zilliqa.com",
    "testnet": "https://dev-api.zilliqa.com",
}
NULL_ADDRESS: str = "0x" + "0" * 40

DEFAULT_FACTORY_ADDRESS: str = "0x75d8297b8bd2e35de1c17e19d2c13504de623793"
DEFAULT_INITIAL_STAKE: int = 100000000000000
DEFAULT_GAS_LIMIT: int = 10000
DEFAULT_GAS_PRICE: int = 2000000000
DEFAULT_CONFIRMATION_TIMEOUT: float = 120.0
DEFAULT_POLL_INTERVAL: float = 5.0

SCILLA_VERSION: str = "0"
OPERATION_LOG_FIELD: str = "operation_log"
FACTORY_VERSIONS_FIELD: str = "tyron_versions"
CONTRACT_FILE_TEMPLATE: str = "tyron_{version}.scilla"

# JSON-RPC error codes returned while a transaction is not yet in a block
RPC_PENDING_ERROR_CODES = (-20,)
RPC_MISSING_CONTRACT_ERROR_CODES = (-5,)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
