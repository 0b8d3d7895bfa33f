"""Configuration for pytest"""

import logging

import pytest

from memory_ledger import InMemoryLedger
from tyron_did_tool.crypto_utils import address_from_private_key, generate_key_pair
from tyron_did_tool.schemas import (
    ContractInit,
    CreateOperationInput,
    NetworkNamespace,
    PublicKeyInput,
    ServiceEndpointInput,
)

CLIENT_KEY = "1" * 64
OWNER_KEY = "2" * 64
FACTORY_ADDRESS = "0x75d8297b8bd2e35de1c17e19d2c13504de623793"
TEMPLATE_ADDRESS = "0x" + "ab" * 20
CONTRACT_CODE = "scilla_version 0\n\ncontract Tyron()\n"
FIXED_TIME = "2024-01-01T00:00:00Z"


@pytest.fixture(autouse=True)
def setup_logging():
    logging.basicConfig(
        level=logging.DEBUG,
        format='%(levelname)s - %(name)s - %(message)s'
    )

    logging.getLogger('jwcrypto').setLevel(logging.WARNING)
    logging.getLogger('urllib3').setLevel(logging.WARNING)

    return logging.getLogger()


class RecordingKeyGenerator:
    """Generates real secp256k1 key pairs and remembers them in call order."""

    def __init__(self):
        self.pairs = []

    def __call__(self):
        pair = generate_key_pair()
        self.pairs.append(pair)
        return pair


@pytest.fixture
def key_generator():
    return RecordingKeyGenerator()

@pytest.fixture
def primary_key_input():
    return PublicKeyInput(id="primarySigningKey", purposes=["general", "auth"])

@pytest.fixture
def create_input(primary_key_input):
    return CreateOperationInput(
        network=NetworkNamespace.TESTNET,
        public_key_input=[primary_key_input],
        service_endpoint_input=[
            ServiceEndpointInput(id="website", type="LinkedDomains", endpoint="https://tyron.example.com")
        ],
    )

@pytest.fixture
def ledger():
    return InMemoryLedger(clock=lambda: FIXED_TIME)

@pytest.fixture
def factory_ledger(ledger):
    """A ledger holding the factory contract and one published template version."""
    ledger.register_contract(TEMPLATE_ADDRESS, CONTRACT_CODE)
    ledger.register_contract(FACTORY_ADDRESS, "factory", state={"tyron_versions": {"0.1": TEMPLATE_ADDRESS}})
    return ledger

@pytest.fixture
def contract_init():
    return ContractInit(
        factory_address=FACTORY_ADDRESS,
        contract_owner_address=address_from_private_key(OWNER_KEY),
        client_address=address_from_private_key(CLIENT_KEY),
        initial_stake=0,
    )
