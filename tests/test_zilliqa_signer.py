"""Tests for the pyzil-backed transaction signer"""

from unittest.mock import MagicMock, patch

import pytest

from conftest import CLIENT_KEY
from tyron_did_tool.errors import ConfigurationError
from tyron_did_tool.zilliqa_signer import PyzilSigner

TESTNET_VERSION = (333 << 16) + 1
TRANSACTION = {
    "version": TESTNET_VERSION,
    "nonce": 3,
    "toAddr": "0" * 40,
    "amount": "0",
    "pubKey": "02" + "ab" * 32,
    "gasPrice": "2000000000",
    "gasLimit": "10000",
    "code": "scilla_version 0",
    "data": "[]",
    "priority": False,
}


@pytest.fixture
def pyzil():
    account_cls = MagicMock()
    account_cls.return_value.zil_key.keypair_str.public = "02" + "cd" * 32
    chain = MagicMock()
    chain.MainNet.version = (1 << 16) + 1
    chain.TestNet.version = TESTNET_VERSION
    chain.TestNet.build_transaction_params.return_value = {"signature": "ee" * 64}
    with patch("tyron_did_tool.zilliqa_signer._load_pyzil", return_value=(account_cls, chain)):
        yield account_cls, chain


def test_signer_loads_key(pyzil):
    account_cls, chain = pyzil
    signer = PyzilSigner("0x" + CLIENT_KEY)
    account_cls.assert_called_once_with(private_key=CLIENT_KEY)
    assert signer.public_key == "02" + "cd" * 32

def test_sign_uses_chain_of_transaction_version(pyzil):
    account_cls, chain = pyzil
    signer = PyzilSigner(CLIENT_KEY)

    assert signer.sign(TRANSACTION) == "ee" * 64

    chain.MainNet.build_transaction_params.assert_not_called()
    args = chain.TestNet.build_transaction_params.call_args.args
    assert args[0] is account_cls.return_value.zil_key
    assert args[1:] == ("0" * 40, "0", 3, "2000000000", 10000, "scilla_version 0", "[]", False)

def test_sign_unknown_chain(pyzil):
    signer = PyzilSigner(CLIENT_KEY)
    with pytest.raises(ConfigurationError):
        signer.sign(dict(TRANSACTION, version=(42 << 16) + 1))

@patch.dict("sys.modules", {"pyzil": None, "pyzil.account": None, "pyzil.zilliqa": None})
def test_missing_pyzil():
    with pytest.raises(ConfigurationError) as excinfo:
        PyzilSigner(CLIENT_KEY)
    assert "tyron-did-tool[zilliqa]" in str(excinfo.value)
