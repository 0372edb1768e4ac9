import pytest
from eth_abi import encode
from eth_abi.packed import encode_packed

from ape_safe_core import abi
from ape_safe_core.constants import DEPLOYMENTS
from ape_safe_core.multisend import MultiSend
from ape_safe_core.types import OperationType

TOKEN = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
VAULT = "0xfB6916095ca1df60bB79Ce92cE3Ea74c37c5d359"


class MethodHandler:
    """Stands in for an Ape ``ContractMethodHandler``."""

    def __init__(self, address: str, method: abi.SafeMethod):
        self.contract = type("Contract", (), {"address": address})()
        self.method = method

    def encode_input(self, *args):
        return self.method.encode_input(*args)


APPROVE = abi.SafeMethod("approve", ("address", "uint256"), ("bool",))
DEPOSIT = abi.SafeMethod("deposit", ("uint256",))


@pytest.fixture
def multisend():
    return MultiSend()


def test_default_address(multisend):
    assert multisend.address == DEPLOYMENTS["1.4.1"]["multisend_call_only"]
    assert MultiSend(version="1.3.0").address == DEPLOYMENTS["1.3.0"]["multisend_call_only"]
    assert MultiSend(address=TOKEN.lower()).address == TOKEN


def test_add_method_handler(multisend):
    multisend.add(MethodHandler(TOKEN, APPROVE), VAULT, 123)
    multisend.add(MethodHandler(VAULT, DEPOSIT), 10, value=5)

    assert len(multisend) == 2
    assert multisend.calls[0]["target"] == TOKEN
    assert multisend.calls[0]["callData"] == APPROVE.encode_input(VAULT, 123)
    assert multisend.calls[1]["value"] == 5
    assert multisend.required_value == 5


def test_encode(multisend):
    calldata = b"\x12\x34"
    multisend.add(TOKEN, data=calldata, value=7)
    expected = encode_packed(
        ["uint8", "address", "uint256", "uint256", "bytes"],
        [0, TOKEN, 7, len(calldata), calldata],
    )
    assert multisend.encoded_calls == [expected]
    assert multisend.encode() == abi.MULTI_SEND.selector + encode(["bytes"], [expected])


def test_encode_empty(multisend):
    with pytest.raises(ValueError):
        multisend.encode()


def test_negative_value(multisend):
    with pytest.raises(ValueError):
        multisend.add(TOKEN, value=-1)


def test_add_from_calldata(multisend):
    multisend.add(MethodHandler(TOKEN, APPROVE), VAULT, 123)
    multisend.add(VAULT, data=b"", value=1)

    decoded = MultiSend().add_from_calldata(multisend.encode())
    assert decoded.calls == multisend.calls


def test_add_from_calldata_delegatecall():
    transaction = encode_packed(
        ["uint8", "address", "uint256", "uint256", "bytes"],
        [int(OperationType.DELEGATECALL), TOKEN, 0, 0, b""],
    )
    with pytest.raises(ValueError):
        MultiSend().add_from_calldata(abi.MULTI_SEND.encode_input(transaction))


def test_execute_batch(mock_chain, builder, safe, exec_safe_tx):
    received = []
    batch = MultiSend().add(TOKEN, data=b"\x01").add(VAULT, data=b"\x02", value=3)
    mock_chain.add_contract(
        batch.address, lambda calldata: received.append(MultiSend().add_from_calldata(calldata))
    )

    exec_safe_tx(builder.multisend(batch))
    assert len(received) == 1
    assert received[0].calls == batch.calls
    assert safe.nonce == 1
