import pytest
from ape.utils import ZERO_ADDRESS
from eth_utils import keccak

from ape_safe_core.exceptions import InvalidAddressError
from ape_safe_core.utils import (
    address_key,
    decode_address_word,
    mapping_storage_slot,
    order_by_signer,
    pad32,
    to_address,
)

ADDRESS = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"


def test_order_by_signer_empty():
    assert order_by_signer({}) == []


def test_order_by_signer_1_sig(signers):
    signature = signers[0].sign(keccak(text="hello"))
    signature_map = {signers[0].address: signature}
    assert order_by_signer(signature_map) == [signature]


def test_order_by_signer_n_sigs(signers):
    acct_0, acct_1 = sorted(signers[:2], key=lambda s: address_key(s.address), reverse=True)
    assert address_key(acct_0.address) > address_key(acct_1.address)

    signature_0 = acct_0.sign(keccak(text="hello"))
    signature_1 = acct_1.sign(keccak(text="hello"))

    # Ensure all orders of the dict work.
    signature_map_0 = {acct_0.address: signature_0, acct_1.address: signature_1}
    signature_map_1 = {acct_1.address: signature_1, acct_0.address: signature_0}

    # We expect the signatures to be sorted in ascending order by the
    # signer's address. Here, acct_0 > acct_1 so acct_1's signature is
    # the first and acct_0's is the latter.
    expected = [signature_1, signature_0]
    act_0 = order_by_signer(signature_map_0)
    act_1 = order_by_signer(signature_map_1)
    assert act_0 == act_1 == expected


def test_order_by_signer_ignores_case(signers):
    lower = {signers[0].address.lower(): "a", signers[1].address.upper().replace("0X", "0x"): "b"}
    checksummed = {signers[0].address: "a", signers[1].address: "b"}
    assert order_by_signer(lower) == order_by_signer(checksummed)


@pytest.mark.parametrize(
    "value",
    [
        ADDRESS,
        ADDRESS.lower(),
        ADDRESS.lower()[2:],
        "0x" + ADDRESS[2:].upper(),
        bytes.fromhex(ADDRESS[2:]),
    ],
)
def test_to_address(value):
    assert to_address(value) == ADDRESS


def test_to_address_from_object(signers):
    assert to_address(signers[0]) == signers[0].address


@pytest.mark.parametrize("value", ["", "0x1234", ADDRESS + "00", b"\x01" * 19, 1234, None])
def test_to_address_invalid(value):
    with pytest.raises(InvalidAddressError):
        to_address(value)


def test_pad32():
    assert pad32(1) == b"\x00" * 31 + b"\x01"
    assert pad32(b"\xff") == b"\x00" * 31 + b"\xff"
    assert len(pad32(bytes.fromhex(ADDRESS[2:]))) == 32


def test_mapping_storage_slot():
    # `modules[SENTINEL]`, the head of the module list
    assert mapping_storage_slot("0x0000000000000000000000000000000000000001", 1).hex() == (
        "cc69885fda6bcc1a4ace058b4a62bf5e179ea78fd58a1ccd71c22cc9b688792f"
    )


def test_decode_address_word():
    assert decode_address_word(pad32(bytes.fromhex(ADDRESS[2:]))) == ADDRESS
    assert decode_address_word(b"\x00" * 32) == ZERO_ADDRESS
