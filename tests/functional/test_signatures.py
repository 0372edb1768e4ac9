import pytest
from ape.types import MessageSignature
from eth_utils import keccak

from ape_safe_core.exceptions import (
    DuplicateSignerError,
    InvalidAddressError,
    MalformedSignatureError,
)
from ape_safe_core.hashing import hash_eip191_message
from ape_safe_core.signatures import (
    SIGNATURE_LENGTH,
    ApeAccountSigner,
    ApprovedHashSignature,
    ContractSignature,
    EcdsaSignature,
    SignatureType,
    decode_signatures,
    encode_signatures,
    get_signatures,
    order_signatures,
    recover_signer,
)
from ape_safe_core.utils import address_key

DATA_HASH = keccak(text="safe transaction")
CONTRACT_OWNER = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"


def eth_sign(signer, data_hash: bytes) -> bytes:
    signature = signer.sign(hash_eip191_message(data_hash))
    return signature[:64] + bytes([signature[64] + 27 + 4])


def test_from_bytes_normalizes_v(signers):
    signature = EcdsaSignature.from_bytes(signers[0].address, signers[0].sign(DATA_HASH))
    assert signature.v in (27, 28)
    assert signature.signature_type == SignatureType.EOA
    assert signature.recover(DATA_HASH) == signers[0].address


def test_from_message_signature(signers):
    raw = signers[0].sign(DATA_HASH)
    message_signature = MessageSignature(v=raw[64] + 27, r=raw[:32], s=raw[32:64])
    signature = EcdsaSignature.from_message_signature(signers[0].address, message_signature)
    assert signature.recover(DATA_HASH) == signers[0].address


@pytest.mark.parametrize("length", [0, 64, 66])
def test_ecdsa_signature_length(signers, length):
    with pytest.raises(MalformedSignatureError):
        EcdsaSignature(signer=signers[0].address, data=b"\x01" * (length - 1) + b"\x1b")


@pytest.mark.parametrize("v", [0, 1, 29, 30, 33])
def test_ecdsa_signature_v(signers, v):
    with pytest.raises(MalformedSignatureError):
        EcdsaSignature(signer=signers[0].address, data=b"\x01" * 64 + bytes([v]))


def test_recover_eth_sign(signers):
    data = eth_sign(signers[0], DATA_HASH)
    assert data[64] in (31, 32)
    assert recover_signer(DATA_HASH, data) == signers[0].address

    signature = EcdsaSignature(signer=signers[0].address, data=data)
    assert signature.is_eth_sign
    assert signature.signature_type == SignatureType.ETH_SIGN


def test_recover_wrong_length():
    with pytest.raises(MalformedSignatureError):
        recover_signer(DATA_HASH, b"\x00" * 64)


def test_encode_signatures_orders_by_signer(signers):
    signatures = get_signatures(DATA_HASH, signers[:4])
    packed = encode_signatures(signatures)
    assert len(packed) == 4 * SIGNATURE_LENGTH

    ordered = sorted(signers[:4], key=lambda s: address_key(s.address))
    for index, signer in enumerate(ordered):
        slot = packed[index * SIGNATURE_LENGTH : (index + 1) * SIGNATURE_LENGTH]
        assert recover_signer(DATA_HASH, slot) == signer.address


def test_encode_signatures_from_raw_bytes(signers):
    raw = {}
    for signer in signers[:2]:
        signature = signer.sign(DATA_HASH)
        raw[signer.address.lower()] = signature[:64] + bytes([signature[64] + 27])

    typed = get_signatures(DATA_HASH, signers[:2])
    assert encode_signatures(raw) == encode_signatures(typed)


def test_encode_signatures_from_approved_hash_slot(signers):
    owner = signers[0].address
    preapproved = MessageSignature(v=1, r=b"\x00" * 12 + bytes.fromhex(owner[2:]), s=b"\x00" * 32)
    assert encode_signatures({owner: preapproved}) == encode_signatures(
        [ApprovedHashSignature(signer=owner)]
    )


def test_encode_signatures_approved_hash_slot_for_other_owner(signers):
    other = bytes.fromhex(signers[1].address[2:])
    preapproved = MessageSignature(v=1, r=b"\x00" * 12 + other, s=b"\x00" * 32)
    with pytest.raises(MalformedSignatureError):
        encode_signatures({signers[0].address: preapproved})


def test_encode_signatures_refuses_contract_slot(signers):
    with pytest.raises(MalformedSignatureError, match="ContractSignature"):
        encode_signatures({signers[0].address: b"\x00" * 64 + b"\x00"})


def test_encode_signatures_from_generator(signers):
    signatures = (ApprovedHashSignature(signer=signer.address) for signer in signers[:2])
    assert len(encode_signatures(signatures)) == 2 * SIGNATURE_LENGTH


def test_order_signatures_from_generator(signers):
    ordered = order_signatures(
        ApprovedHashSignature(signer=signer.address) for signer in signers[:3]
    )
    assert [s.signer for s in ordered] == sorted(
        (signer.address for signer in signers[:3]), key=address_key
    )


def test_encode_signatures_duplicate_signer(signers):
    signature = EcdsaSignature.from_bytes(signers[0].address, signers[0].sign(DATA_HASH))
    with pytest.raises(DuplicateSignerError):
        encode_signatures([signature, signature])


def test_encode_signatures_expected_count(signers):
    signatures = get_signatures(DATA_HASH, signers[:2])
    with pytest.raises(MalformedSignatureError):
        encode_signatures(signatures, expected_count=3)


def test_encode_signatures_mismatched_key(signers):
    signature = EcdsaSignature.from_bytes(signers[0].address, signers[0].sign(DATA_HASH))
    with pytest.raises(MalformedSignatureError):
        encode_signatures({signers[1].address: signature})


def test_approved_hash_signature(signers):
    packed = encode_signatures([ApprovedHashSignature(signer=signers[0].address)])
    assert packed[:12] == b"\x00" * 12
    assert packed[12:32] == bytes.fromhex(signers[0].address[2:])
    assert packed[32:64] == b"\x00" * 32
    assert packed[64] == 1


def test_contract_signature_layout(signers):
    contract_signature = ContractSignature(signer=CONTRACT_OWNER, data=b"\xaa" * 3)
    ecdsa_signature = EcdsaSignature.from_bytes(signers[0].address, signers[0].sign(DATA_HASH))
    packed = encode_signatures([contract_signature, ecdsa_signature])

    # NOTE: Dynamic data starts right after the two static slots
    assert len(packed) == 2 * SIGNATURE_LENGTH + 32 + 3
    contract_index = int(address_key(CONTRACT_OWNER) > address_key(signers[0].address))
    slot = packed[contract_index * SIGNATURE_LENGTH : (contract_index + 1) * SIGNATURE_LENGTH]
    assert int.from_bytes(slot[32:64], "big") == 2 * SIGNATURE_LENGTH
    assert slot[64] == 0
    assert int.from_bytes(packed[130:162], "big") == 3
    assert packed[162:] == b"\xaa" * 3


def test_decode_signatures(signers):
    signatures = [
        EcdsaSignature.from_bytes(signers[0].address, signers[0].sign(DATA_HASH)),
        EcdsaSignature(signer=signers[1].address, data=eth_sign(signers[1], DATA_HASH)),
        ApprovedHashSignature(signer=signers[2].address),
        ContractSignature(signer=CONTRACT_OWNER, data=b"\x01\x02"),
    ]
    packed = encode_signatures(signatures)
    decoded = decode_signatures(packed, data_hash=DATA_HASH)
    assert decoded == sorted(signatures, key=lambda s: address_key(s.signer))
    assert decode_signatures(packed, data_hash=DATA_HASH, count=4) == decoded


def test_decode_signatures_needs_hash_for_ecdsa(signers):
    packed = encode_signatures(get_signatures(DATA_HASH, signers[:1]))
    with pytest.raises(MalformedSignatureError):
        decode_signatures(packed)


def test_decode_signatures_too_short():
    with pytest.raises(MalformedSignatureError):
        decode_signatures(b"\x00" * 64, count=1)


def test_decode_contract_signature_inside_static_part():
    slot = b"\x00" * 12 + bytes.fromhex(CONTRACT_OWNER[2:]) + (32).to_bytes(32, "big") + b"\x00"
    with pytest.raises(MalformedSignatureError, match="inside static part"):
        decode_signatures(slot + b"\x00" * 64)


def test_get_signatures_skips_declined(signers, declining_signer):
    signatures = get_signatures(DATA_HASH, [signers[0], declining_signer])
    assert list(signatures) == [signers[0].address]


@pytest.mark.parametrize("use_eth_sign", [False, True])
def test_ape_account_signer(accounts, use_eth_sign):
    signer = ApeAccountSigner(accounts[0], eth_sign=use_eth_sign)
    assert signer.address == accounts[0].address

    signatures = get_signatures(DATA_HASH, [signer])
    signature = signatures[signer.address]
    assert signature.is_eth_sign == use_eth_sign
    assert recover_signer(DATA_HASH, signature.data) == accounts[0].address


@pytest.mark.parametrize("signature_cls", [ApprovedHashSignature, ContractSignature])
def test_signature_invalid_signer(signature_cls):
    with pytest.raises(InvalidAddressError):
        signature_cls(signer="0xnothex")
