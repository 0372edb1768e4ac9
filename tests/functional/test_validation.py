import pytest
from eth_utils import keccak

from ape_safe_core import abi
from ape_safe_core.chain.mock import revert
from ape_safe_core.constants import EIP1271_MAGIC_VALUE, LEGACY_EIP1271_MAGIC_VALUE
from ape_safe_core.exceptions import (
    DuplicateSignerError,
    InvalidThresholdError,
    MalformedSignatureError,
    NotASigner,
    NotEnoughSignatures,
    SignatureValidationError,
)
from ape_safe_core.hashing import get_safe_message_hash
from ape_safe_core.signatures import (
    ApprovedHashSignature,
    ContractSignature,
    EcdsaSignature,
    encode_signatures,
)
from ape_safe_core.utils import address_key, to_address
from ape_safe_core.validation import SignatureValidator

DATA_HASH = keccak(text="data to sign")
SIGNING_CONTRACT = to_address("0x00000000000000000000000000000000000012fe")


def signing_contract(calldata):
    selector = bytes(calldata[:4])
    if selector == abi.IS_VALID_SIGNATURE.selector:
        _, signature = abi.IS_VALID_SIGNATURE.decode_input(calldata)
        magic_value = EIP1271_MAGIC_VALUE

    else:
        _, signature = abi.LEGACY_IS_VALID_SIGNATURE.decode_input(calldata)
        magic_value = LEGACY_EIP1271_MAGIC_VALUE

    if signature == b"revert":
        raise revert("Bad signature")

    elif signature == b"ok":
        return bytes(magic_value).ljust(32, b"\x00")

    elif signature == b"dirty":
        return bytes(magic_value) + b"\x00" * 27 + b"\x01"

    return b"\x00" * 32


@pytest.fixture
def validator(mock_chain):
    mock_chain.add_contract(SIGNING_CONTRACT, signing_contract)
    return SignatureValidator(chain=mock_chain)


def test_is_valid_signature(validator):
    result = validator.is_valid_signature(SIGNING_CONTRACT, DATA_HASH, b"ok")
    assert result.valid
    assert result.signer == SIGNING_CONTRACT
    result.raise_for_status()


def test_is_valid_signature_legacy(validator):
    result = validator.is_valid_signature(SIGNING_CONTRACT, data=b"raw message", signature=b"ok")
    assert result.valid


def test_is_valid_signature_wrong_value(validator):
    result = validator.is_valid_signature(SIGNING_CONTRACT, DATA_HASH, b"nope")
    assert not result.valid
    assert "magic value" in result.reason

    with pytest.raises(SignatureValidationError):
        result.raise_for_status()


def test_is_valid_signature_dirty_word(validator):
    result = validator.is_valid_signature(SIGNING_CONTRACT, DATA_HASH, b"dirty")
    assert not result.valid


def test_is_valid_signature_revert(validator):
    result = validator.is_valid_signature(SIGNING_CONTRACT, DATA_HASH, b"revert")
    assert not result.valid
    assert result.reason == "Bad signature"


def test_is_valid_signature_no_contract(validator, outsider):
    result = validator.is_valid_signature(outsider.address, DATA_HASH, b"ok")
    assert not result.valid
    assert "empty result" in result.reason


def test_is_valid_signature_needs_hash_or_data(validator):
    with pytest.raises(TypeError):
        validator.is_valid_signature(SIGNING_CONTRACT)


def test_safe_as_signer(mock_chain, validator, safe, OWNERS, THRESHOLD):
    message_hash = get_safe_message_hash(DATA_HASH, mock_chain.chain_id, safe.address)
    signatures = {
        owner.address: EcdsaSignature.from_bytes(owner.address, owner.sign(message_hash))
        for owner in OWNERS[:THRESHOLD]
    }

    result = validator.is_valid_signature(safe.address, DATA_HASH, encode_signatures(signatures))
    assert result.valid

    # NOTE: Signatures over the raw hash instead of the Safe message hash are rejected
    signatures = {
        owner.address: EcdsaSignature.from_bytes(owner.address, owner.sign(DATA_HASH))
        for owner in OWNERS[:THRESHOLD]
    }
    result = validator.is_valid_signature(safe.address, DATA_HASH, encode_signatures(signatures))
    assert not result.valid
    assert "GS026" in result.reason


def test_check_signatures(builder, validator, safe, OWNERS, THRESHOLD):
    safe_tx = builder.create_safe_tx()
    safe_tx_hash = builder.get_safe_tx_hash(safe_tx)
    signatures = builder.get_signatures(safe_tx, OWNERS[:THRESHOLD])

    results = validator.check_signatures(safe.address, safe_tx_hash, encode_signatures(signatures))
    assert len(results) == THRESHOLD
    assert all(r.valid for r in results)
    assert [r.signer for r in results] == sorted(signatures, key=address_key)


def test_check_signatures_not_enough(builder, validator, safe, OWNERS, THRESHOLD):
    safe_tx_hash = builder.get_safe_tx_hash(builder.create_safe_tx())
    signatures = builder.get_signatures(builder.create_safe_tx(), OWNERS[: THRESHOLD - 1])
    with pytest.raises(NotEnoughSignatures):
        validator.check_signatures(safe.address, safe_tx_hash, signatures.values())


def test_check_signatures_zero_threshold(validator, safe):
    with pytest.raises(InvalidThresholdError):
        validator.check_signatures(safe.address, DATA_HASH, b"", threshold=0)


def test_check_signatures_not_owner(validator, safe, outsider):
    signature = EcdsaSignature.from_bytes(outsider.address, outsider.sign(DATA_HASH))
    with pytest.raises(NotASigner):
        validator.check_signatures(safe.address, DATA_HASH, [signature], threshold=1)


def test_check_signatures_wrong_hash(validator, safe, OWNERS):
    signature = EcdsaSignature.from_bytes(OWNERS[0].address, OWNERS[0].sign(keccak(b"other")))
    with pytest.raises(SignatureValidationError):
        validator.check_signatures(safe.address, DATA_HASH, [signature], threshold=1)


def test_check_signatures_unsorted(validator, safe, signers):
    owners = sorted(signers[:2], key=lambda s: address_key(s.address), reverse=True)
    signatures = [EcdsaSignature.from_bytes(s.address, s.sign(DATA_HASH)) for s in owners]
    with pytest.raises(MalformedSignatureError):
        validator.check_signatures(
            safe.address, DATA_HASH, signatures, owners=[s.address for s in owners], threshold=2
        )


def test_check_signatures_duplicate(validator, safe, OWNERS):
    signature = EcdsaSignature.from_bytes(OWNERS[0].address, OWNERS[0].sign(DATA_HASH))
    with pytest.raises(DuplicateSignerError):
        validator.check_signatures(safe.address, DATA_HASH, [signature, signature], threshold=2)


def test_check_signatures_approved_hash(mock_chain, validator, safe, OWNERS):
    signature = ApprovedHashSignature(signer=OWNERS[0].address)
    with pytest.raises(SignatureValidationError, match="GS025"):
        validator.check_signatures(safe.address, DATA_HASH, [signature], threshold=1)

    # NOTE: The submitter does not need to approve on-chain
    results = validator.check_signatures(
        safe.address, DATA_HASH, [signature], threshold=1, executor=OWNERS[0].address
    )
    assert results[0].valid

    mock_chain.approve_hash(safe.address, OWNERS[0].address, DATA_HASH)
    assert validator.check_signatures(safe.address, DATA_HASH, [signature], threshold=1)


def test_check_signatures_contract_owner(mock_chain, validator, signers):
    owner = signers[0]
    safe = mock_chain.add_safe(
        "0x5afe0000000000000000000000000000000012fe",
        owners=[owner.address, SIGNING_CONTRACT],
        threshold=2,
    )
    signatures = [
        EcdsaSignature.from_bytes(owner.address, owner.sign(DATA_HASH)),
        ContractSignature(signer=SIGNING_CONTRACT, data=b"ok"),
    ]
    packed = encode_signatures(signatures)
    assert len(validator.check_signatures(safe.address, DATA_HASH, packed)) == 2

    # NOTE: The emulated `checkNSignatures` agrees
    mock_chain.check_n_signatures(safe, DATA_HASH, packed, 2)

    signatures[1] = ContractSignature(signer=SIGNING_CONTRACT, data=b"nope")
    with pytest.raises(SignatureValidationError):
        validator.check_signatures(safe.address, DATA_HASH, encode_signatures(signatures))
