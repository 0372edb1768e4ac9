"""
Safe signature types and the packed ``signatures`` byte layout used by ``execTransaction``.

Every signature occupies a 65-byte static slot ``{32 bytes r}{32 bytes s}{1 byte v}``,
ordered by ascending signer address. The ``v`` byte selects how the slot is interpreted:

* ``0``: contract signature (ERC-1271). ``r`` is the signer, ``s`` the offset of the
  signature data inside the packed bytes, which is stored after all static slots as
  ``{32 bytes length}{data}``.
* ``1``: approved hash. ``r`` is the signer, who approved on-chain via ``approveHash``
  or is the transaction submitter.
* ``27``/``28``: ECDSA signature over the EIP-712 hash.
* ``31``/``32``: ECDSA ``eth_sign`` signature (``v + 4``) over the EIP-191 prefixed hash.
"""

from collections.abc import Iterable, Mapping
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional, Protocol, Union

from ape.types import AddressType, HexBytes, MessageSignature
from eth_keys import keys
from eth_keys.exceptions import BadSignature
from eth_keys.exceptions import ValidationError as KeyValidationError
from pydantic import ConfigDict, model_validator

from .exceptions import DuplicateSignerError, MalformedSignatureError
from .hashing import hash_eip191_message
from .types import Address, SafeCoreModel
from .utils import address_key, pad32, to_address

if TYPE_CHECKING:
    from ape.api import AccountAPI

SIGNATURE_LENGTH = 65
ECDSA_V_VALUES = (27, 28)
ETH_SIGN_V_VALUES = (31, 32)


class SignatureType(str, Enum):
    CONTRACT_SIGNATURE = "CONTRACT_SIGNATURE"
    APPROVED_HASH = "APPROVED_HASH"
    EOA = "EOA"
    ETH_SIGN = "ETH_SIGN"


class BaseSafeSignature(SafeCoreModel):
    model_config = ConfigDict(frozen=True)

    signer: Address

    @property
    def signature_type(self) -> SignatureType:
        raise NotImplementedError

    def static_part(self, dynamic_offset: int) -> bytes:
        raise NotImplementedError

    @property
    def dynamic_part(self) -> bytes:
        return b""


class EcdsaSignature(BaseSafeSignature):
    data: HexBytes
    """``r || s || v``"""

    @model_validator(mode="after")
    def check_layout(self):
        if len(self.data) != SIGNATURE_LENGTH:
            raise MalformedSignatureError(
                f"Signature from {self.signer} must be {SIGNATURE_LENGTH} bytes, "
                f"got {len(self.data)}."
            )

        elif self.v not in ECDSA_V_VALUES + ETH_SIGN_V_VALUES:
            raise MalformedSignatureError(f"Invalid 'v' value {self.v} from {self.signer}.")

        return self

    @classmethod
    def from_bytes(cls, signer: Any, data: bytes) -> "EcdsaSignature":
        """
        Wrap the raw output of a signer.

        Some signers return a bare recovery id (``0``/``1``) instead of ``27``/``28``, so
        those are shifted. Packed Safe signatures must not go through here, because ``v``
        of ``0`` or ``1`` there selects a contract or approved-hash signature.
        """
        data = bytes(data)
        if len(data) == SIGNATURE_LENGTH and data[64] < 27:
            data = data[:64] + bytes([data[64] + 27])

        return cls(signer=signer, data=HexBytes(data))

    @classmethod
    def from_message_signature(
        cls, signer: Any, signature: MessageSignature
    ) -> "EcdsaSignature":
        return cls.from_bytes(signer, signature.encode_rsv())

    @property
    def r(self) -> bytes:
        return bytes(self.data[:32])

    @property
    def s(self) -> bytes:
        return bytes(self.data[32:64])

    @property
    def v(self) -> int:
        return self.data[64]

    @property
    def is_eth_sign(self) -> bool:
        return self.v in ETH_SIGN_V_VALUES

    @property
    def signature_type(self) -> SignatureType:
        return SignatureType.ETH_SIGN if self.is_eth_sign else SignatureType.EOA

    def static_part(self, dynamic_offset: int) -> bytes:
        return bytes(self.data)

    def recover(self, data_hash: bytes) -> AddressType:
        """
        Recover the address that produced this signature over ``data_hash``.

        ``eth_sign`` signatures are recovered against the EIP-191 prefixed hash.
        """
        return recover_signer(data_hash, self.data)


class ApprovedHashSignature(BaseSafeSignature):
    """
    Pre-validated signature: the signer approved the hash on-chain, or is submitting
    the transaction themselves.
    """

    @property
    def signature_type(self) -> SignatureType:
        return SignatureType.APPROVED_HASH

    def static_part(self, dynamic_offset: int) -> bytes:
        return pad32(bytes(HexBytes(self.signer))) + b"\x00" * 32 + b"\x01"


class ContractSignature(BaseSafeSignature):
    """An ERC-1271 signature from a contract owner (e.g. a nested Safe)."""

    data: HexBytes = HexBytes(b"")

    @property
    def signature_type(self) -> SignatureType:
        return SignatureType.CONTRACT_SIGNATURE

    def static_part(self, dynamic_offset: int) -> bytes:
        return pad32(bytes(HexBytes(self.signer))) + pad32(dynamic_offset) + b"\x00"

    @property
    def dynamic_part(self) -> bytes:
        return pad32(len(self.data)) + bytes(self.data)


SafeSignature = Union[EcdsaSignature, ApprovedHashSignature, ContractSignature]
SignatureInput = Union[SafeSignature, MessageSignature, bytes]


def _coerce_signatures(
    signatures: Union[Mapping[Any, SignatureInput], Iterable[SafeSignature]],
) -> list[SafeSignature]:
    if not isinstance(signatures, Mapping):
        coerced = list(signatures)
        for sig in coerced:
            if not isinstance(sig, BaseSafeSignature):
                raise MalformedSignatureError(f"Cannot determine the signer of {sig!r}.")

        return coerced

    result: list[SafeSignature] = []
    for signer, sig in signatures.items():
        signer = to_address(signer)
        if isinstance(sig, BaseSafeSignature):
            if sig.signer != signer:
                raise MalformedSignatureError(
                    f"Signature keyed by {signer} was produced by {sig.signer}."
                )

            result.append(sig)

        else:
            data = sig.encode_rsv() if isinstance(sig, MessageSignature) else sig
            result.append(_from_packed_slot(signer, bytes(data)))

    return result


def _from_packed_slot(signer: AddressType, data: bytes) -> SafeSignature:
    # NOTE: `v` selects the signature type, as in the packed `signatures` bytes
    if len(data) != SIGNATURE_LENGTH:
        raise MalformedSignatureError(
            f"Signature from {signer} must be {SIGNATURE_LENGTH} bytes, got {len(data)}."
        )

    elif data[64] == 1:
        if to_address(data[12:32]) != signer:
            raise MalformedSignatureError(
                f"Approved-hash signature keyed by {signer} names {to_address(data[12:32])}."
            )

        return ApprovedHashSignature(signer=signer)

    elif data[64] == 0:
        raise MalformedSignatureError(
            f"Contract signature from {signer} needs its data, use `ContractSignature`."
        )

    return EcdsaSignature(signer=signer, data=HexBytes(data))


def order_signatures(signatures: Iterable[SafeSignature]) -> list[SafeSignature]:
    """Sort ascending by signer, refusing the same signer twice."""
    signatures = list(signatures)
    seen: set[AddressType] = set()
    for sig in signatures:
        if sig.signer in seen:
            raise DuplicateSignerError(sig.signer)

        seen.add(sig.signer)

    return sorted(signatures, key=lambda sig: address_key(sig.signer))


def encode_signatures(
    signatures: Union[Mapping[Any, SignatureInput], Iterable[SafeSignature]],
    expected_count: Optional[int] = None,
) -> HexBytes:
    """
    Pack signatures into the byte string ``execTransaction`` and ``checkSignatures`` expect.

    Args:
        signatures: :class:`SafeSignature` values, or a mapping of signer to
          :class:`SafeSignature`, ``MessageSignature`` or raw 65-byte ``r || s || v``.
          For the last two, ``v`` of ``1`` is an approved-hash signature and ``v`` of ``0``
          is refused, since a contract signature needs :class:`ContractSignature`.
        expected_count (Optional[int]): If given, exactly this many signatures are required.

    Raises:
        :class:`~ape_safe_core.exceptions.DuplicateSignerError`: A signer appears twice.
        :class:`~ape_safe_core.exceptions.MalformedSignatureError`: A signature has the
          wrong length or ``v`` byte, or the count does not match ``expected_count``.

    Returns:
        HexBytes
    """
    ordered = order_signatures(_coerce_signatures(signatures))
    if expected_count is not None and len(ordered) != expected_count:
        raise MalformedSignatureError(
            f"Expected {expected_count} signatures, got {len(ordered)}."
        )

    static_parts = b""
    dynamic_parts = b""
    dynamic_offset = SIGNATURE_LENGTH * len(ordered)
    for sig in ordered:
        static_parts += sig.static_part(dynamic_offset + len(dynamic_parts))
        dynamic_parts += sig.dynamic_part

    return HexBytes(static_parts + dynamic_parts)


def recover_signer(data_hash: bytes, signature: bytes) -> AddressType:
    """
    Recover the signer of a 65-byte ``r || s || v`` signature over a Safe hash.

    ``v`` of ``31``/``32`` marks an ``eth_sign`` signature, recovered against the
    EIP-191 prefixed hash.
    """
    signature = bytes(signature)
    if len(signature) != SIGNATURE_LENGTH:
        raise MalformedSignatureError(f"Signature must be {SIGNATURE_LENGTH} bytes.")

    r, s, v = signature[:32], signature[32:64], signature[64]
    if v in ETH_SIGN_V_VALUES:
        msghash, v = bytes(hash_eip191_message(bytes(data_hash))), v - 4
    else:
        msghash = bytes(data_hash)

    try:
        public_key = keys.Signature(
            vrs=(v - 27, int.from_bytes(r, "big"), int.from_bytes(s, "big"))
        ).recover_public_key_from_msg_hash(msghash)

    except (BadSignature, KeyValidationError) as err:
        raise MalformedSignatureError(f"Cannot recover signer: {err}") from err

    return to_address(public_key.to_canonical_address())


def decode_signatures(
    packed: bytes,
    data_hash: Optional[bytes] = None,
    count: Optional[int] = None,
) -> list[SafeSignature]:
    """
    Parse packed signatures back into :class:`SafeSignature` values, in packed order.

    ECDSA slots do not carry their signer, so ``data_hash`` is needed to recover it.
    When ``count`` is not given, static slots are read until the first contract
    signature's data (or the end of the bytes) is reached.
    """
    packed = bytes(packed)
    static_end = len(packed) if count is None else count * SIGNATURE_LENGTH
    if len(packed) < static_end:
        raise MalformedSignatureError("Signatures data too short.")

    signatures: list[SafeSignature] = []
    index = 0
    while (index + 1) * SIGNATURE_LENGTH <= static_end:
        slot = packed[index * SIGNATURE_LENGTH : (index + 1) * SIGNATURE_LENGTH]
        r, s, v = slot[:32], slot[32:64], slot[64]
        index += 1

        if v == 0:
            offset = int.from_bytes(s, "big")
            if count is None:
                static_end = min(static_end, offset)

            if offset < max(static_end, index * SIGNATURE_LENGTH):
                raise MalformedSignatureError(
                    "Invalid contract signature location: inside static part."
                )

            elif offset + 32 > len(packed):
                raise MalformedSignatureError(
                    "Invalid contract signature location: length not present."
                )

            length = int.from_bytes(packed[offset : offset + 32], "big")
            if offset + 32 + length > len(packed):
                raise MalformedSignatureError(
                    "Invalid contract signature location: data not complete."
                )

            signatures.append(
                ContractSignature(signer=r[12:], data=packed[offset + 32 : offset + 32 + length])
            )

        elif v == 1:
            signatures.append(ApprovedHashSignature(signer=r[12:]))

        elif data_hash is None:
            raise MalformedSignatureError("`data_hash` is required to recover ECDSA signers.")

        else:
            signatures.append(
                EcdsaSignature(signer=recover_signer(data_hash, slot), data=HexBytes(slot))
            )

    return signatures


class Signer(Protocol):
    """Anything that can sign a 32-byte Safe hash on behalf of an owner."""

    @property
    def address(self) -> AddressType: ...

    def sign(self, msghash: bytes) -> Optional[bytes]: ...


class ApeAccountSigner:
    """Adapts an Ape account to :class:`Signer`, signing hashes with ``sign_raw_msghash``."""

    def __init__(self, account: "AccountAPI", eth_sign: bool = False):
        self.account = account
        self.eth_sign = eth_sign

    def __repr__(self) -> str:
        return f"<{self.__class__.__qualname__} {self.address}>"

    @property
    def address(self) -> AddressType:
        return to_address(self.account.address)

    def sign(self, msghash: bytes) -> Optional[bytes]:
        if self.eth_sign:
            msghash = hash_eip191_message(bytes(msghash))

        if not (signature := self.account.sign_raw_msghash(HexBytes(msghash))):
            return None

        data = EcdsaSignature.from_message_signature(self.address, signature).data
        if self.eth_sign:
            return bytes(data[:64]) + bytes([data[64] + 4])

        return bytes(data)


def get_signatures(
    safe_tx_hash: bytes,
    signers: Iterable[Signer],
) -> dict[AddressType, EcdsaSignature]:
    signatures: dict[AddressType, EcdsaSignature] = {}
    for signer in signers:
        signature = signer.sign(safe_tx_hash)
        if signature:
            signatures[to_address(signer.address)] = EcdsaSignature.from_bytes(
                signer.address, signature
            )

    return signatures
