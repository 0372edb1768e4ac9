from collections.abc import Mapping
from typing import Any, TypeVar, Union

from ape.types import AddressType
from cchecksum import to_checksum_address
from eth_utils import add_0x_prefix, is_hex_address, keccak, to_bytes, to_hex, to_int

from .exceptions import InvalidAddressError

_T = TypeVar("_T")


def to_address(value: Any) -> AddressType:
    """
    Normalize anything address-like into its checksummed form.

    Accepts hex strings in any letter case (with or without ``0x``), 20-byte values, and
    objects exposing an ``.address`` attribute (accounts, contract instances).
    """
    if hasattr(value, "address") and not isinstance(value, (str, bytes, bytearray)):
        return to_address(value.address)

    if isinstance(value, (bytes, bytearray)):
        if len(value) != 20:
            raise InvalidAddressError(value)

        return to_checksum_address(to_hex(value))

    if isinstance(value, str) and is_hex_address(value):
        return to_checksum_address(add_0x_prefix(value))  # type: ignore[arg-type]

    raise InvalidAddressError(value)


def to_canonical_address(value: Any) -> bytes:
    """The raw 20-byte form of ``value``, used for ABI and packed encoding."""
    return to_bytes(hexstr=to_address(value))


def address_key(address: Union[AddressType, str]) -> int:
    # NOTE: Safe compares owners by their integer value (`currentOwner > lastOwner`)
    return to_int(hexstr=address)


def order_by_signer(signatures: Mapping[Any, _T]) -> list[_T]:
    # NOTE: Must order signatures in ascending order of signer address (converted to int)
    return [
        signatures[signer]
        for signer in sorted(signatures, key=lambda a: address_key(to_address(a)))
    ]


def pad32(value: Union[bytes, int]) -> bytes:
    if isinstance(value, int):
        return value.to_bytes(32, "big")

    return value.rjust(32, b"\x00")


def mapping_storage_slot(key: Any, slot: int) -> bytes:
    """
    Storage slot of ``mapping[key]`` for a Solidity mapping declared at ``slot``.

    ``key`` may be an address-like value or a 32-byte word.
    """
    if isinstance(key, (bytes, bytearray)) and len(key) == 32:
        key_word = bytes(key)
    else:
        key_word = pad32(to_canonical_address(key))

    return keccak(key_word + pad32(slot))


def decode_address_word(word: bytes) -> AddressType:
    """Checksummed address held in the low 20 bytes of a 32-byte storage word."""
    return to_address(bytes(pad32(word)[12:]))
