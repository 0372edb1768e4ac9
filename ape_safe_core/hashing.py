"""
EIP-712 hashing for Safe transactions and messages.

Safe transactions are hashed as ``eip712`` typed-data messages. ``SafeMessage`` is not
modelled by ``eip712``, so it is encoded directly from the contract's struct layout::

    domainSeparator = keccak256(abi.encode(DOMAIN_TYPEHASH, chainId, safe))
    structHash = keccak256(abi.encode(SAFE_MSG_TYPEHASH, keccak256(message)))
    safeMessageHash = keccak256(0x19 || 0x01 || domainSeparator || structHash)

Safe releases before v1.3.0 use a domain without ``chainId`` and, before v1.0.0, name the
``baseGas`` field ``dataGas``. Pass ``version=`` to hash for one of those releases.
"""

from typing import Any, Optional, Union

from ape.types import HexBytes
from eip712.common import SafeTxV1, SafeTxV2, create_safe_tx_def
from eip712.messages import EIP712Domain, calculate_hash
from eth_abi import encode
from eth_account.messages import encode_defunct
from eth_utils import keccak
from packaging.version import Version
from pydantic import create_model

from .constants import (
    DEFAULT_SAFE_VERSION,
    DOMAIN_TYPEHASH,
    LEGACY_DOMAIN_TYPEHASH,
    SAFE_MSG_TYPEHASH,
)
from .types import SafeTx
from .utils import to_address, to_canonical_address

SafeVersion = Union[Version, str, None]

EIP712_PREFIX = b"\x19\x01"

# NOTE: The SafeTx typed data is unchanged since v1.3.0
EIP712_LAYOUT_VERSION = "1.3.0"


def _parse_version(version: SafeVersion) -> Optional[Version]:
    if version is None or isinstance(version, Version):
        return version

    return Version(version.lstrip("v"))


def _binds_chain_id(version: SafeVersion) -> bool:
    parsed = _parse_version(version)
    return parsed is None or parsed >= Version("1.3.0")


def domain_separator(chain_id: int, safe_address: Any, version: SafeVersion = None) -> HexBytes:
    verifying_contract = to_canonical_address(safe_address)
    if not _binds_chain_id(version):
        return HexBytes(
            keccak(encode(["bytes32", "address"], [LEGACY_DOMAIN_TYPEHASH, verifying_contract]))
        )

    return HexBytes(
        keccak(
            encode(
                ["bytes32", "uint256", "address"],
                [DOMAIN_TYPEHASH, chain_id, verifying_contract],
            )
        )
    )


def _safe_tx_def(chain_id: int, safe_address: Any, version: SafeVersion) -> type:
    parsed = _parse_version(version) or Version(DEFAULT_SAFE_VERSION)
    if parsed >= Version("1.3.0"):
        return create_safe_tx_def(
            version=EIP712_LAYOUT_VERSION,
            contract_address=to_address(safe_address),
            chain_id=chain_id,
        )

    # NOTE: `eip712` keeps `dataGas` up to v1.2.0, the contracts renamed it in v1.0.0
    tx_def = create_model("SafeTx", __base__=SafeTxV1 if parsed < Version("1.0.0") else SafeTxV2)
    tx_def.eip712_domain = EIP712Domain(verifyingContract=to_address(safe_address))
    return tx_def


def as_eip712_safe_tx(
    safe_tx: SafeTx,
    chain_id: int,
    safe_address: Any,
    version: SafeVersion = None,
) -> Union[SafeTxV1, SafeTxV2]:
    """
    Convert to the ``eip712`` package's typed-data message, e.g. for
    ``AccountAPI.sign_message``.
    """
    tx_def = _safe_tx_def(chain_id, safe_address, version)
    base_gas_field = "dataGas" if "dataGas" in tx_def.model_fields else "baseGas"
    return tx_def(
        to=to_address(safe_tx.to),
        value=safe_tx.value,
        data=bytes(safe_tx.data),
        operation=int(safe_tx.operation),
        safeTxGas=safe_tx.safe_tx_gas,
        gasPrice=safe_tx.gas_price,
        gasToken=to_address(safe_tx.gas_token),
        refundReceiver=to_address(safe_tx.refund_receiver),
        nonce=safe_tx.nonce,
        **{base_gas_field: safe_tx.base_gas},
    )


def encode_safe_tx_data(
    safe_tx: SafeTx, chain_id: int, safe_address: Any, version: SafeVersion = None
) -> HexBytes:
    """The EIP-712 pre-image of :func:`get_safe_tx_hash`."""
    message = as_eip712_safe_tx(safe_tx, chain_id, safe_address, version=version)
    return HexBytes(b"\x19" + b"".join(message.signable_message))


def get_safe_tx_hash(
    safe_tx: SafeTx, chain_id: int, safe_address: Any, version: SafeVersion = None
) -> HexBytes:
    """
    The hash owners sign to approve ``safe_tx``. Matches ``Safe.getTransactionHash``.

    Args:
        safe_tx (:class:`~ape_safe_core.types.SafeTx`): The transaction to hash.
        chain_id (int): Chain the Safe is deployed on.
        safe_address: The Safe (verifying contract).
        version (Optional[str]): The Safe's version, only needed for releases before v1.3.0.

    Returns:
        HexBytes: 32-byte hash.
    """
    message = as_eip712_safe_tx(safe_tx, chain_id, safe_address, version=version)
    return HexBytes(calculate_hash(message.signable_message))


def _message_bytes(message: Union[bytes, str]) -> bytes:
    return bytes(HexBytes(message))


def encode_safe_message_data(
    message: Union[bytes, str], chain_id: int, safe_address: Any, version: SafeVersion = None
) -> HexBytes:
    struct_hash = keccak(
        encode(["bytes32", "bytes32"], [SAFE_MSG_TYPEHASH, keccak(_message_bytes(message))])
    )
    return HexBytes(
        EIP712_PREFIX + domain_separator(chain_id, safe_address, version=version) + struct_hash
    )


def get_safe_message_hash(
    message: Union[bytes, str], chain_id: int, safe_address: Any, version: SafeVersion = None
) -> HexBytes:
    """
    Hash of a ``SafeMessage(bytes message)`` for ``safe_address``.

    ``message`` is raw bytes or a hex string. For a 32-byte hash (the ERC-1271
    ``isValidSignature(bytes32,bytes)`` flow) pass the hash itself.
    """
    return HexBytes(
        keccak(encode_safe_message_data(message, chain_id, safe_address, version=version))
    )


def hash_eip191_message(message: Union[str, bytes]) -> HexBytes:
    """``keccak256("\\x19Ethereum Signed Message:\\n" + len(message) + message)``"""
    if isinstance(message, str):
        signable = encode_defunct(text=message)
    else:
        signable = encode_defunct(primitive=bytes(message))

    return HexBytes(keccak(b"\x19" + signable.version + signable.header + signable.body))
