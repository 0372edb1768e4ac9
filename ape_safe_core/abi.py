"""
ABI fragments of the Safe contracts this package talks to.

Only the handful of methods the core needs are described here, so the package works
without compiling or fetching the full Safe contract types.
"""

from typing import Any

from ape.types import HexBytes
from eth_abi import decode, encode
from eth_utils import function_signature_to_4byte_selector

from .utils import to_address


def _normalize(abi_type: str, value: Any) -> Any:
    if abi_type == "address":
        return to_address(value)

    elif abi_type == "address[]":
        return [to_address(v) for v in value]

    return value


class SafeMethod:
    def __init__(self, name: str, inputs: tuple[str, ...] = (), outputs: tuple[str, ...] = ()):
        self.name = name
        self.inputs = inputs
        self.outputs = outputs

    def __repr__(self) -> str:
        return f"<{self.__class__.__qualname__} {self.signature}>"

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(self.inputs)})"

    @property
    def selector(self) -> HexBytes:
        return HexBytes(function_signature_to_4byte_selector(self.signature))

    def encode_input(self, *args) -> HexBytes:
        if len(args) != len(self.inputs):
            raise TypeError(
                f"{self.signature} takes {len(self.inputs)} arguments, got {len(args)}."
            )

        return HexBytes(self.selector + encode(list(self.inputs), list(args)))

    def decode_input(self, calldata: bytes) -> tuple:
        if bytes(calldata[:4]) != bytes(self.selector):
            raise ValueError(f"Calldata is not a call to {self.signature}.")

        values = decode(list(self.inputs), bytes(calldata[4:]))
        return tuple(_normalize(t, v) for t, v in zip(self.inputs, values))

    def decode_output(self, data: bytes) -> Any:
        values = tuple(
            _normalize(t, v) for t, v in zip(self.outputs, decode(list(self.outputs), bytes(data)))
        )
        return values[0] if len(values) == 1 else values


# Views
GET_OWNERS = SafeMethod("getOwners", outputs=("address[]",))
GET_THRESHOLD = SafeMethod("getThreshold", outputs=("uint256",))
NONCE = SafeMethod("nonce", outputs=("uint256",))
VERSION = SafeMethod("VERSION", outputs=("string",))
IS_OWNER = SafeMethod("isOwner", ("address",), ("bool",))
GET_MODULES_PAGINATED = SafeMethod(
    "getModulesPaginated", ("address", "uint256"), ("address[]", "address")
)
IS_MODULE_ENABLED = SafeMethod("isModuleEnabled", ("address",), ("bool",))
APPROVED_HASHES = SafeMethod("approvedHashes", ("address", "bytes32"), ("uint256",))

# Self-management (only callable by the Safe itself)
ADD_OWNER_WITH_THRESHOLD = SafeMethod("addOwnerWithThreshold", ("address", "uint256"))
REMOVE_OWNER = SafeMethod("removeOwner", ("address", "address", "uint256"))
SWAP_OWNER = SafeMethod("swapOwner", ("address", "address", "address"))
CHANGE_THRESHOLD = SafeMethod("changeThreshold", ("uint256",))
ENABLE_MODULE = SafeMethod("enableModule", ("address",))
DISABLE_MODULE = SafeMethod("disableModule", ("address", "address"))
SET_GUARD = SafeMethod("setGuard", ("address",))
SET_MODULE_GUARD = SafeMethod("setModuleGuard", ("address",))
SET_FALLBACK_HANDLER = SafeMethod("setFallbackHandler", ("address",))

# Execution
APPROVE_HASH = SafeMethod("approveHash", ("bytes32",))
EXEC_TRANSACTION = SafeMethod(
    "execTransaction",
    (
        "address",  # to
        "uint256",  # value
        "bytes",  # data
        "uint8",  # operation
        "uint256",  # safeTxGas
        "uint256",  # baseGas
        "uint256",  # gasPrice
        "address",  # gasToken
        "address",  # refundReceiver
        "bytes",  # signatures
    ),
    ("bool",),
)
SETUP = SafeMethod(
    "setup",
    (
        "address[]",  # owners
        "uint256",  # threshold
        "address",  # to
        "bytes",  # data
        "address",  # fallbackHandler
        "address",  # paymentToken
        "uint256",  # payment
        "address",  # paymentReceiver
    ),
)

# ERC-1271
IS_VALID_SIGNATURE = SafeMethod("isValidSignature", ("bytes32", "bytes"), ("bytes4",))
LEGACY_IS_VALID_SIGNATURE = SafeMethod("isValidSignature", ("bytes", "bytes"), ("bytes4",))

# SafeProxyFactory
CREATE_PROXY_WITH_NONCE = SafeMethod(
    "createProxyWithNonce", ("address", "bytes", "uint256"), ("address",)
)
PROXY_CREATION_CODE = SafeMethod("proxyCreationCode", outputs=("bytes",))

# MultiSend / MultiSendCallOnly
MULTI_SEND = SafeMethod("multiSend", ("bytes",))

# Simulation: StorageAccessible on the Safe, delegatecalling into SimulateTxAccessor
SIMULATE_AND_REVERT = SafeMethod("simulateAndRevert", ("address", "bytes"))
SIMULATE = SafeMethod(
    "simulate",
    ("address", "uint256", "bytes", "uint8"),  # to, value, data, operation
    ("uint256", "bool", "bytes"),  # estimate, success, returnData
)
# NOTE: Solidity's `revert(string)` payload
ERROR = SafeMethod("Error", ("string",))
