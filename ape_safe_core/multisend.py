from io import BytesIO
from typing import Any, Optional

from ape.types import HexBytes
from eth_abi.packed import encode_packed

from . import abi
from .constants import DEFAULT_SAFE_VERSION, DEPLOYMENTS
from .types import OperationType
from .utils import to_address, to_canonical_address


class MultiSend:
    """
    Batch several calls into one Safe transaction via the ``MultiSendCallOnly`` contract.

    Usage example::

        from ape_safe_core.multisend import MultiSend

        batch = MultiSend()
        batch.add(contract.myMethod, *call_args)
        batch.add("0x...", data=calldata, value=10**18)
        # or, using a builder pattern:
        batch = MultiSend().add(contract.myMethod, *call_args).add(other.method)

        safe_tx = builder.multisend(batch)
    """

    def __init__(self, version: str = DEFAULT_SAFE_VERSION, address: Optional[Any] = None):
        """
        Initialize a new MultiSend batch. By default, there are no calls to make.
        """
        self.calls: list[dict] = []
        self.version = version
        self.address = to_address(address or DEPLOYMENTS[version]["multisend_call_only"])

    def __repr__(self) -> str:
        return f"<{self.__class__.__qualname__} address={self.address} calls={len(self.calls)}>"

    def __len__(self) -> int:
        return len(self.calls)

    def add(self, call, *args, data: bytes = b"", value: int = 0) -> "MultiSend":
        """
        Append a call to the batch.

        Args:
            call: An Ape contract method handler (``contract.myMethod``), or the target
              address when passing ``data=`` directly.
            *args: The arguments to invoke the method handler with.
            data (bytes): Raw calldata, when ``call`` is an address.
            value (int): The amount of ether to forward with the call. Defaults to 0.
        """
        if value < 0:
            raise ValueError("`value=` must be positive.")

        if hasattr(call, "contract") and hasattr(call, "encode_input"):
            target = to_address(call.contract.address)
            data = call.encode_input(*args)

        else:
            target = to_address(call)

        self.calls.append(
            {
                "target": target,
                "value": value,
                "callData": HexBytes(data),
            }
        )
        return self

    @property
    def required_value(self) -> int:
        """Total wei forwarded by the batch's calls, paid from the Safe's balance."""
        return sum(call["value"] for call in self.calls)

    @property
    def encoded_calls(self) -> list[bytes]:
        return [
            encode_packed(
                ["uint8", "address", "uint256", "uint256", "bytes"],
                [
                    # NOTE: Only allow doing CALL because of `MultiSendCallOnly`
                    int(OperationType.CALL),
                    to_canonical_address(call["target"]),
                    call["value"],
                    len(call["callData"]),
                    bytes(call["callData"]),
                ],
            )
            for call in self.calls
        ]

    def encode(self) -> HexBytes:
        """Calldata for ``multiSend(bytes transactions)``."""
        if not self.calls:
            raise ValueError("Cannot encode an empty MultiSend.")

        return abi.MULTI_SEND.encode_input(b"".join(self.encoded_calls))

    def add_from_calldata(self, calldata: bytes) -> "MultiSend":
        """
        Decode all calls from a multisend calldata and add them to this MultiSend.

        Args:
            calldata: Calldata encoding the MultiSend.multiSend call
        """
        (transactions,) = abi.MULTI_SEND.decode_input(calldata)
        buffer = BytesIO(transactions)
        while buffer.tell() < len(transactions):
            operation = int.from_bytes(buffer.read(1), "big")
            if operation != OperationType.CALL:
                raise ValueError("MultiSendCallOnly batches may only contain CALL operations.")

            target = to_address(buffer.read(20))
            value = int.from_bytes(buffer.read(32), "big")
            length = int.from_bytes(buffer.read(32), "big")
            data = HexBytes(buffer.read(length))
            self.calls.append(
                {
                    "target": target,
                    "value": value,
                    "callData": data,
                }
            )

        return self
