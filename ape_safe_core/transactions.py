from collections.abc import Iterable, Mapping
from typing import Any, Optional, Union

from ape.logging import logger
from ape.types import AddressType, HexBytes
from ape.utils import ZERO_ADDRESS

from . import abi
from .chain import ApeChainQuery, BaseChainQuery
from .config import SafeCoreConfig
from .constants import SENTINEL
from .exceptions import (
    InvalidThresholdError,
    NotASigner,
    SafeLogicError,
    UnsafeDelegateCallError,
)
from .hashing import SafeVersion
from .hashing import get_safe_tx_hash as _get_safe_tx_hash
from .modules import SafeModuleManager
from .multisend import MultiSend
from .signatures import (
    EcdsaSignature,
    SafeSignature,
    SignatureInput,
    Signer,
    encode_signatures,
)
from .signatures import get_signatures as _get_signatures
from .state import SafeStateReader
from .types import OperationType, SafeTx
from .utils import to_address, to_canonical_address

# NOTE: snake_case field name for every accepted override, keyed by both spellings
_OVERRIDE_FIELDS = {
    "nonce": "nonce",
    "safe_tx_gas": "safe_tx_gas",
    "safeTxGas": "safe_tx_gas",
    "base_gas": "base_gas",
    "baseGas": "base_gas",
    "gas_price": "gas_price",
    "gasPrice": "gas_price",
    "gas_token": "gas_token",
    "gasToken": "gas_token",
    "refund_receiver": "refund_receiver",
    "refundReceiver": "refund_receiver",
}


class SafeTxBuilder:
    """
    Builds :class:`~ape_safe_core.types.SafeTx` values for one Safe.

    Every builder method accepts the same keyword overrides as :meth:`create_safe_tx`
    (``nonce``, ``safe_tx_gas``, ``base_gas``, ``gas_price``, ``gas_token`` and
    ``refund_receiver``, or their camelCase names). When ``nonce`` is not given, the
    Safe's current nonce is read from the chain. Reads are never locked, so builders
    racing on the same Safe may produce the same nonce.

    Usage example::

        builder = SafeTxBuilder("0x...")
        safe_tx = builder.add_owner("0x...", threshold=2)
        signatures = builder.get_signatures(safe_tx, [signer_a, signer_b])
        calldata = builder.encode_exec_transaction(safe_tx, signatures)
    """

    def __init__(
        self,
        safe_address: Any,
        chain: Optional[BaseChainQuery] = None,
        config: Optional[SafeCoreConfig] = None,
    ):
        self.config = config or SafeCoreConfig()
        self.chain = chain or ApeChainQuery()
        self.state = SafeStateReader(safe_address, chain=self.chain, config=self.config)
        self.modules = SafeModuleManager(self.state)

    def __repr__(self) -> str:
        return f"<{self.__class__.__qualname__} safe={self.address}>"

    @property
    def address(self) -> AddressType:
        return self.state.address

    def _resolve_nonce(self, nonce: Optional[int]) -> int:
        if nonce is not None:
            return nonce

        nonce = self.state.nonce()
        logger.info(f"Using current nonce {nonce} of Safe {self.address}")
        return nonce

    def create_safe_tx(
        self,
        to: Any = None,
        value: int = 0,
        data: bytes = b"",
        operation: Union[OperationType, int] = OperationType.CALL,
        unsafe_delegatecall: bool = False,
        **overrides,
    ) -> SafeTx:
        """
        Create a Safe transaction for an arbitrary call.

        Args:
            to: The call target. Defaults to the Safe itself, which with no ``data``
              makes a rejection transaction (it only consumes the nonce).
            value (int): Wei to send with the call.
            data (bytes): Calldata.
            operation (:class:`~ape_safe_core.types.OperationType`): ``CALL`` by default.
            unsafe_delegatecall (bool): Required to build a ``DELEGATECALL``, unless
              ``allow_delegatecall`` is set in the config.
            **overrides: ``nonce`` and the gas and refund fields.

        Raises:
            TypeError: An unknown override.
            :class:`~ape_safe_core.exceptions.InvalidAddressError`: ``to``, ``gas_token`` or
              ``refund_receiver`` is not an address.
            :class:`~ape_safe_core.exceptions.UnsafeDelegateCallError`: A ``DELEGATECALL``
              that was not explicitly allowed.
            :class:`~ape_safe_core.exceptions.ChainReadError`: The nonce could not be read.

        Returns:
            :class:`~ape_safe_core.types.SafeTx`
        """
        operation = OperationType(operation)
        if operation == OperationType.DELEGATECALL:
            if not (unsafe_delegatecall or self.config.allow_delegatecall):
                raise UnsafeDelegateCallError()

            logger.warning(f"Building a DELEGATECALL from Safe {self.address} to {to}")

        return self._build(to, value, data, operation, **overrides)

    def _build(
        self, to: Any, value: int, data: bytes, operation: OperationType, **overrides
    ) -> SafeTx:
        if unknown := [key for key in overrides if key not in _OVERRIDE_FIELDS]:
            raise TypeError(f"Unknown Safe transaction fields: {', '.join(unknown)}.")

        fields = {
            _OVERRIDE_FIELDS[key]: override
            for key, override in overrides.items()
            if override is not None
        }
        for address_field in ("gas_token", "refund_receiver"):
            if address_field in fields:
                fields[address_field] = to_address(fields[address_field])

        fields["nonce"] = self._resolve_nonce(fields.get("nonce"))
        safe_tx = SafeTx(
            to=self.address if to is None else to_address(to),
            value=value,
            data=HexBytes(data),
            operation=operation,
            **fields,
        )
        logger.debug(f"Built Safe transaction {safe_tx!r}")
        return safe_tx

    def _self_call(self, data: bytes, **overrides) -> SafeTx:
        return self.create_safe_tx(to=self.address, data=data, **overrides)

    """Owner management"""

    def _check_new_owner(self, new_owner: AddressType, owners: list[AddressType]):
        if new_owner in (ZERO_ADDRESS, SENTINEL, self.address):
            raise SafeLogicError("GS203")

        elif new_owner in owners:
            raise SafeLogicError("GS204")

    def add_owner(self, new_owner: Any, threshold: Optional[int] = None, **overrides) -> SafeTx:
        """
        Add ``new_owner`` via ``addOwnerWithThreshold``.

        ``threshold`` defaults to the current threshold.
        """
        new_owner = to_address(new_owner)
        owners = self.state.owners()
        self._check_new_owner(new_owner, owners)

        threshold = self.state.threshold() if threshold is None else threshold
        if not (1 <= threshold <= len(owners) + 1):
            raise InvalidThresholdError(threshold, len(owners) + 1)

        return self._self_call(
            abi.ADD_OWNER_WITH_THRESHOLD.encode_input(to_canonical_address(new_owner), threshold),
            **overrides,
        )

    def remove_owner(
        self,
        owner: Any,
        threshold: Optional[int] = None,
        prev_owner: Optional[Any] = None,
        **overrides,
    ) -> SafeTx:
        """
        Remove ``owner`` via ``removeOwner``.

        ``threshold`` defaults to the current threshold, lowered if needed so it does not
        exceed the remaining number of owners. ``prev_owner`` is resolved from the owner
        list when not given.
        """
        owner = to_address(owner)
        owners = self.state.owners()
        if owner not in owners:
            raise NotASigner(owner)

        remaining = len(owners) - 1
        if threshold is None:
            threshold = min(self.state.threshold(), remaining)

        if not (1 <= threshold <= remaining):
            raise InvalidThresholdError(threshold, remaining)

        if prev_owner is None:
            prev_owner = self.modules.get_previous_owner(owner, owners=owners)

        return self._self_call(
            abi.REMOVE_OWNER.encode_input(
                to_canonical_address(prev_owner), to_canonical_address(owner), threshold
            ),
            **overrides,
        )

    def swap_owner(
        self,
        old_owner: Any,
        new_owner: Any,
        prev_owner: Optional[Any] = None,
        **overrides,
    ) -> SafeTx:
        old_owner = to_address(old_owner)
        new_owner = to_address(new_owner)
        owners = self.state.owners()
        if old_owner not in owners:
            raise NotASigner(old_owner)

        self._check_new_owner(new_owner, owners)
        if prev_owner is None:
            prev_owner = self.modules.get_previous_owner(old_owner, owners=owners)

        return self._self_call(
            abi.SWAP_OWNER.encode_input(
                to_canonical_address(prev_owner),
                to_canonical_address(old_owner),
                to_canonical_address(new_owner),
            ),
            **overrides,
        )

    def change_threshold(self, threshold: int, **overrides) -> SafeTx:
        owner_count = len(self.state.owners())
        if not (1 <= threshold <= owner_count):
            raise InvalidThresholdError(threshold, owner_count)

        return self._self_call(abi.CHANGE_THRESHOLD.encode_input(threshold), **overrides)

    """Modules and guards"""

    def enable_module(self, module: Any, **overrides) -> SafeTx:
        module = to_address(module)
        if module in (ZERO_ADDRESS, SENTINEL):
            raise SafeLogicError("GS101")

        elif module in self.modules:
            raise SafeLogicError("GS102")

        return self._self_call(
            abi.ENABLE_MODULE.encode_input(to_canonical_address(module)), **overrides
        )

    def disable_module(self, module: Any, **overrides) -> SafeTx:
        module = to_address(module)
        if module in (ZERO_ADDRESS, SENTINEL):
            raise SafeLogicError("GS101")

        # NOTE: The previous module always has to be read, the Safe keeps no index
        prev_module = self.modules.get_previous_module(module)
        return self._self_call(
            abi.DISABLE_MODULE.encode_input(
                to_canonical_address(prev_module), to_canonical_address(module)
            ),
            **overrides,
        )

    def set_guard(self, guard: Any, **overrides) -> SafeTx:
        return self._self_call(
            abi.SET_GUARD.encode_input(to_canonical_address(guard)), **overrides
        )

    def remove_guard(self, **overrides) -> SafeTx:
        return self.set_guard(ZERO_ADDRESS, **overrides)

    def set_fallback_handler(self, handler: Any, **overrides) -> SafeTx:
        if to_address(handler) == self.address:
            raise SafeLogicError("GS400")

        return self._self_call(
            abi.SET_FALLBACK_HANDLER.encode_input(to_canonical_address(handler)), **overrides
        )

    def remove_fallback_handler(self, **overrides) -> SafeTx:
        return self.set_fallback_handler(ZERO_ADDRESS, **overrides)

    def set_module_guard(self, guard: Any, **overrides) -> SafeTx:
        """Set the guard checked on module transactions (Safe v1.5.0+)."""
        return self._self_call(
            abi.SET_MODULE_GUARD.encode_input(to_canonical_address(guard)), **overrides
        )

    def remove_module_guard(self, **overrides) -> SafeTx:
        return self.set_module_guard(ZERO_ADDRESS, **overrides)

    """Batching"""

    def multisend(self, batch: MultiSend, **overrides) -> SafeTx:
        """
        Execute every call in ``batch`` in one Safe transaction.

        The Safe delegatecalls ``MultiSendCallOnly``, which itself only makes plain calls,
        so this ``DELEGATECALL`` needs no opt-in.
        """
        if required_value := batch.required_value:
            logger.info(f"MultiSend batch forwards {required_value} wei from Safe {self.address}")

        return self._build(
            batch.address, 0, batch.encode(), OperationType.DELEGATECALL, **overrides
        )

    """Hashing, signing and execution"""

    def get_safe_tx_hash(self, safe_tx: SafeTx, version: SafeVersion = None) -> HexBytes:
        return _get_safe_tx_hash(safe_tx, self.chain.get_chain_id(), self.address, version=version)

    def get_signatures(
        self,
        safe_tx: SafeTx,
        signers: Iterable[Signer],
        version: SafeVersion = None,
    ) -> dict[AddressType, EcdsaSignature]:
        """Ask each of ``signers`` to sign ``safe_tx``. Signers that decline are skipped."""
        return _get_signatures(self.get_safe_tx_hash(safe_tx, version=version), signers)

    def encode_approve_hash(self, safe_tx: SafeTx, version: SafeVersion = None) -> HexBytes:
        """Calldata for an owner to approve ``safe_tx`` on-chain with ``approveHash``."""
        return abi.APPROVE_HASH.encode_input(bytes(self.get_safe_tx_hash(safe_tx, version)))

    def encode_exec_transaction(
        self,
        safe_tx: SafeTx,
        signatures: Union[Mapping[Any, SignatureInput], Iterable[SafeSignature]],
        expected_count: Optional[int] = None,
    ) -> HexBytes:
        """
        Calldata for ``execTransaction``, to be sent to the Safe by any account.

        ``signatures`` are ordered by signer and packed. The nonce is not part of the
        calldata: the Safe always executes at its current nonce.
        """
        to, value, data, operation, *gas_args, gas_token, refund_receiver = safe_tx.exec_args
        return abi.EXEC_TRANSACTION.encode_input(
            to_canonical_address(to),
            value,
            bytes(data),
            operation,
            *gas_args,
            to_canonical_address(gas_token),
            to_canonical_address(refund_receiver),
            bytes(encode_signatures(signatures, expected_count=expected_count)),
        )
