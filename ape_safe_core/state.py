from typing import Any, Optional, Union

from ape.logging import logger
from ape.types import AddressType, HexBytes
from ape.utils import ZERO_ADDRESS
from eth_abi.exceptions import DecodingError
from eth_utils import to_hex
from packaging.version import InvalidVersion, Version

from . import abi
from .chain import ApeChainQuery, BaseChainQuery
from .config import SafeCoreConfig
from .constants import (
    FALLBACK_HANDLER_STORAGE_SLOT,
    GUARD_STORAGE_SLOT,
    MODULE_GUARD_STORAGE_SLOT,
    SENTINEL,
    SafeStorageSlot,
)
from .exceptions import ChainReadError, handle_safe_logic_error
from .factory import get_deployment
from .types import SafeConfiguration, SafeTx, SimulationResult
from .utils import decode_address_word, mapping_storage_slot, to_address, to_canonical_address


class SafeStateReader:
    """
    Read-only queries against a deployed Safe.

    Every method performs fresh reads; nothing is cached between calls.
    """

    def __init__(
        self,
        safe_address: Any,
        chain: Optional[BaseChainQuery] = None,
        config: Optional[SafeCoreConfig] = None,
    ):
        self.address = to_address(safe_address)
        self.chain = chain or ApeChainQuery()
        self.config = config or SafeCoreConfig()

    def __repr__(self) -> str:
        return f"<{self.__class__.__qualname__} safe={self.address}>"

    def _call(self, method: abi.SafeMethod, *args) -> Any:
        logger.debug(f"Reading {method.name} from {self.address}")
        result = self.chain.call(self.address, method.encode_input(*args))
        if len(result) == 0:
            # NOTE: `eth_call` to an address without code returns nothing
            raise ChainReadError(
                f"No contract at {self.address} (empty result from {method.name})."
            )

        try:
            return method.decode_output(result)

        except DecodingError as err:
            raise ChainReadError(f"Could not decode {method.name} result: {err}") from err

    def read_storage(self, slot: Union[bytes, int]) -> HexBytes:
        return self.chain.get_storage_at(self.address, slot)

    def _read_address_slot(self, slot: Union[bytes, int]) -> AddressType:
        return decode_address_word(self.read_storage(slot))

    def owners(self) -> list[AddressType]:
        return self._call(abi.GET_OWNERS)

    def is_owner(self, address: Any) -> bool:
        return self._call(abi.IS_OWNER, to_address(address))

    def threshold(self) -> int:
        return self._call(abi.GET_THRESHOLD)

    def nonce(self) -> int:
        return self._call(abi.NONCE)

    def version(self) -> Version:
        raw_version = self._call(abi.VERSION)
        try:
            return Version(raw_version)

        except InvalidVersion as err:
            raise ChainReadError(
                f"{self.address} reported an invalid version '{raw_version}'."
            ) from err

    def singleton(self) -> AddressType:
        return self._read_address_slot(SafeStorageSlot.SINGLETON)

    def guard(self) -> AddressType:
        """The transaction guard, or the zero address when none is set."""
        return self._read_address_slot(GUARD_STORAGE_SLOT)

    def fallback_handler(self) -> AddressType:
        return self._read_address_slot(FALLBACK_HANDLER_STORAGE_SLOT)

    def module_guard(self) -> AddressType:
        """The module guard (Safe v1.5.0+), or the zero address when none is set."""
        return self._read_address_slot(MODULE_GUARD_STORAGE_SLOT)

    def get_modules_paginated(
        self, start: Any = SENTINEL, page_size: Optional[int] = None
    ) -> tuple[list[AddressType], AddressType]:
        return self._call(
            abi.GET_MODULES_PAGINATED,
            to_address(start),
            page_size or self.config.module_page_size,
        )

    def modules(self) -> list[AddressType]:
        from .modules import SafeModuleManager

        return list(SafeModuleManager(self))

    def is_module_enabled(self, module: Any) -> bool:
        return self._call(abi.IS_MODULE_ENABLED, to_address(module))

    def approved_hashes(self, owner: Any, data_hash: bytes) -> int:
        return self._call(abi.APPROVED_HASHES, to_address(owner), bytes(data_hash))

    def has_code(self) -> bool:
        return self.chain.has_code(self.address)

    def is_safe(self) -> bool:
        """
        Best-effort check that the address is a Safe: the first owner returned by
        ``getOwners()`` must match ``owners[SENTINEL]`` in storage.
        """
        if not self.has_code():
            return False

        try:
            owners = self.owners()

        except ChainReadError:
            return False

        if not owners:
            return False

        head = self._read_address_slot(mapping_storage_slot(SENTINEL, SafeStorageSlot.OWNERS))
        return head == owners[0] and head != ZERO_ADDRESS

    def configuration(self) -> SafeConfiguration:
        """
        Snapshot the Safe's configuration.

        Reads are issued one after another. They are independent of each other, so callers
        that need lower latency may issue them concurrently themselves.
        """
        return SafeConfiguration(
            address=self.address,
            owners=self.owners(),
            threshold=self.threshold(),
            nonce=self.nonce(),
            version=str(self.version()),
            singleton=self.singleton(),
            guard=self.guard(),
            fallback_handler=self.fallback_handler(),
            module_guard=self.module_guard(),
            modules=self.modules(),
        )

    def simulate(
        self,
        safe_tx: SafeTx,
        signatures: Optional[bytes] = None,
        accessor: Any = None,
    ) -> SimulationResult:
        """
        Run ``safe_tx`` against the current chain state with ``eth_call``. Nothing is sent.

        Without ``signatures``, only the call itself runs: the Safe delegatecalls it through
        ``SimulateTxAccessor`` via ``simulateAndRevert``, so signatures, nonce and gas
        refund are skipped and the gas used is reported. With packed ``signatures`` (see
        :func:`~ape_safe_core.signatures.encode_signatures`), the whole ``execTransaction``
        runs, including the signature checks.

        Args:
            safe_tx (:class:`~ape_safe_core.types.SafeTx`): The transaction to simulate.
            signatures (Optional[bytes]): Packed signatures for a full ``execTransaction``.
            accessor: ``SimulateTxAccessor`` to use. Defaults to the canonical deployment
              of ``config.default_version``.

        Raises:
            :class:`~ape_safe_core.exceptions.SafeLogicError`: The Safe reverted with a
              ``GSxxx`` code, e.g. ``GS026`` for a bad signature.
            :class:`~ape_safe_core.exceptions.ChainReadError`: The call failed otherwise, or
              its result could not be decoded.

        Returns:
            :class:`~ape_safe_core.types.SimulationResult`
        """
        if signatures is not None:
            return self._simulate_execution(safe_tx, bytes(signatures))

        if accessor is None:
            accessor = get_deployment(self.config.default_version).simulate_tx_accessor

        payload = abi.SIMULATE.encode_input(
            to_canonical_address(safe_tx.to),
            safe_tx.value,
            bytes(safe_tx.data),
            int(safe_tx.operation),
        )
        logger.debug(f"Simulating {safe_tx!r} on {self.address}")
        try:
            with handle_safe_logic_error():
                result = self.chain.call(
                    self.address,
                    abi.SIMULATE_AND_REVERT.encode_input(to_canonical_address(accessor), payload),
                )

        except ChainReadError as err:
            if not err.revert_data:
                raise

            return self._decode_simulation(bytes(err.revert_data))

        if len(result) == 0:
            raise ChainReadError(f"No contract at {self.address} (empty result from simulate).")

        raise ChainReadError(f"simulateAndRevert on {self.address} did not revert.")

    def _decode_simulation(self, revert_data: bytes) -> SimulationResult:
        # NOTE: `simulateAndRevert` reverts with `(bool success, uint256 size, bytes[size])`
        if len(revert_data) < 64:
            raise ChainReadError(f"Could not decode simulation result {to_hex(revert_data)}.")

        returned = revert_data[64 : 64 + int.from_bytes(revert_data[32:64], "big")]
        if not int.from_bytes(revert_data[:32], "big"):
            raise ChainReadError(
                f"SimulateTxAccessor call from {self.address} failed.", revert_data=returned
            )

        try:
            gas_used, success, return_data = abi.SIMULATE.decode_output(returned)

        except DecodingError as err:
            raise ChainReadError(f"Could not decode simulation result: {err}") from err

        return SimulationResult(success=success, return_data=return_data, gas_used=gas_used)

    def _simulate_execution(self, safe_tx: SafeTx, signatures: bytes) -> SimulationResult:
        to, value, data, operation, *gas_args, gas_token, refund_receiver = safe_tx.exec_args
        calldata = abi.EXEC_TRANSACTION.encode_input(
            to_canonical_address(to),
            value,
            bytes(data),
            operation,
            *gas_args,
            to_canonical_address(gas_token),
            to_canonical_address(refund_receiver),
            signatures,
        )
        logger.debug(f"Simulating execTransaction of {safe_tx!r} on {self.address}")
        with handle_safe_logic_error():
            result = self.chain.call(self.address, calldata)

        if len(result) == 0:
            raise ChainReadError(f"No contract at {self.address} (empty result from simulate).")

        try:
            success = abi.EXEC_TRANSACTION.decode_output(result)

        except DecodingError as err:
            raise ChainReadError(f"Could not decode execTransaction result: {err}") from err

        return SimulationResult(success=success, return_data=result)
