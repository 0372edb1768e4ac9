from collections.abc import Callable, Iterable
from copy import deepcopy
from typing import Optional, Union

from ape.logging import logger
from ape.types import AddressType, HexBytes
from ape.utils import ZERO_ADDRESS
from eth_abi import encode
from eth_utils import to_hex

from ape_safe_core import abi
from ape_safe_core.chain.base import BaseChainQuery
from ape_safe_core.constants import (
    EIP1271_MAGIC_VALUE,
    FALLBACK_HANDLER_STORAGE_SLOT,
    GUARD_STORAGE_SLOT,
    MODULE_GUARD_STORAGE_SLOT,
    SENTINEL,
    SafeStorageSlot,
)
from ape_safe_core.exceptions import ChainReadError, MalformedSignatureError, SafeLogicError
from ape_safe_core.hashing import get_safe_message_hash, get_safe_tx_hash
from ape_safe_core.signatures import SIGNATURE_LENGTH, recover_signer
from ape_safe_core.types import OperationType, SafeTx
from ape_safe_core.utils import address_key, mapping_storage_slot, pad32, to_address

# NOTE: Runtime code is never executed by the mock, it only has to be non-empty
MOCK_SAFE_CODE = HexBytes("0x608060405273")

ContractHandler = Callable[[HexBytes], bytes]


def revert(message: str) -> ChainReadError:
    return ChainReadError(f"execution reverted: {message}", revert_message=message)


def _revert_data(err: Union[SafeLogicError, ChainReadError]) -> bytes:
    message = err.error_code if isinstance(err, SafeLogicError) else err.revert_message
    return bytes(abi.ERROR.encode_input(message or ""))


class MockSafe:
    """State of one emulated Safe proxy."""

    def __init__(
        self,
        address: AddressType,
        owners: list[AddressType],
        threshold: int,
        nonce: int = 0,
        version: str = "1.4.1",
        singleton: AddressType = ZERO_ADDRESS,
        modules: Iterable[AddressType] = (),
        guard: AddressType = ZERO_ADDRESS,
        fallback_handler: AddressType = ZERO_ADDRESS,
        module_guard: AddressType = ZERO_ADDRESS,
    ):
        self.address = address
        self.owners = owners
        self.threshold = threshold
        self.nonce = nonce
        self.version = version
        self.singleton = singleton
        self.modules = list(modules)
        self.guard = guard
        self.fallback_handler = fallback_handler
        self.module_guard = module_guard
        self.approved_hashes: dict[tuple[AddressType, bytes], int] = {}
        self.signed_messages: set[bytes] = set()

    def __repr__(self) -> str:
        return f"<{self.__class__.__qualname__} {self.address}>"

    def storage(self) -> dict[bytes, bytes]:
        slots = {
            pad32(SafeStorageSlot.SINGLETON): pad32(bytes(HexBytes(self.singleton))),
            pad32(SafeStorageSlot.OWNER_COUNT): pad32(len(self.owners)),
            pad32(SafeStorageSlot.THRESHOLD): pad32(self.threshold),
            pad32(SafeStorageSlot.NONCE): pad32(self.nonce),
            bytes(GUARD_STORAGE_SLOT): pad32(bytes(HexBytes(self.guard))),
            bytes(FALLBACK_HANDLER_STORAGE_SLOT): pad32(bytes(HexBytes(self.fallback_handler))),
            bytes(MODULE_GUARD_STORAGE_SLOT): pad32(bytes(HexBytes(self.module_guard))),
        }
        for items, slot in (
            (self.owners, SafeStorageSlot.OWNERS),
            (self.modules, SafeStorageSlot.MODULES),
        ):
            linked = [SENTINEL, *items, SENTINEL]
            for key, value in zip(linked, linked[1:]):
                slots[mapping_storage_slot(key, slot)] = pad32(bytes(HexBytes(value)))

        return slots


class MockChainQuery(BaseChainQuery):
    """
    An in-memory chain that emulates Safe proxies closely enough to build, hash, sign
    and execute Safe transactions without a node.

    Other contracts can be emulated by registering a handler that receives the raw
    calldata and returns the raw return data (raise :func:`revert` to revert)::

        chain = MockChainQuery()
        safe = chain.add_safe("0x...", owners=[...], threshold=2)
        chain.add_contract("0x...", lambda calldata: ...)
    """

    def __init__(self, chain_id: int = 1337):
        self.chain_id = chain_id
        self.safes: dict[AddressType, MockSafe] = {}
        self.contracts: dict[AddressType, ContractHandler] = {}
        self.code: dict[AddressType, HexBytes] = {}
        self.storage: dict[tuple[AddressType, bytes], bytes] = {}
        self.calls: list[tuple[AddressType, HexBytes]] = []

    def add_safe(self, address, owners: Iterable, threshold: int, **kwargs) -> MockSafe:
        address = to_address(address)
        safe = MockSafe(address, [to_address(o) for o in owners], threshold, **kwargs)
        self.safes[address] = safe
        self.code[address] = MOCK_SAFE_CODE
        return safe

    def add_contract(
        self, address, handler: ContractHandler, code: bytes = MOCK_SAFE_CODE
    ) -> AddressType:
        address = to_address(address)
        self.contracts[address] = handler
        self.code[address] = HexBytes(code)
        return address

    """Chain reads"""

    def call(self, address: AddressType, data: bytes) -> HexBytes:
        address = to_address(address)
        data = HexBytes(data)
        self.calls.append((address, data))
        logger.debug(f"mock eth_call {address} {to_hex(data)[:10]}")

        if safe := self.safes.get(address):
            return HexBytes(self._call_safe(safe, data))

        elif handler := self.contracts.get(address):
            return HexBytes(handler(data))

        # NOTE: Calls to accounts without code succeed and return nothing
        return HexBytes(b"")

    def get_storage_at(self, address: AddressType, slot: Union[bytes, int]) -> HexBytes:
        address = to_address(address)
        slot_key = pad32(slot) if isinstance(slot, int) else pad32(bytes(slot))
        if safe := self.safes.get(address):
            if (value := safe.storage().get(slot_key)) is not None:
                return HexBytes(value)

        return HexBytes(self.storage.get((address, slot_key), b"\x00" * 32))

    def set_storage_at(self, address, slot: Union[bytes, int], value: bytes):
        slot_key = pad32(slot) if isinstance(slot, int) else pad32(bytes(slot))
        self.storage[(to_address(address), slot_key)] = pad32(bytes(value))

    def get_chain_id(self) -> int:
        return self.chain_id

    def get_code(self, address: AddressType) -> HexBytes:
        return self.code.get(to_address(address), HexBytes(b""))

    """Safe view functions"""

    def _call_safe(self, safe: MockSafe, data: HexBytes) -> bytes:
        selector = bytes(data[:4])

        if selector == abi.GET_OWNERS.selector:
            return encode(["address[]"], [safe.owners])

        elif selector == abi.GET_THRESHOLD.selector:
            return encode(["uint256"], [safe.threshold])

        elif selector == abi.NONCE.selector:
            return encode(["uint256"], [safe.nonce])

        elif selector == abi.VERSION.selector:
            return encode(["string"], [safe.version])

        elif selector == abi.IS_OWNER.selector:
            (owner,) = abi.IS_OWNER.decode_input(data)
            return encode(["bool"], [owner in safe.owners])

        elif selector == abi.IS_MODULE_ENABLED.selector:
            (module,) = abi.IS_MODULE_ENABLED.decode_input(data)
            return encode(["bool"], [module in safe.modules])

        elif selector == abi.GET_MODULES_PAGINATED.selector:
            start, page_size = abi.GET_MODULES_PAGINATED.decode_input(data)
            page, next_module = self._modules_paginated(safe, start, page_size)
            return encode(["address[]", "address"], [page, next_module])

        elif selector == abi.APPROVED_HASHES.selector:
            owner, data_hash = abi.APPROVED_HASHES.decode_input(data)
            return encode(["uint256"], [safe.approved_hashes.get((owner, data_hash), 0)])

        elif selector == abi.IS_VALID_SIGNATURE.selector:
            data_hash, signature = abi.IS_VALID_SIGNATURE.decode_input(data)
            self._check_safe_message_signature(safe, data_hash, signature)
            return bytes(EIP1271_MAGIC_VALUE).ljust(32, b"\x00")

        elif selector == abi.SIMULATE_AND_REVERT.selector:
            _, payload = abi.SIMULATE_AND_REVERT.decode_input(data)
            raise self._simulate_and_revert(safe, payload)

        elif selector == abi.EXEC_TRANSACTION.selector:
            return self._call_exec_transaction(safe, data)

        raise revert("")

    def _modules_paginated(
        self, safe: MockSafe, start: AddressType, page_size: int
    ) -> tuple[list[AddressType], AddressType]:
        if start != SENTINEL and start not in safe.modules:
            raise revert("GS105")

        elif page_size == 0:
            raise revert("GS106")

        first = 0 if start == SENTINEL else safe.modules.index(start) + 1
        remaining = safe.modules[first:]
        page = remaining[:page_size]
        if len(remaining) > page_size:
            return page, page[-1]

        return page, SENTINEL

    def _check_safe_message_signature(self, safe: MockSafe, data_hash: bytes, signature: bytes):
        message_hash = bytes(get_safe_message_hash(data_hash, self.chain_id, safe.address))
        if len(signature) == 0:
            if message_hash not in safe.signed_messages:
                raise revert("Hash not approved")

            return

        try:
            self.check_n_signatures(safe, message_hash, signature, safe.threshold)

        except SafeLogicError as err:
            raise revert(err.error_code) from err

    def _simulate_and_revert(self, safe: MockSafe, payload: bytes) -> ChainReadError:
        """
        Emulate ``simulateAndRevert`` into a ``SimulateTxAccessor``. The call runs on a copy
        of the Safe, and no gas is metered, so the estimate is always ``0``.
        """
        if bytes(payload[:4]) != bytes(abi.SIMULATE.selector):
            # NOTE: Any other target fails the delegatecall with no return data
            return ChainReadError("execution reverted", revert_data=pad32(0) + pad32(0))

        to, _, data, operation = abi.SIMULATE.decode_input(payload)
        try:
            scratch = deepcopy(safe)
            return_data = self._run_call(scratch, to, HexBytes(data), OperationType(operation))
            success = True

        except (SafeLogicError, ChainReadError) as err:
            return_data, success = _revert_data(err), False

        result = encode(["uint256", "bool", "bytes"], [0, success, return_data])
        return ChainReadError(
            "execution reverted", revert_data=pad32(1) + pad32(len(result)) + result
        )

    def _call_exec_transaction(self, safe: MockSafe, data: HexBytes) -> bytes:
        to, value, call_data, operation, *gas_args, gas_token, refund_receiver, signatures = (
            abi.EXEC_TRANSACTION.decode_input(data)
        )
        safe_tx = SafeTx(
            to=to,
            value=value,
            data=call_data,
            operation=operation,
            safe_tx_gas=gas_args[0],
            base_gas=gas_args[1],
            gas_price=gas_args[2],
            gas_token=gas_token,
            refund_receiver=refund_receiver,
            nonce=safe.nonce,
        )
        # NOTE: `eth_call` never changes state
        self.safes[safe.address] = deepcopy(safe)
        try:
            self.execute_safe_tx(safe.address, safe_tx, signatures)

        except SafeLogicError as err:
            raise revert(err.error_code) from err

        finally:
            self.safes[safe.address] = safe

        return encode(["bool"], [True])

    """Safe execution"""

    def approve_hash(self, safe_address, owner, data_hash: bytes):
        safe = self.safes[to_address(safe_address)]
        owner = to_address(owner)
        if owner not in safe.owners:
            raise SafeLogicError("GS030")

        safe.approved_hashes[(owner, bytes(data_hash))] = 1

    def check_n_signatures(
        self,
        safe: MockSafe,
        data_hash: bytes,
        signatures: bytes,
        required_signatures: int,
        executor: Optional[AddressType] = None,
    ):
        """Same checks, in the same order, as ``Safe.checkNSignatures``."""
        signatures = bytes(signatures)
        if required_signatures == 0:
            raise SafeLogicError("GS001")

        elif len(signatures) < required_signatures * SIGNATURE_LENGTH:
            raise SafeLogicError("GS020")

        last_owner = 0
        for index in range(required_signatures):
            slot = signatures[index * SIGNATURE_LENGTH : (index + 1) * SIGNATURE_LENGTH]
            r, s, v = slot[:32], slot[32:64], slot[64]

            if v == 0:
                owner = to_address(r[12:])
                offset = int.from_bytes(s, "big")
                if offset < required_signatures * SIGNATURE_LENGTH:
                    raise SafeLogicError("GS021")

                elif offset + 32 > len(signatures):
                    raise SafeLogicError("GS022")

                length = int.from_bytes(signatures[offset : offset + 32], "big")
                if offset + 32 + length > len(signatures):
                    raise SafeLogicError("GS023")

                contract_signature = signatures[offset + 32 : offset + 32 + length]
                try:
                    result = self.call(
                        owner, abi.IS_VALID_SIGNATURE.encode_input(data_hash, contract_signature)
                    )
                except ChainReadError as err:
                    raise SafeLogicError("GS024") from err

                if bytes(result[:4]) != bytes(EIP1271_MAGIC_VALUE):
                    raise SafeLogicError("GS024")

            elif v == 1:
                owner = to_address(r[12:])
                if executor != owner and not safe.approved_hashes.get((owner, bytes(data_hash))):
                    raise SafeLogicError("GS025")

            else:
                try:
                    owner = recover_signer(data_hash, slot)
                except MalformedSignatureError as err:
                    raise SafeLogicError("GS026") from err

            if (
                address_key(owner) <= last_owner
                or owner not in safe.owners
                or owner == SENTINEL
            ):
                raise SafeLogicError("GS026")

            last_owner = address_key(owner)

    def execute_safe_tx(
        self,
        safe_address,
        safe_tx: SafeTx,
        signatures: bytes,
        executor: Optional[AddressType] = None,
    ) -> HexBytes:
        """
        Emulate ``execTransaction``: verify ``signatures`` against the Safe's current
        nonce, bump the nonce, then apply the call. Returns the Safe transaction hash.

        A failing call leaves the Safe untouched. With ``safeTxGas`` and ``gasPrice`` both
        ``0`` the whole transaction reverts with ``GS013``, otherwise only the call's
        effects are dropped and the nonce is still consumed.
        """
        safe = self.safes[to_address(safe_address)]
        executor = to_address(executor) if executor else None

        # NOTE: The contract always hashes with its own nonce, never the given one
        current_tx = safe_tx.model_copy(update={"nonce": safe.nonce})
        safe_tx_hash = get_safe_tx_hash(current_tx, self.chain_id, safe.address)
        self.check_n_signatures(safe, safe_tx_hash, signatures, safe.threshold, executor)
        logger.debug(f"mock execTransaction {safe.address} nonce={current_tx.nonce}")

        # NOTE: Changes are made on a copy and only committed when the call succeeds
        updated = deepcopy(safe)
        try:
            self._run_call(updated, safe_tx.to, HexBytes(safe_tx.data), safe_tx.operation)

        except (SafeLogicError, ChainReadError) as err:
            if safe_tx.safe_tx_gas == 0 and safe_tx.gas_price == 0:
                raise SafeLogicError("GS013") from err

            logger.debug(f"mock execTransaction {safe.address} call failed: {err}")
            safe.nonce += 1
            return safe_tx_hash

        vars(safe).update(vars(updated))
        safe.nonce += 1
        return safe_tx_hash

    def _run_call(
        self, safe: MockSafe, to: AddressType, data: HexBytes, operation: OperationType
    ) -> bytes:
        if operation == OperationType.CALL and to == safe.address:
            self._apply_self_call(safe, data)

        elif data and (handler := self.contracts.get(to)):
            return bytes(handler(data))

        return b""

    def _apply_self_call(self, safe: MockSafe, data: HexBytes):
        if not data:
            return  # NOTE: Plain self-call, e.g. a rejection transaction

        selector = bytes(data[:4])
        if selector == abi.ADD_OWNER_WITH_THRESHOLD.selector:
            owner, threshold = abi.ADD_OWNER_WITH_THRESHOLD.decode_input(data)
            self._validate_new_owner(safe, owner)
            safe.owners.insert(0, owner)
            self._change_threshold(safe, threshold)

        elif selector == abi.REMOVE_OWNER.selector:
            prev_owner, owner, threshold = abi.REMOVE_OWNER.decode_input(data)
            if len(safe.owners) - 1 < threshold:
                raise SafeLogicError("GS201")

            self._validate_owner_pair(safe, prev_owner, owner)
            safe.owners.remove(owner)
            self._change_threshold(safe, threshold)

        elif selector == abi.SWAP_OWNER.selector:
            prev_owner, old_owner, new_owner = abi.SWAP_OWNER.decode_input(data)
            self._validate_new_owner(safe, new_owner)
            self._validate_owner_pair(safe, prev_owner, old_owner)
            safe.owners[safe.owners.index(old_owner)] = new_owner

        elif selector == abi.CHANGE_THRESHOLD.selector:
            (threshold,) = abi.CHANGE_THRESHOLD.decode_input(data)
            self._change_threshold(safe, threshold)

        elif selector == abi.ENABLE_MODULE.selector:
            (module,) = abi.ENABLE_MODULE.decode_input(data)
            if module in (ZERO_ADDRESS, SENTINEL):
                raise SafeLogicError("GS101")

            elif module in safe.modules:
                raise SafeLogicError("GS102")

            safe.modules.insert(0, module)

        elif selector == abi.DISABLE_MODULE.selector:
            prev_module, module = abi.DISABLE_MODULE.decode_input(data)
            if module in (ZERO_ADDRESS, SENTINEL):
                raise SafeLogicError("GS101")

            linked = [SENTINEL, *safe.modules]
            if module not in safe.modules or linked[safe.modules.index(module)] != prev_module:
                raise SafeLogicError("GS103")

            safe.modules.remove(module)

        elif selector == abi.SET_GUARD.selector:
            (safe.guard,) = abi.SET_GUARD.decode_input(data)

        elif selector == abi.SET_FALLBACK_HANDLER.selector:
            (safe.fallback_handler,) = abi.SET_FALLBACK_HANDLER.decode_input(data)

        elif selector == abi.SET_MODULE_GUARD.selector:
            (safe.module_guard,) = abi.SET_MODULE_GUARD.decode_input(data)

        else:
            raise revert(f"Unsupported self-call {to_hex(selector)}")

    def _validate_new_owner(self, safe: MockSafe, owner: AddressType):
        if owner in (ZERO_ADDRESS, SENTINEL, safe.address):
            raise SafeLogicError("GS203")

        elif owner in safe.owners:
            raise SafeLogicError("GS204")

    def _validate_owner_pair(self, safe: MockSafe, prev_owner: AddressType, owner: AddressType):
        if owner in (ZERO_ADDRESS, SENTINEL):
            raise SafeLogicError("GS203")

        linked = [SENTINEL, *safe.owners]
        if owner not in safe.owners or linked[safe.owners.index(owner)] != prev_owner:
            raise SafeLogicError("GS205")

    def _change_threshold(self, safe: MockSafe, threshold: int):
        if threshold > len(safe.owners):
            raise SafeLogicError("GS201")

        elif threshold < 1:
            raise SafeLogicError("GS202")

        safe.threshold = threshold
