from typing import Optional, Union

from ape.exceptions import ApeException, ContractLogicError
from ape.logging import logger
from ape.types import AddressType, HexBytes
from ape.utils import ManagerAccessMixin
from eth_utils import is_0x_prefixed, is_hex, to_hex

from ape_safe_core.chain.base import BaseChainQuery
from ape_safe_core.chain.mock import MockChainQuery
from ape_safe_core.exceptions import ChainReadError


def _is_hex_data(value: Optional[str]) -> bool:
    return bool(value) and is_0x_prefixed(value) and is_hex(value)


class ApeChainQuery(BaseChainQuery, ManagerAccessMixin):
    """Chain reads through Ape's active provider."""

    def call(self, address: AddressType, data: bytes) -> HexBytes:
        logger.debug(f"eth_call {address} {to_hex(data)[:10]}")
        txn = self.provider.network.ecosystem.create_transaction(receiver=address, data=data)
        try:
            return HexBytes(self.provider.send_call(txn))

        except ContractLogicError as err:
            # NOTE: Ape reports revert data it cannot decode as the hex message
            revert_data = HexBytes(err.message) if _is_hex_data(err.message) else None
            raise ChainReadError(
                f"Call to {address} reverted: {err.message}",
                revert_message=err.message,
                revert_data=revert_data,
            ) from err

        except ApeException as err:
            raise ChainReadError(f"Call to {address} failed: {err}") from err

    def get_storage_at(self, address: AddressType, slot: Union[bytes, int]) -> HexBytes:
        slot_int = slot if isinstance(slot, int) else int.from_bytes(slot, "big")
        logger.debug(f"eth_getStorageAt {address} {hex(slot_int)}")
        try:
            return HexBytes(self.provider.get_storage(address, slot_int))

        except ApeException as err:
            raise ChainReadError(f"Storage read from {address} failed: {err}") from err

    def get_chain_id(self) -> int:
        try:
            return self.provider.chain_id

        except ApeException as err:
            raise ChainReadError(f"Could not read chain ID: {err}") from err

    def get_code(self, address: AddressType) -> HexBytes:
        try:
            return HexBytes(self.provider.get_code(address))

        except ApeException as err:
            raise ChainReadError(f"Code read from {address} failed: {err}") from err


__all__ = [
    "ApeChainQuery",
    "BaseChainQuery",
    "MockChainQuery",
]
