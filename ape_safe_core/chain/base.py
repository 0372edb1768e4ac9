from abc import ABC, abstractmethod
from typing import Union

from ape.types import AddressType, HexBytes


class BaseChainQuery(ABC):
    """
    Read-only access to a chain: ``eth_call``, ``eth_getStorageAt``, ``eth_chainId``
    and ``eth_getCode``. Every read the core performs goes through this interface.
    """

    """Abstract methods"""

    @abstractmethod
    def call(self, address: AddressType, data: bytes) -> HexBytes: ...

    @abstractmethod
    def get_storage_at(self, address: AddressType, slot: Union[bytes, int]) -> HexBytes: ...

    @abstractmethod
    def get_chain_id(self) -> int: ...

    @abstractmethod
    def get_code(self, address: AddressType) -> HexBytes: ...

    """Shared methods"""

    def has_code(self, address: AddressType) -> bool:
        return len(self.get_code(address)) > 0
