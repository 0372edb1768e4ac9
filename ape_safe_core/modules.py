from collections.abc import Iterator
from typing import TYPE_CHECKING, Any, Optional

from ape.logging import logger
from ape.types import AddressType
from ape.utils import ZERO_ADDRESS

from .constants import SENTINEL
from .exceptions import NotASigner, SafeModuleNotFoundError, handle_safe_logic_error
from .utils import to_address

if TYPE_CHECKING:
    from .state import SafeStateReader


class SafeModuleManager:
    """
    Walks the Safe's sentinel-headed module list, which is needed to find the
    ``prevModule`` argument of ``disableModule`` (and ``prevOwner`` for owner removal).
    """

    SENTINEL: AddressType = SENTINEL

    def __init__(self, state: "SafeStateReader", page_size: Optional[int] = None):
        self.state = state
        self.page_size = page_size or state.config.module_page_size

    def __repr__(self) -> str:
        return f"<{self.__class__.__qualname__} safe={self.state.address}>"

    def __contains__(self, module: Any) -> bool:
        return self.state.is_module_enabled(module)

    def __iter__(self) -> Iterator[AddressType]:
        start_module = self.SENTINEL
        while True:
            page, start_module = self.state.get_modules_paginated(start_module, self.page_size)
            yield from page

            if start_module == self.SENTINEL or not page:
                break

    @handle_safe_logic_error()
    def get_previous_module(self, module: Any) -> AddressType:
        module = to_address(module)
        prev_module = self.SENTINEL

        for next_module in self:
            if next_module == module:
                logger.debug(f"Previous module of {module} is {prev_module}")
                return prev_module

            prev_module = next_module

        raise SafeModuleNotFoundError(module, self.state.address)

    def get_previous_owner(
        self, owner: Any, owners: Optional[list[AddressType]] = None
    ) -> AddressType:
        owner = to_address(owner)
        owners = self.state.owners() if owners is None else owners
        if owner not in owners:
            raise NotASigner(owner)

        index = owners.index(owner)
        if index > 0:
            return owners[index - 1]

        # NOTE: SENTINEL_OWNERS is the "previous" address to index 0
        return self.SENTINEL

    @property
    def guard(self) -> Optional[AddressType]:
        if (module_guard := self.state.module_guard()) == ZERO_ADDRESS:
            return None

        return module_guard
