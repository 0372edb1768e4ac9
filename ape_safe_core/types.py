from enum import Enum
from typing import Annotated, Optional

from ape.types import AddressType, HexBytes
from ape.utils import ZERO_ADDRESS
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError

from . import abi
from .exceptions import SafeCoreException
from .utils import to_address

Address = Annotated[AddressType, BeforeValidator(to_address)]


class SafeCoreModel(BaseModel):
    """
    Raises the package's own errors (e.g. ``InvalidAddressError``) from field validators
    as-is, instead of wrapped in pydantic's ``ValidationError``.
    """

    def __init__(self, **data):
        try:
            super().__init__(**data)

        except ValidationError as err:
            for error in err.errors():
                if isinstance(cause := error.get("ctx", {}).get("error"), SafeCoreException):
                    raise cause from err

            raise


class OperationType(int, Enum):
    CALL = 0
    DELEGATECALL = 1


class SafeTx(SafeCoreModel):
    """
    A Safe transaction, in the field order of the on-chain ``SafeTx`` struct.

    Fields are exposed in snake_case and accept their ABI (camelCase) names as aliases,
    so ``SafeTx(safeTxGas=...)`` and ``SafeTx(safe_tx_gas=...)`` are equivalent.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    to: Address
    value: int = Field(default=0, ge=0)
    data: HexBytes = HexBytes(b"")
    operation: OperationType = OperationType.CALL
    safe_tx_gas: int = Field(default=0, ge=0, alias="safeTxGas")
    base_gas: int = Field(default=0, ge=0, alias="baseGas")
    gas_price: int = Field(default=0, ge=0, alias="gasPrice")
    gas_token: Address = Field(default=ZERO_ADDRESS, alias="gasToken")
    refund_receiver: Address = Field(default=ZERO_ADDRESS, alias="refundReceiver")
    nonce: int = Field(ge=0)

    @property
    def exec_args(self) -> list:
        """Arguments for ``execTransaction``, minus the trailing ``signatures``."""
        return [
            self.to,
            self.value,
            self.data,
            int(self.operation),
            self.safe_tx_gas,
            self.base_gas,
            self.gas_price,
            self.gas_token,
            self.refund_receiver,
        ]


class SafeConfiguration(SafeCoreModel):
    """Snapshot of a Safe's on-chain configuration."""

    address: Address
    owners: list[Address]
    threshold: int
    nonce: int
    version: str
    singleton: Address
    guard: Address = ZERO_ADDRESS
    fallback_handler: Address = ZERO_ADDRESS
    module_guard: Address = ZERO_ADDRESS
    modules: list[Address] = []


class SafeDeployment(SafeCoreModel):
    """Canonical contract addresses for one Safe release."""

    version: str
    proxy_factory: Address
    singleton: Address
    singleton_l2: Address
    fallback_handler: Address
    multisend: Address
    multisend_call_only: Address
    simulate_tx_accessor: Address
    proxy_creation_code: Optional[HexBytes] = None


class SafeCreation(SafeCoreModel):
    """A ``createProxyWithNonce`` call, and the address the new Safe will be deployed at."""

    safe_address: Address
    proxy_factory: Address
    singleton: Address
    initializer: HexBytes
    salt_nonce: int
    data: HexBytes
    """Calldata to send to ``proxy_factory``."""


class SimulationResult(SafeCoreModel):
    """Outcome of a Safe transaction run against current chain state, without sending it."""

    success: bool
    return_data: HexBytes = HexBytes(b"")
    gas_used: Optional[int] = None
    """Gas used by the call itself, only known when simulated without signatures."""

    @property
    def revert_message(self) -> Optional[str]:
        if self.success or bytes(self.return_data[:4]) != bytes(abi.ERROR.selector):
            return None

        (message,) = abi.ERROR.decode_input(self.return_data)
        return message


class SafeSetupEvent(SafeCoreModel):
    """A decoded ``SafeSetup`` event, emitted once by a new Safe proxy during ``setup``."""

    safe: Optional[Address] = None
    initiator: Address
    owners: list[Address]
    threshold: int
    initializer: Address
    fallback_handler: Address
