from contextlib import ContextDecorator
from typing import TYPE_CHECKING, Any, Optional

from ape.exceptions import ApeException, ChainError, ContractLogicError, SignatureError

if TYPE_CHECKING:
    from ape.types import AddressType


class SafeCoreException(ApeException):
    pass


class InvalidAddressError(SafeCoreException, ValueError):
    def __init__(self, value: Any):
        self.value = value
        super().__init__(f"'{value}' is not a valid address.")


class InvalidThresholdError(SafeCoreException, ValueError):
    def __init__(self, threshold: int, max_threshold: int):
        self.threshold = threshold
        self.max_threshold = max_threshold
        super().__init__(
            f"Threshold must be between '1' and '{max_threshold}', got '{threshold}'."
        )


class DuplicateSignerError(SafeCoreException, SignatureError):
    def __init__(self, signer: "AddressType"):
        self.signer = signer
        super().__init__(f"Signer '{signer}' appears more than once.")


class MalformedSignatureError(SafeCoreException, SignatureError):
    pass


class SafeModuleNotFoundError(SafeCoreException):
    """
    Raised when a module is not part of a Safe's module list.
    """

    def __init__(self, module: "AddressType", safe: "AddressType"):
        self.module = module
        self.safe = safe
        super().__init__(f"Module {module} not in Safe modules for {safe}.")


class NotASigner(SafeCoreException):
    def __init__(self, signer: "AddressType"):
        self.signer = signer
        super().__init__(f"{signer} is not a valid signer.")


class NotEnoughSignatures(SafeCoreException, SignatureError):
    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Not enough signatures, {expected - actual} more are needed.")


class ChainReadError(SafeCoreException, ChainError):
    """
    Raised when a read against the chain fails, either because the call reverted,
    the node errored, or there is no contract at the target address.
    """

    def __init__(
        self,
        message: str,
        revert_message: Optional[str] = None,
        revert_data: Optional[bytes] = None,
    ):
        self.revert_message = revert_message
        self.revert_data = revert_data
        super().__init__(message)


class SignatureValidationError(SafeCoreException, SignatureError):
    pass


class UnsafeDelegateCallError(SafeCoreException, ValueError):
    def __init__(self):
        super().__init__(
            "DELEGATECALL runs foreign code with full control of the Safe. "
            "Pass `unsafe_delegatecall=True` (or set `allow_delegatecall`) to build it anyway."
        )


SAFE_ERROR_CODES = {
    "GS000": "Could not finish initialization",
    "GS001": "Threshold needs to be defined",
    "GS010": "Not enough gas to execute Safe transaction",
    "GS011": "Could not pay gas costs with ether",
    "GS012": "Could not pay gas costs with token",
    "GS013": "Safe transaction failed when gasPrice and safeTxGas were 0",
    "GS020": "Signatures data too short",
    "GS021": "Invalid contract signature location: inside static part",
    "GS022": "Invalid contract signature location: length not present",
    "GS023": "Invalid contract signature location: data not complete",
    "GS024": "Invalid contract signature provided",
    "GS025": "Hash has not been approved",
    "GS026": "Invalid owner provided",
    "GS030": "Only owners can approve a hash",
    "GS031": "Method can only be called from this contract",
    "GS100": "Modules have already been initialized",
    "GS101": "Invalid module address provided",
    "GS102": "Module has already been added",
    "GS103": "Invalid prevModule, module pair provided",
    "GS104": "Method can only be called from an enabled module",
    "GS105": "Invalid starting point for fetching paginated modules",
    "GS106": "Invalid page size for fetching paginated modules",
    "GS200": "Owners have already been set up",
    "GS201": "Threshold cannot exceed owner count",
    "GS202": "Threshold needs to be greater than 0",
    "GS203": "Invalid owner address provided",
    "GS204": "Address is already an owner",
    "GS205": "Invalid prevOwner, owner pair provided",
    "GS300": "Guard does not implement IERC165",
    "GS400": "Fallback handler cannot be set to self",
}


def describe_safe_error(message: Optional[str]) -> Optional[str]:
    """Expand a ``GSxxx`` revert reason into its readable form, if it is one."""
    if not message:
        return message

    code = message.replace("revert: ", "").strip()
    if code in SAFE_ERROR_CODES:
        return f"{SAFE_ERROR_CODES[code]} ({code})"

    return message


class SafeLogicError(SafeCoreException, ContractLogicError):
    def __init__(self, error_code: str):
        self.error_code = error_code
        super().__init__(f"{SAFE_ERROR_CODES[error_code]} ({error_code})")


class handle_safe_logic_error(ContextDecorator):
    def __enter__(self):
        pass

    def __exit__(self, exc_type: type[BaseException], exc: BaseException, tb):
        if isinstance(exc, ContractLogicError) and not isinstance(exc, SafeLogicError):
            message = (exc.message or "").replace("revert: ", "").strip()
            if message.startswith("GS") and message in SAFE_ERROR_CODES:
                raise SafeLogicError(message) from exc

        elif isinstance(exc, ChainReadError) and exc.revert_message:
            message = exc.revert_message.replace("revert: ", "").strip()
            if message.startswith("GS") and message in SAFE_ERROR_CODES:
                raise SafeLogicError(message) from exc

        # NOTE: Will raise `exc` by default because we did not return anything

