from collections.abc import Iterable
from typing import Any, Optional, Union

from ape.logging import logger
from ape.types import AddressType
from eth_utils import to_hex

from . import abi
from .chain import ApeChainQuery, BaseChainQuery
from .config import SafeCoreConfig
from .constants import EIP1271_MAGIC_VALUE, LEGACY_EIP1271_MAGIC_VALUE
from .exceptions import (
    ChainReadError,
    DuplicateSignerError,
    InvalidThresholdError,
    MalformedSignatureError,
    NotASigner,
    NotEnoughSignatures,
    SignatureValidationError,
    describe_safe_error,
)
from .signatures import (
    ApprovedHashSignature,
    ContractSignature,
    EcdsaSignature,
    SafeSignature,
    decode_signatures,
)
from .state import SafeStateReader
from .types import Address, SafeCoreModel
from .utils import address_key, to_address


class SignatureValidationResult(SafeCoreModel):
    valid: bool
    signer: Address
    reason: Optional[str] = None

    def raise_for_status(self):
        if not self.valid:
            raise SignatureValidationError(
                f"Invalid signature from {self.signer}: {self.reason or 'unknown reason'}."
            )


def _is_magic_value(result: bytes, magic_value: bytes) -> bool:
    """
    ``bytes4`` is ABI-encoded left-aligned in a 32-byte word. The whole word must match,
    so a result with non-zero bytes after the magic value is rejected even though its
    first 4 bytes match. This is stricter than comparing the 4-byte prefix alone.
    """
    return len(result) >= 32 and bytes(result[:32]) == bytes(magic_value).ljust(32, b"\x00")


class SignatureValidator:
    """
    Off-chain signature checks against deployed contracts. Purely advisory: nothing
    here ever submits a transaction.
    """

    def __init__(
        self,
        chain: Optional[BaseChainQuery] = None,
        config: Optional[SafeCoreConfig] = None,
    ):
        self.chain = chain or ApeChainQuery()
        self.config = config or SafeCoreConfig()

    def __repr__(self) -> str:
        return f"<{self.__class__.__qualname__}>"

    def is_valid_signature(
        self,
        target: Any,
        data_hash: Optional[bytes] = None,
        signature: bytes = b"",
        data: Optional[bytes] = None,
    ) -> SignatureValidationResult:
        """
        Ask ``target`` whether ``signature`` is valid, via ERC-1271.

        Uses ``isValidSignature(bytes32,bytes)`` with ``data_hash``, or the legacy
        ``isValidSignature(bytes,bytes)`` when ``data`` is given instead.

        Returns:
            :class:`SignatureValidationResult`: ``valid`` only if the call succeeded and
            returned the magic value. A revert is reported as invalid, with its reason.
        """
        target = to_address(target)
        if data is not None:
            method, magic_value, argument = (
                abi.LEGACY_IS_VALID_SIGNATURE,
                LEGACY_EIP1271_MAGIC_VALUE,
                bytes(data),
            )

        elif data_hash is not None:
            method, magic_value, argument = (
                abi.IS_VALID_SIGNATURE,
                EIP1271_MAGIC_VALUE,
                bytes(data_hash),
            )

        else:
            raise TypeError("Must provide either `data_hash=` or `data=`.")

        try:
            result = self.chain.call(target, method.encode_input(argument, bytes(signature)))

        except ChainReadError as err:
            logger.debug(f"isValidSignature on {target} failed: {err}")
            return SignatureValidationResult(
                valid=False,
                signer=target,
                reason=describe_safe_error(err.revert_message) or str(err),
            )

        if _is_magic_value(result, magic_value):
            return SignatureValidationResult(valid=True, signer=target)

        return SignatureValidationResult(
            valid=False,
            signer=target,
            reason=(
                f"Expected magic value {to_hex(magic_value)}, "
                f"got {to_hex(result) if result else 'an empty result'}"
            ),
        )

    def validate_signature(
        self,
        signature: SafeSignature,
        data_hash: bytes,
        safe_address: Optional[Any] = None,
        data: Optional[bytes] = None,
        executor: Optional[Any] = None,
    ) -> SignatureValidationResult:
        """
        Validate one signature over ``data_hash``, without checking ownership.

        Approved-hash signatures need ``safe_address`` to read ``approvedHashes``.
        """
        if isinstance(signature, EcdsaSignature):
            try:
                recovered = signature.recover(data_hash)

            except MalformedSignatureError as err:
                return SignatureValidationResult(
                    valid=False, signer=signature.signer, reason=str(err)
                )

            if recovered != signature.signer:
                return SignatureValidationResult(
                    valid=False,
                    signer=signature.signer,
                    reason=f"Signature was produced by {recovered}",
                )

            return SignatureValidationResult(valid=True, signer=signature.signer)

        elif isinstance(signature, ApprovedHashSignature):
            if executor is not None and to_address(executor) == signature.signer:
                return SignatureValidationResult(valid=True, signer=signature.signer)

            elif safe_address is None:
                raise TypeError("Must provide `safe_address=` to check approved hashes.")

            state = SafeStateReader(safe_address, chain=self.chain, config=self.config)
            if state.approved_hashes(signature.signer, data_hash) == 0:
                return SignatureValidationResult(
                    valid=False,
                    signer=signature.signer,
                    reason="Hash has not been approved (GS025)",
                )

            return SignatureValidationResult(valid=True, signer=signature.signer)

        elif isinstance(signature, ContractSignature):
            if data is not None:
                return self.is_valid_signature(
                    signature.signer, data=data, signature=signature.data
                )

            return self.is_valid_signature(signature.signer, data_hash, signature.data)

        raise MalformedSignatureError(f"Unknown signature type {type(signature).__name__}.")

    def check_signatures(
        self,
        safe_address: Any,
        data_hash: bytes,
        signatures: Union[bytes, Iterable[SafeSignature]],
        owners: Optional[Iterable[Any]] = None,
        threshold: Optional[int] = None,
        data: Optional[bytes] = None,
        executor: Optional[Any] = None,
    ) -> list[SignatureValidationResult]:
        """
        Check ``signatures`` the way ``Safe.checkNSignatures`` does, before submitting.

        The first ``threshold`` signatures must be valid, made by distinct owners, and
        sorted by ascending signer address.

        Args:
            safe_address: The Safe the signatures are for.
            data_hash (bytes): The Safe transaction (or message) hash.
            signatures: Packed signature bytes, or signatures in packed order.
            owners: Defaults to the Safe's current owners.
            threshold (Optional[int]): Defaults to the Safe's current threshold.
            data (Optional[bytes]): Pre-image of ``data_hash``, to validate contract
              signatures with the legacy ERC-1271 method (Safe < v1.5.0).
            executor: The account that will submit the transaction, which counts as
              having approved the hash.

        Raises:
            :class:`~ape_safe_core.exceptions.NotEnoughSignatures`
            :class:`~ape_safe_core.exceptions.DuplicateSignerError`
            :class:`~ape_safe_core.exceptions.MalformedSignatureError`
            :class:`~ape_safe_core.exceptions.SignatureValidationError`
            :class:`~ape_safe_core.exceptions.NotASigner`

        Returns:
            list[:class:`SignatureValidationResult`]
        """
        state = SafeStateReader(safe_address, chain=self.chain, config=self.config)
        owner_addresses: list[AddressType] = (
            [to_address(o) for o in owners] if owners is not None else state.owners()
        )
        threshold = state.threshold() if threshold is None else threshold
        if threshold < 1:
            raise InvalidThresholdError(threshold, len(owner_addresses))

        if isinstance(signatures, (bytes, bytearray)):
            parsed = decode_signatures(signatures, data_hash=data_hash)
        else:
            parsed = list(signatures)

        if len(parsed) < threshold:
            raise NotEnoughSignatures(threshold, len(parsed))

        results = []
        last_owner = 0
        for signature in parsed[:threshold]:
            if address_key(signature.signer) == last_owner:
                raise DuplicateSignerError(signature.signer)

            elif address_key(signature.signer) < last_owner:
                raise MalformedSignatureError(
                    "Signatures must be sorted by ascending signer address."
                )

            result = self.validate_signature(
                signature, data_hash, safe_address=state.address, data=data, executor=executor
            )
            result.raise_for_status()
            if signature.signer not in owner_addresses:
                raise NotASigner(signature.signer)

            last_owner = address_key(signature.signer)
            results.append(result)

        return results
