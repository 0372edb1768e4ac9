from collections.abc import Iterable
from typing import Any, Optional, Union

from ape.logging import logger
from ape.types import AddressType, HexBytes
from ape.utils import ZERO_ADDRESS
from eth_abi import decode
from eth_abi.exceptions import DecodingError
from eth_utils import keccak
from packaging.version import Version

from . import abi
from .chain import ApeChainQuery, BaseChainQuery
from .config import SafeCoreConfig
from .constants import DEPLOYMENTS, PROXY_CREATION_CODE, SAFE_SETUP_TOPIC, SENTINEL
from .exceptions import ChainReadError, InvalidThresholdError, SafeLogicError
from .types import SafeCreation, SafeDeployment, SafeSetupEvent
from .utils import decode_address_word, pad32, to_address, to_canonical_address


def validate_owners(owners: Iterable[Any], threshold: int) -> list[AddressType]:
    if not (owner_addresses := [to_address(a) for a in owners]):
        raise ValueError("Cannot make a Safe with 0 owners.")

    elif not (1 <= threshold <= len(owner_addresses)):
        raise InvalidThresholdError(threshold, len(owner_addresses))

    seen: set[AddressType] = set()
    for owner in owner_addresses:
        if owner in (ZERO_ADDRESS, SENTINEL):
            raise SafeLogicError("GS203")

        elif owner in seen:
            raise SafeLogicError("GS204")

        seen.add(owner)

    return owner_addresses


def encode_setup_data(
    owners: Iterable[Any],
    threshold: int,
    to: Any = ZERO_ADDRESS,
    data: bytes = b"",
    fallback_handler: Any = ZERO_ADDRESS,
    payment_token: Any = ZERO_ADDRESS,
    payment: int = 0,
    payment_receiver: Any = ZERO_ADDRESS,
) -> HexBytes:
    """
    Encode the ``setup(...)`` initializer a new Safe proxy is called with.

    Raises:
        ValueError: No owners, or a payment without a token and receiver.
        :class:`~ape_safe_core.exceptions.InvalidThresholdError`: Threshold out of range.
        :class:`~ape_safe_core.exceptions.SafeLogicError`: Invalid or duplicated owner.
    """
    owner_addresses = validate_owners(owners, threshold)
    payment_token = to_address(payment_token)
    payment_receiver = to_address(payment_receiver)
    if payment > 0 and (payment_token == ZERO_ADDRESS or payment_receiver == ZERO_ADDRESS):
        raise ValueError(
            "If sending payments, must include both `payment_token` and `payment_receiver`"
        )

    return abi.SETUP.encode_input(
        [to_canonical_address(o) for o in owner_addresses],
        threshold,
        to_canonical_address(to),
        bytes(data),
        to_canonical_address(fallback_handler),
        to_canonical_address(payment_token),
        payment,
        to_canonical_address(payment_receiver),
    )


def compute_create2_address(
    deployer: Any, salt: Union[bytes, int], init_code: bytes
) -> AddressType:
    """``keccak256(0xff ++ deployer ++ salt ++ keccak256(init_code))[12:]`` (EIP-1014)"""
    salt_bytes = pad32(salt) if isinstance(salt, int) else bytes(salt)
    if len(salt_bytes) != 32:
        raise ValueError("CREATE2 salt must be 32 bytes.")

    address_hash = keccak(
        b"\xff" + to_canonical_address(deployer) + salt_bytes + keccak(bytes(init_code))
    )
    return to_address(address_hash[12:])


def get_proxy_salt(initializer: bytes, salt_nonce: int) -> bytes:
    # NOTE: Same as `SafeProxyFactory.createProxyWithNonce`
    return keccak(keccak(bytes(initializer)) + pad32(salt_nonce))


def compute_safe_address(
    initializer: bytes,
    salt_nonce: int,
    singleton: Any,
    proxy_factory: Any,
    proxy_creation_code: bytes,
) -> AddressType:
    """
    The address ``proxy_factory.createProxyWithNonce(singleton, initializer, salt_nonce)``
    deploys the new Safe proxy to.
    """
    init_code = bytes(proxy_creation_code) + pad32(to_canonical_address(singleton))
    return compute_create2_address(
        proxy_factory, get_proxy_salt(initializer, salt_nonce), init_code
    )


def encode_create_proxy_with_nonce(
    singleton: Any, initializer: bytes, salt_nonce: int
) -> HexBytes:
    return abi.CREATE_PROXY_WITH_NONCE.encode_input(
        to_canonical_address(singleton), bytes(initializer), salt_nonce
    )


def get_deployment(version: Union[Version, str]) -> SafeDeployment:
    version = str(version).lstrip("v")
    if version not in DEPLOYMENTS:
        raise ValueError(
            f"No canonical deployment for Safe v{version}, "
            f"expected one of {', '.join(DEPLOYMENTS)}."
        )

    return SafeDeployment(
        version=version,
        proxy_creation_code=PROXY_CREATION_CODE.get(version),
        **DEPLOYMENTS[version],
    )


class SafeFactory:
    """
    Predicts and encodes Safe deployments through a ``SafeProxyFactory``.

    Defaults to the canonical deployment of ``config.default_version``.
    """

    def __init__(
        self,
        chain: Optional[BaseChainQuery] = None,
        version: Union[Version, str, None] = None,
        config: Optional[SafeCoreConfig] = None,
        deployment: Optional[SafeDeployment] = None,
    ):
        self.config = config or SafeCoreConfig()
        self.chain = chain or ApeChainQuery()
        self.deployment = deployment or get_deployment(version or self.config.default_version)

    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__qualname__} version={self.deployment.version} "
            f"factory={self.deployment.proxy_factory}>"
        )

    @property
    def proxy_creation_code(self) -> HexBytes:
        if self.deployment.proxy_creation_code is not None:
            return self.deployment.proxy_creation_code

        logger.debug(f"Reading proxyCreationCode from {self.deployment.proxy_factory}")
        result = self.chain.call(
            self.deployment.proxy_factory, abi.PROXY_CREATION_CODE.encode_input()
        )
        if len(result) == 0:
            raise ChainReadError(f"No proxy factory at {self.deployment.proxy_factory}.")

        return HexBytes(abi.PROXY_CREATION_CODE.decode_output(result))

    def create(
        self,
        owners: Iterable[Any],
        threshold: int,
        salt_nonce: int = 0,
        l2: bool = False,
        fallback_handler: Any = None,
        **setup_kwargs,
    ) -> SafeCreation:
        """
        Encode a ``createProxyWithNonce`` call for a new Safe and predict its address.

        Args:
            owners: Owner addresses, in the order they are stored in the Safe.
            threshold (int): Required number of confirmations.
            salt_nonce (int): Varies the address for otherwise identical setups.
            l2 (bool): Use the ``SafeL2`` singleton, which emits events for every execution.
            fallback_handler: Defaults to the deployment's ``CompatibilityFallbackHandler``.
            **setup_kwargs: Other arguments of :func:`encode_setup_data`.
        """
        singleton = self.deployment.singleton_l2 if l2 else self.deployment.singleton
        initializer = encode_setup_data(
            owners,
            threshold,
            fallback_handler=fallback_handler or self.deployment.fallback_handler,
            **setup_kwargs,
        )
        safe_address = compute_safe_address(
            initializer,
            salt_nonce,
            singleton,
            self.deployment.proxy_factory,
            self.proxy_creation_code,
        )
        logger.debug(f"New Safe will be deployed at {safe_address} (salt nonce {salt_nonce})")
        return SafeCreation(
            safe_address=safe_address,
            proxy_factory=self.deployment.proxy_factory,
            singleton=singleton,
            initializer=initializer,
            salt_nonce=salt_nonce,
            data=encode_create_proxy_with_nonce(singleton, initializer, salt_nonce),
        )

    def compute_address(self, owners: Iterable[Any], threshold: int, **kwargs) -> AddressType:
        return self.create(owners, threshold, **kwargs).safe_address


def decode_safe_setup_logs(logs: Iterable[Any]) -> list[SafeSetupEvent]:
    """
    Find the ``SafeSetup`` events in a deployment receipt's logs.

    Args:
        logs: Raw logs, as mappings with ``topics``, ``data`` and (optionally) ``address``,
          e.g. ``receipt.logs`` or the result of ``eth_getLogs``.

    Returns:
        list[:class:`~ape_safe_core.types.SafeSetupEvent`]: One per ``SafeSetup`` log, in
        order. Other logs are skipped.
    """
    events = []
    for log in logs:
        topics = [HexBytes(topic) for topic in log.get("topics", [])]
        if len(topics) != 2 or topics[0] != SAFE_SETUP_TOPIC:
            continue

        try:
            owners, threshold, initializer, fallback_handler = decode(
                ["address[]", "uint256", "address", "address"], bytes(HexBytes(log["data"]))
            )

        except DecodingError as err:
            logger.debug(f"Skipping undecodable SafeSetup log: {err}")
            continue

        events.append(
            SafeSetupEvent(
                safe=log.get("address"),
                initiator=decode_address_word(topics[1]),
                owners=owners,
                threshold=threshold,
                initializer=initializer,
                fallback_handler=fallback_handler,
            )
        )

    return events
