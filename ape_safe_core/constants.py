from enum import IntEnum

from ape.types import AddressType
from ape.utils import ZERO_ADDRESS
from eth_utils import keccak
from hexbytes import HexBytes

# NOTE: Head (and tail) of the owner and module linked lists
SENTINEL: AddressType = "0x0000000000000000000000000000000000000001"

DOMAIN_TYPEHASH = keccak(text="EIP712Domain(uint256 chainId,address verifyingContract)")
# NOTE: Safe < v1.3.0 does not bind the chain ID into the domain
LEGACY_DOMAIN_TYPEHASH = keccak(text="EIP712Domain(address verifyingContract)")

SAFE_TX_TYPEHASH = keccak(
    text=(
        "SafeTx(address to,uint256 value,bytes data,uint8 operation,uint256 safeTxGas,"
        "uint256 baseGas,uint256 gasPrice,address gasToken,address refundReceiver,uint256 nonce)"
    )
)
# NOTE: Safe < v1.0.0 called `baseGas` by the name `dataGas`
LEGACY_SAFE_TX_TYPEHASH = keccak(
    text=(
        "SafeTx(address to,uint256 value,bytes data,uint8 operation,uint256 safeTxGas,"
        "uint256 dataGas,uint256 gasPrice,address gasToken,address refundReceiver,uint256 nonce)"
    )
)
SAFE_MSG_TYPEHASH = keccak(text="SafeMessage(bytes message)")

# SafeSetup(address indexed initiator, address[] owners, uint256 threshold, address initializer,
#     address fallbackHandler)
SAFE_SETUP_TOPIC = keccak(text="SafeSetup(address,address[],uint256,address,address)")

# ERC-1271 magic values
EIP1271_MAGIC_VALUE = HexBytes("0x1626ba7e")  # isValidSignature(bytes32,bytes)
LEGACY_EIP1271_MAGIC_VALUE = HexBytes("0x20c13b0b")  # isValidSignature(bytes,bytes)


class SafeStorageSlot(IntEnum):
    """Sequential storage layout shared by every Safe singleton."""

    SINGLETON = 0
    MODULES = 1
    OWNERS = 2
    OWNER_COUNT = 3
    THRESHOLD = 4
    NONCE = 5
    DEPRECATED_DOMAIN_SEPARATOR = 6
    SIGNED_MESSAGES = 7
    APPROVED_HASHES = 8


FALLBACK_HANDLER_STORAGE_SLOT = keccak(text="fallback_manager.handler.address")
GUARD_STORAGE_SLOT = keccak(text="guard_manager.guard.address")
MODULE_GUARD_STORAGE_SLOT = keccak(text="module_manager.module_guard.address")

DEFAULT_SAFE_VERSION = "1.4.1"

SAFE_V141_PROXY_CREATION_CODE = HexBytes(
    "0x608060405234801561001057600080fd5b506040516101e63803806101e683398181016040526020"
    "81101561003357600080fd5b8101908080519060200190929190505050600073ffffffffffffffff"
    "ffffffffffffffffffffffff168173ffffffffffffffffffffffffffffffffffffffff1614156100"
    "ca576040517f08c379a0000000000000000000000000000000000000000000000000000000008152"
    "6004018080602001828103825260228152602001806101c460229139604001915050604051809103"
    "90fd5b806000806101000a81548173ffffffffffffffffffffffffffffffffffffffff0219169083"
    "73ffffffffffffffffffffffffffffffffffffffff1602179055505060ab806101196000396000f3"
    "fe608060405273ffffffffffffffffffffffffffffffffffffffff600054167fa619486e00000000"
    "00000000000000000000000000000000000000000000000060003514156050578060005260206000"
    "f35b3660008037600080366000845af43d6000803e60008114156070573d6000fd5b3d6000f3fea2"
    "64697066735822122003d1488ee65e08fa41e58e888a9865554c535f2c77126a82cb4c0f917f3144"
    "1364736f6c63430007060033496e76616c69642073696e676c65746f6e2061646472657373207072"
    "6f7669646564")

# NOTE: Canonical (singleton factory) deployments, identical on every supported chain
DEPLOYMENTS: dict[str, dict[str, AddressType]] = {
    "1.3.0": {
        "proxy_factory": "0xa6B71E26C5e0845f74c812102Ca7114b6a896AB2",
        "singleton": "0xd9Db270c1B5E3Bd161E8c8503c55cEABeE709552",
        "singleton_l2": "0x3E5c63644E683549055b9Be8653de26E0B4CD36E",
        "fallback_handler": "0xf48f2B2d2a534e402487b3ee7C18c33Aec0Fe5e4",
        "multisend": "0xA238CBeb142c10Ef7Ad8442C6D1f9E89e07e7761",
        "multisend_call_only": "0x40A2aCCbd92BCA938b02010E17A5b8929b49130D",
        "simulate_tx_accessor": "0x59AD6735bCd8152B84860Cb256dD9e96b85F69Da",
    },
    "1.4.1": {
        "proxy_factory": "0x4e1DCf7AD4e460CfD30791CCC4F9c8a4f820ec67",
        "singleton": "0x41675C099F32341bf84BFc5382aF534df5C7461a",
        "singleton_l2": "0x29fcB43b46531BcA003ddC8FCB67FFE91900C762",
        "fallback_handler": "0xfd0732Dc9E303f09fCEf3a7388Ad10A83459Ec99",
        "multisend": "0x38869bf66a61cF6bDB996A6aE40D5853Fd43B526",
        "multisend_call_only": "0x9641d764fc13c8B624c04430C7356C1C7C8102e2",
        "simulate_tx_accessor": "0x3d4BA2E0884aa488718476ca2FB8Efc291A46199",
    },
    "1.5.0": {
        "proxy_factory": "0x14F2982D601c9458F93bd70B218933A6f8165e7b",
        "singleton": "0xFf51A5898e281Db6DfC7855790607438dF2ca44b",
        "singleton_l2": "0xEdd160fEBBD92E350D4D398fb636302fccd67C7e",
        "fallback_handler": "0x3EfCBb83A4A7AfcB4F68D501E2c2203a38be77f4",
        "multisend": "0x218543288004CD07832472D464648173c77D7eB7",
        "multisend_call_only": "0xA83c336B20401Af773B6219BA5027174338D1836",
        "simulate_tx_accessor": "0x07EfA797c55B5DdE3698d876b277aBb6B893654C",
    },
}

PROXY_CREATION_CODE: dict[str, HexBytes] = {
    "1.4.1": SAFE_V141_PROXY_CREATION_CODE,
}

__all__ = [
    "DEFAULT_SAFE_VERSION",
    "DEPLOYMENTS",
    "DOMAIN_TYPEHASH",
    "EIP1271_MAGIC_VALUE",
    "FALLBACK_HANDLER_STORAGE_SLOT",
    "GUARD_STORAGE_SLOT",
    "LEGACY_DOMAIN_TYPEHASH",
    "LEGACY_EIP1271_MAGIC_VALUE",
    "LEGACY_SAFE_TX_TYPEHASH",
    "MODULE_GUARD_STORAGE_SLOT",
    "PROXY_CREATION_CODE",
    "SAFE_MSG_TYPEHASH",
    "SAFE_SETUP_TOPIC",
    "SAFE_TX_TYPEHASH",
    "SENTINEL",
    "SafeStorageSlot",
    "ZERO_ADDRESS",
]
