import pytest
from ape.types import AddressType
from eth_keys import keys

from ape_safe_core.chain import MockChainQuery
from ape_safe_core.config import SafeCoreConfig
from ape_safe_core.signatures import encode_signatures
from ape_safe_core.transactions import SafeTxBuilder
from ape_safe_core.utils import to_address

SAFE_ADDRESS = "0x5afe5afe5afe5afe5afe5afe5afe5afe5afe5afe"


class KeySigner:
    """Signs Safe hashes with a raw private key, like an unlocked EOA would."""

    def __init__(self, private_key: bytes):
        self.private_key = keys.PrivateKey(private_key)

    def __repr__(self) -> str:
        return f"<KeySigner {self.address}>"

    @property
    def address(self) -> AddressType:
        return to_address(self.private_key.public_key.to_canonical_address())

    def sign(self, msghash: bytes) -> bytes:
        # NOTE: `v` is the bare recovery id (0/1)
        return self.private_key.sign_msg_hash(bytes(msghash)).to_bytes()


class DecliningSigner(KeySigner):
    def sign(self, msghash: bytes) -> None:
        return None


@pytest.fixture(scope="session")
def signers():
    return [KeySigner((i + 1).to_bytes(32, "big")) for i in range(10)]


@pytest.fixture(scope="session")
def outsider(signers):
    return signers[9]


@pytest.fixture(scope="session", params=["1/1", "1/2", "2/2", "2/3", "3/3"])
def MULTISIG_TYPE(request):
    # Param is `M/N`, but encoded as a string for repr in pytest
    return request.param.split("/")


@pytest.fixture(scope="session")
def THRESHOLD(MULTISIG_TYPE):
    M, _ = MULTISIG_TYPE
    return int(M)


@pytest.fixture(scope="session")
def OWNERS(signers, MULTISIG_TYPE):
    _, N = MULTISIG_TYPE
    return signers[: int(N)]


@pytest.fixture
def mock_chain():
    return MockChainQuery()


@pytest.fixture
def config():
    return SafeCoreConfig()


@pytest.fixture
def safe(mock_chain, OWNERS, THRESHOLD):
    return mock_chain.add_safe(
        SAFE_ADDRESS, owners=[o.address for o in OWNERS], threshold=THRESHOLD
    )


@pytest.fixture
def builder(mock_chain, safe, config):
    return SafeTxBuilder(safe.address, chain=mock_chain, config=config)


@pytest.fixture
def exec_safe_tx(mock_chain, builder, OWNERS, THRESHOLD):
    def exec_safe_tx(safe_tx, signers=None):
        signers = OWNERS[:THRESHOLD] if signers is None else signers
        signatures = builder.get_signatures(safe_tx, signers)
        return mock_chain.execute_safe_tx(builder.address, safe_tx, encode_signatures(signatures))

    return exec_safe_tx


@pytest.fixture(scope="session")
def declining_signer():
    return DecliningSigner((42).to_bytes(32, "big"))
