from importlib import import_module
from typing import Any

from ape import plugins

from .config import SafeCoreConfig


@plugins.register(plugins.Config)
def config_class():
    return SafeCoreConfig


_EXPORTS = {
    "MultiSend": "ape_safe_core.multisend",
    "SafeFactory": "ape_safe_core.factory",
    "SafeModuleManager": "ape_safe_core.modules",
    "SafeStateReader": "ape_safe_core.state",
    "SafeTx": "ape_safe_core.types",
    "SafeTxBuilder": "ape_safe_core.transactions",
    "SignatureValidator": "ape_safe_core.validation",
}


def __getattr__(name: str) -> Any:
    if name in _EXPORTS:
        return getattr(import_module(_EXPORTS[name]), name)

    else:
        raise AttributeError(name)


__all__ = [
    "MultiSend",
    "SafeCoreConfig",
    "SafeFactory",
    "SafeModuleManager",
    "SafeStateReader",
    "SafeTx",
    "SafeTxBuilder",
    "SignatureValidator",
]
