from ape.api import PluginConfig
from pydantic import Field
from pydantic_settings import SettingsConfigDict

from .constants import DEFAULT_SAFE_VERSION


class SafeCoreConfig(PluginConfig):
    module_page_size: int = Field(default=100, gt=0)
    """Number of modules to request per ``getModulesPaginated`` call."""

    default_version: str = DEFAULT_SAFE_VERSION
    """Safe version whose canonical deployments are used when none is given."""

    allow_delegatecall: bool = False
    """Allow building ``DELEGATECALL`` transactions without passing ``unsafe_delegatecall=True``."""

    model_config = SettingsConfigDict(env_prefix="APE_SAFE_CORE_")
