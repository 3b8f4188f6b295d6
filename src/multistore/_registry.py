"""Provider registry: maps provider type tags to factories and manages instances."""

from __future__ import annotations

import enum
import logging
from typing import TYPE_CHECKING, Any

from multistore._config import ProfilesConfig, ProviderProfile
from multistore._result import OperationResult

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

    from multistore._provider import Provider

    ProviderFactory = Callable[..., Provider]

log = logging.getLogger(__name__)


class ProviderType(enum.Enum):
    """Every known provider tag, including ones without a built-in implementation."""

    LOCAL = "local"
    MEMORY = "memory"
    S3 = "s3"
    GCS = "gcs"
    SFTP = "sftp"
    FTP = "ftp"
    SMB = "smb"
    GDRIVE = "gdrive"
    NFS = "nfs"


def _tag(provider_type: ProviderType | str) -> str:
    return provider_type.value if isinstance(provider_type, ProviderType) else str(provider_type)


# region: built-in factories
def _local(**options: Any) -> Provider:
    from multistore.providers._local import LocalProvider

    return LocalProvider(**options)


def _memory(**options: Any) -> Provider:
    from multistore.providers._memory import MemoryProvider

    return MemoryProvider(**options)


def _s3(**options: Any) -> Provider:
    from multistore.providers._s3 import S3Provider

    return S3Provider(**options)


def _gcs(**options: Any) -> Provider:
    from multistore.providers._gcs import GCSProvider

    return GCSProvider(**options)


def _sftp(**options: Any) -> Provider:
    from multistore.providers._sftp import HostKeyPolicy, SFTPProvider

    policy = options.get("host_key_policy")
    if isinstance(policy, str):
        options["host_key_policy"] = HostKeyPolicy(policy)
    return SFTPProvider(**options)


def _ftp(**options: Any) -> Provider:
    from multistore.providers._ftp import FTPProvider

    return FTPProvider(**options)


_BUILTINS: dict[ProviderType, ProviderFactory] = {
    ProviderType.LOCAL: _local,
    ProviderType.MEMORY: _memory,
    ProviderType.S3: _s3,
    ProviderType.GCS: _gcs,
    ProviderType.SFTP: _sftp,
    ProviderType.FTP: _ftp,
}

# Optional extra that installs the client library for a provider type.
_EXTRAS = {"s3": "s3", "gcs": "gcs", "sftp": "sftp"}

# endregion


class ProviderRegistry:
    """Maps provider type tags to factories and caches configured providers.

    Each registry is independent; there is no process-wide instance.

    :param config: Optional profiles. Validates immediately.
    :raises ValueError: If config is invalid.
    """

    def __init__(self, config: ProfilesConfig | None = None) -> None:
        self._factories: dict[str, ProviderFactory] = {}
        self._config = config or ProfilesConfig()
        self._config.validate()
        self._providers: dict[str, Provider] = {}

    @classmethod
    def with_builtins(cls, config: ProfilesConfig | None = None) -> ProviderRegistry:
        """Registry with every built-in provider type registered.

        Client libraries are imported when a provider is created, so a
        missing optional dependency only affects that provider type.
        """
        registry = cls(config)
        for provider_type, factory in _BUILTINS.items():
            registry.register(provider_type, factory)
        return registry

    def __repr__(self) -> str:
        return f"ProviderRegistry(types={self.registered_types()!r}, profiles={sorted(self._config.profiles)!r})"

    # region: factories
    def register(self, provider_type: ProviderType | str, factory: ProviderFactory) -> None:
        """Register (or replace) the factory for a provider type.

        :param provider_type: The type tag (e.g. ``"local"``).
        :param factory: Called with the profile options as keyword arguments.
        """
        self._factories[_tag(provider_type)] = factory

    def unregister(self, provider_type: ProviderType | str) -> None:
        self._factories.pop(_tag(provider_type), None)

    def is_registered(self, provider_type: ProviderType | str) -> bool:
        return _tag(provider_type) in self._factories

    def registered_types(self) -> list[str]:
        return sorted(self._factories)

    def create_provider(self, profile: ProviderProfile) -> OperationResult[Provider]:
        """Build a new provider for ``profile``.

        :returns: The provider, or ``UNIMPLEMENTED`` when no factory is
            registered for the profile's type.
        :raises ValueError: If the options do not match the provider's constructor.
        """
        factory = self._factories.get(profile.provider)
        if factory is None:
            return OperationResult.unimplemented(
                "create_provider",
                f"No provider registered for type '{profile.provider}'. "
                f"Registered types: {self.registered_types()}",
            )
        try:
            provider = factory(**profile.options)
        except TypeError as exc:
            raise ValueError(
                f"Invalid options for profile '{profile.id}' (provider={profile.provider!r}): {exc}. "
                f"Provided options: {sorted(profile.options)}"
            ) from exc
        except ImportError as exc:
            extra = _EXTRAS.get(profile.provider, profile.provider)
            return OperationResult.failure(
                f"Provider '{profile.provider}' needs an optional dependency ({exc.name or exc}). "
                f"Install it with: pip install multistore[{extra}]",
                code="MISSING_DEPENDENCY",
            )
        log.debug("Created %s provider for profile %s", profile.provider, profile.id)
        return OperationResult.success(provider)

    # endregion

    # region: configured providers
    def get_provider(self, profile_id: str) -> OperationResult[Provider]:
        """Lazily create and cache the provider for a configured profile.

        :raises KeyError: If no profile with this id exists.
        """
        if profile_id in self._providers:
            return OperationResult.success(self._providers[profile_id])
        result = self.create_provider(self._config.get(profile_id))
        if result.ok:
            self._providers[profile_id] = result.data  # type: ignore[assignment]
        return result

    def close(self) -> None:
        """Close all cached providers."""
        for provider in self._providers.values():
            provider.close()
        self._providers.clear()

    def __enter__(self) -> ProviderRegistry:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    # endregion
