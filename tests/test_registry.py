"""Tests for the provider registry."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest

from multistore import OperationStatus, ProfilesConfig, ProviderProfile, ProviderRegistry, ProviderType
from multistore.providers import LocalProvider, MemoryProvider

if TYPE_CHECKING:
    from pathlib import Path


def _make_config(root: str) -> ProfilesConfig:
    return ProfilesConfig(
        profiles={
            "files": ProviderProfile(id="files", provider="local", options={"root": root}),
            "scratch": ProviderProfile(id="scratch", provider="memory", options={"bucket": "scratch"}),
            "share": ProviderProfile(id="share", provider="smb"),
        }
    )


# -- Construction --


def test_registry_validates_on_construction() -> None:
    bad = ProfilesConfig(profiles={"a": ProviderProfile(id="b", provider="local")})
    with pytest.raises(ValueError, match="different id"):
        ProviderRegistry(bad)


def test_empty_registry_has_no_types() -> None:
    assert ProviderRegistry().registered_types() == []


def test_with_builtins() -> None:
    reg = ProviderRegistry.with_builtins()
    assert reg.registered_types() == ["ftp", "gcs", "local", "memory", "s3", "sftp"]
    for tag in ("smb", "gdrive", "nfs"):
        assert not reg.is_registered(tag)


def test_repr() -> None:
    assert repr(ProviderRegistry()) == "ProviderRegistry(types=[], profiles=[])"


# -- Registration --


def test_register_and_unregister() -> None:
    reg = ProviderRegistry()
    reg.register(ProviderType.MEMORY, MemoryProvider)
    assert reg.is_registered("memory")
    assert reg.is_registered(ProviderType.MEMORY)
    reg.unregister("memory")
    assert not reg.is_registered("memory")
    reg.unregister("memory")


def test_register_replaces_factory() -> None:
    reg = ProviderRegistry()
    created: list[str] = []

    def factory(**options: Any) -> MemoryProvider:
        created.append("second")
        return MemoryProvider(**options)

    reg.register("memory", MemoryProvider)
    reg.register("memory", factory)
    assert reg.create_provider(ProviderProfile(id="m", provider="memory")).ok
    assert created == ["second"]


def test_custom_type_tag() -> None:
    reg = ProviderRegistry()
    reg.register("archive", lambda **options: MemoryProvider("archive"))
    result = reg.create_provider(ProviderProfile(id="a", provider="archive"))
    assert result.ok
    assert isinstance(result.data, MemoryProvider)


# -- create_provider --


def test_create_provider_passes_options(tmp_path: Path) -> None:
    reg = ProviderRegistry.with_builtins()
    result = reg.create_provider(ProviderProfile(id="f", provider="local", options={"root": str(tmp_path)}))
    assert result.ok
    assert isinstance(result.data, LocalProvider)
    assert result.data.root == tmp_path.resolve()


def test_create_unregistered_type_is_unimplemented() -> None:
    reg = ProviderRegistry.with_builtins()
    result = reg.create_provider(ProviderProfile(id="s", provider="smb"))
    assert result.status is OperationStatus.UNIMPLEMENTED
    assert "No provider registered for type 'smb'" in result.message
    assert "memory" in result.message


def test_create_with_bad_options_raises() -> None:
    reg = ProviderRegistry.with_builtins()
    with pytest.raises(ValueError, match="Invalid options for profile 'm'"):
        reg.create_provider(ProviderProfile(id="m", provider="memory", options={"nonsense": 1}))


def test_missing_dependency_is_reported() -> None:
    def factory(**options: Any) -> MemoryProvider:
        raise ImportError("No module named 's3fs'", name="s3fs")

    reg = ProviderRegistry()
    reg.register("s3", factory)
    result = reg.create_provider(ProviderProfile(id="s", provider="s3"))
    assert result.status is OperationStatus.ERROR
    assert result.error is not None
    assert result.error.code == "MISSING_DEPENDENCY"
    assert "pip install multistore[s3]" in result.message


def test_sftp_host_key_policy_from_string() -> None:
    sftp = pytest.importorskip("multistore.providers._sftp")
    reg = ProviderRegistry.with_builtins()
    profile = ProviderProfile(id="s", provider="sftp", options={"host": "example.com", "host_key_policy": "auto"})
    result = reg.create_provider(profile)
    assert result.ok
    assert result.data._host_key_policy is sftp.HostKeyPolicy.AUTO_ADD  # type: ignore[union-attr]


# -- Configured providers --


def test_get_provider_is_lazy_and_cached(tmp_path: Path) -> None:
    reg = ProviderRegistry.with_builtins(_make_config(str(tmp_path)))
    assert reg._providers == {}
    first = reg.get_provider("scratch")
    second = reg.get_provider("scratch")
    assert first.ok
    assert first.data is second.data
    assert len(reg._providers) == 1


def test_get_provider_unknown_profile(tmp_path: Path) -> None:
    reg = ProviderRegistry.with_builtins(_make_config(str(tmp_path)))
    with pytest.raises(KeyError, match="unknown_profile"):
        reg.get_provider("unknown_profile")


def test_get_provider_unregistered_type_not_cached(tmp_path: Path) -> None:
    reg = ProviderRegistry.with_builtins(_make_config(str(tmp_path)))
    assert reg.get_provider("share").status is OperationStatus.UNIMPLEMENTED
    assert "share" not in reg._providers


def test_close_closes_providers(tmp_path: Path) -> None:
    closed: list[str] = []

    class Tracking(MemoryProvider):
        def close(self) -> None:
            closed.append(self._bucket or "")

    reg = ProviderRegistry(_make_config(str(tmp_path)))
    reg.register("memory", Tracking)
    with reg:
        reg.get_provider("scratch")
    assert closed == ["scratch"]
    assert reg._providers == {}
