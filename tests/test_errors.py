"""Tests for the provider error hierarchy."""

from __future__ import annotations

import pytest

from multistore._errors import (
    AlreadyExists,
    CancellationError,
    CapabilityNotSupported,
    ConnectionFailed,
    InvalidPath,
    NotFound,
    PermissionDenied,
    ProviderError,
)


class TestBaseError:
    """ProviderError carries optional path and provider."""

    def test_default_attributes(self) -> None:
        e = ProviderError("boom")
        assert e.path is None
        assert e.provider is None

    def test_with_attributes(self) -> None:
        e = ProviderError("boom", path="a/b.txt", provider="s3")
        assert e.path == "a/b.txt"
        assert e.provider == "s3"

    def test_str_includes_context(self) -> None:
        e = ProviderError("boom", path="a/b.txt", provider="s3")
        assert str(e) == "boom | path='a/b.txt' | provider='s3'"

    def test_str_message_only(self) -> None:
        assert str(ProviderError("boom")) == "boom"

    def test_message_property_excludes_context(self) -> None:
        e = ProviderError("boom", path="x")
        assert e.message == "boom"

    def test_repr(self) -> None:
        e = NotFound("missing", path="x.txt")
        assert repr(e) == "NotFound('missing', path='x.txt')"


@pytest.mark.parametrize(
    "cls",
    [NotFound, AlreadyExists, PermissionDenied, InvalidPath, ConnectionFailed, CancellationError, CapabilityNotSupported],
)
def test_subclasses_share_base(cls: type[ProviderError]) -> None:
    assert issubclass(cls, ProviderError)
    e = cls("msg", path="p")
    assert e.path == "p"


class TestCancellationError:
    def test_default_message(self) -> None:
        assert CancellationError().message == "Operation was cancelled"


class TestCapabilityNotSupported:
    """CapabilityNotSupported carries the capability name."""

    def test_capability_attribute(self) -> None:
        e = CapabilityNotSupported("nope", capability="presigned_urls")
        assert e.capability == "presigned_urls"

    def test_str_includes_capability(self) -> None:
        e = CapabilityNotSupported("nope", capability="symlinks")
        assert str(e) == "nope | capability='symlinks'"

    def test_str_capability_only(self) -> None:
        e = CapabilityNotSupported(capability="symlinks")
        assert str(e) == "capability='symlinks'"

    def test_repr(self) -> None:
        e = CapabilityNotSupported("nope", provider="ftp", capability="copy")
        assert repr(e) == "CapabilityNotSupported('nope', provider='ftp', capability='copy')"
