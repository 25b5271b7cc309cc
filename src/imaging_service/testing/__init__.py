"""Testing utilities and fakes for the imaging service."""

from .fakes import (
    FakeS3Client,
    FakeLogger,
    FakeResolver,
    FakeResponse,
    FakeHttpSession,
    S3Object,
    create_test_image,
    create_test_pil_image,
    fake_resolver_with_public_hosts,
)

__all__ = [
    "FakeS3Client",
    "FakeLogger",
    "FakeResolver",
    "FakeResponse",
    "FakeHttpSession",
    "S3Object",
    "create_test_image",
    "create_test_pil_image",
    "fake_resolver_with_public_hosts",
]
