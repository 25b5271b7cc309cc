"""Tests for fake implementations to ensure they work correctly."""

import pytest
from botocore.exceptions import ClientError

from imaging_service.testing.fakes import (
    FakeHttpSession,
    FakeLogger,
    FakeResolver,
    FakeResponse,
    FakeS3Client,
    create_test_image,
    create_test_pil_image,
)


class TestFakeS3Client:
    """Tests for FakeS3Client to ensure it behaves correctly."""

    def test_put_then_get(self):
        """Test object storage and retrieval."""
        client = FakeS3Client()
        client.create_bucket("test-bucket")

        client.put_object(Bucket="test-bucket", Key="a", Body=b"data", ContentType="image/png")
        response = client.get_object(Bucket="test-bucket", Key="a")

        assert response["Body"].read() == b"data"
        assert response["ContentType"] == "image/png"
        assert response["ContentLength"] == 4
        assert client.operation_count == 2

    def test_get_object_not_found(self):
        """Test getting nonexistent object."""
        client = FakeS3Client()
        client.create_bucket("test-bucket")

        with pytest.raises(ClientError) as excinfo:
            client.get_object(Bucket="test-bucket", Key="missing")
        assert excinfo.value.response["Error"]["Code"] == "NoSuchKey"

    def test_missing_bucket(self):
        with pytest.raises(ClientError) as excinfo:
            FakeS3Client().put_object(Bucket="nope", Key="a", Body=b"", ContentType="x")
        assert excinfo.value.response["Error"]["Code"] == "NoSuchBucket"

    def test_fail_next(self):
        """Queued failures are raised once each, in order."""
        client = FakeS3Client()
        client.create_bucket("b")
        client.fail_next("SlowDown")

        with pytest.raises(ClientError):
            client.put_object(Bucket="b", Key="a", Body=b"", ContentType="x")
        client.put_object(Bucket="b", Key="a", Body=b"", ContentType="x")


class TestFakeNetwork:
    """Tests for the resolver and HTTP fakes."""

    def test_resolver_records_calls(self):
        resolver = FakeResolver({"example.com": ["93.184.216.34"]})
        assert resolver("example.com", 443) == ["93.184.216.34"]
        assert resolver.calls == [("example.com", 443)]
        with pytest.raises(OSError):
            resolver("unknown.test", 80)

    def test_response_declares_length(self):
        response = FakeResponse(body=b"abc")
        assert response.headers["Content-Length"] == "3"
        assert b"".join(response.iter_content(chunk_size=2)) == b"abc"
        assert response.bytes_read == 3

    def test_session_default_404(self):
        session = FakeHttpSession()
        assert session.get("https://example.com/x").status_code == 404
        assert session.requests[0]["url"] == "https://example.com/x"

    def test_session_raises_configured_exception(self):
        session = FakeHttpSession({"https://example.com/x": TimeoutError("slow")})
        with pytest.raises(TimeoutError):
            session.get("https://example.com/x")


class TestFakeLogger:
    """Tests for FakeLogger."""

    def test_levels(self):
        logger = FakeLogger()
        logger.info("first")
        logger.error("second", step=1)

        assert len(logger.get_logs()) == 2
        assert logger.get_logs("ERROR")[0]["step"] == 1
        logger.clear_logs()
        assert logger.get_logs() == []


@pytest.mark.parametrize("mode", ["RGB", "RGBA", "L"])
def test_create_test_pil_image(mode):
    image = create_test_pil_image(30, 20, mode)
    assert image.size == (30, 20)
    assert image.mode == mode


def test_create_test_image_bytes():
    assert create_test_image(10, 10, format="JPEG").startswith(b"\xff\xd8")
