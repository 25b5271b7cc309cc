"""Integration tests for the complete pipeline."""

import pytest

from imaging_service.core.exceptions import ErrorCategory, PipelineAbortedError
from imaging_service.core.factories import PipelineServiceFactory
from imaging_service.core.image_utils import decode_image
from imaging_service.core.models import ServiceConfig
from imaging_service.core.services import parse_pipeline
from imaging_service.testing.fakes import (
    FakeHttpSession,
    FakeLogger,
    create_test_image,
    fake_resolver_with_public_hosts,
)


@pytest.fixture
def service():
    return PipelineServiceFactory.create_service(
        config=ServiceConfig(cache_enabled=False),
        resolver=fake_resolver_with_public_hosts(),
        http_session=FakeHttpSession(),
        logger=FakeLogger(),
    )


def run(service, image_bytes, operations):
    output = service.process_upload(image_bytes, parse_pipeline(operations))
    image, fmt = decode_image(output.body)
    return output, image, fmt


class TestPipelineIntegration:
    """Integration tests for the complete processing pipeline."""

    def test_empty_pipeline_returns_equivalent_image(self, service):
        """An empty pipeline keeps size, bands and format."""
        data = create_test_image(64, 48, mode="RGBA")
        output, image, fmt = run(service, data, "[]")

        original, _ = decode_image(data)
        assert image.size == original.size
        assert image.getbands() == original.getbands()
        assert fmt.extension == "png"
        assert output.summary.steps == []

    def test_resize_then_grayscale(self, service):
        output, image, _ = run(
            service,
            create_test_image(200, 100),
            '[{"operation": "resize", "params": {"width": 50, "height": 50}},'
            ' {"operation": "grayscale"}]',
        )
        assert image.size == (50, 50)
        assert image.mode == "L"
        assert [s.applied for s in output.summary.steps] == [True, True]

    def test_ignored_failure_is_isolated(self, service):
        """A failing ignorable step leaves the rest of the pipeline intact."""
        data = create_test_image(200, 100)
        with_failure, image_a, _ = run(
            service,
            data,
            '[{"operation": "resize", "params": {"width": 50, "height": 50}},'
            ' {"operation": "crop", "params": {"x": 500, "y": 500, "width": 10, "height": 10},'
            '  "ignoreFailure": true},'
            ' {"operation": "grayscale"}]',
        )
        _, image_b, _ = run(
            service,
            data,
            '[{"operation": "resize", "params": {"width": 50, "height": 50}},'
            ' {"operation": "grayscale"}]',
        )
        assert image_a.tobytes() == image_b.tobytes()
        assert with_failure.summary.steps[1].ignored is True

    def test_ignored_invalid_crop_then_blur(self, service):
        output, image, _ = run(
            service,
            create_test_image(100, 100),
            '[{"operation": "crop", "params": {"x": 0, "y": 0, "width": 0, "height": 50},'
            '  "ignoreFailure": true},'
            ' {"operation": "blur", "params": {"sigma": 2}}]',
        )
        assert image.size == (100, 100)
        assert [s.ignored for s in output.summary.steps] == [True, False]

    def test_invalid_params_abort(self, service):
        with pytest.raises(PipelineAbortedError) as excinfo:
            run(
                service,
                create_test_image(50, 50),
                '[{"operation": "resize", "params": {"width": -50, "height": 50}}]',
            )
        body = excinfo.value.to_dict()
        assert excinfo.value.category is ErrorCategory.VALIDATION
        assert body["operation"] == "resize"
        assert body["field"] == "width"
        assert body["step"] == 0

    def test_zero_width_crop_aborts(self, service):
        with pytest.raises(PipelineAbortedError) as excinfo:
            run(
                service,
                create_test_image(50, 50),
                '[{"operation": "crop", "params": {"x": 0, "y": 0, "width": 0, "height": 50}}]',
            )
        assert excinfo.value.to_dict()["field"] == "width"

    def test_last_convert_decides_format(self, service):
        output, _, fmt = run(
            service,
            create_test_image(40, 40),
            '[{"operation": "convert", "params": {"format": "png"}},'
            ' {"operation": "convert", "params": {"format": "webp"}}]',
        )
        assert fmt.extension == "webp"
        assert output.media_type == "image/webp"

    def test_rotate_swaps_dimensions(self, service):
        _, image, _ = run(
            service,
            create_test_image(120, 60),
            '[{"operation": "rotate", "params": {"degrees": 90}}]',
        )
        assert image.size == (60, 120)

    def test_rotate_out_of_range_rejected(self, service):
        with pytest.raises(PipelineAbortedError) as excinfo:
            run(
                service,
                create_test_image(20, 20),
                '[{"operation": "rotate", "params": {"degrees": 400}}]',
            )
        assert excinfo.value.to_dict()["field"] == "degrees"

    def test_jpeg_input_with_watermark(self, service):
        output, image, fmt = run(
            service,
            create_test_image(300, 200, format="JPEG"),
            '[{"operation": "watermark", "params": {"text": "sample", "position": "topLeft"}},'
            ' {"operation": "sharpen"},'
            ' {"operation": "adjustContrast", "params": {"value": 20}}]',
        )
        assert fmt.extension == "jpg"
        assert image.size == (300, 200)
        assert len(output.summary.steps) == 3

    def test_every_operation_in_one_pipeline(self, service):
        """All built-in operations chain on one image."""
        operations = """[
            {"operation": "autorotate"},
            {"operation": "enlarge", "params": {"width": 300, "height": 300}},
            {"operation": "extract", "params": {"x": 10, "y": 10, "width": 250, "height": 250}},
            {"operation": "smartCrop", "params": {"width": 200, "height": 200}},
            {"operation": "zoom", "params": {"factor": 0.5}},
            {"operation": "thumbnail", "params": {"width": 80, "height": 80}},
            {"operation": "flip"},
            {"operation": "flop"},
            {"operation": "blur", "params": {"sigma": 1.5}},
            {"operation": "adjustBrightness", "params": {"value": -20}},
            {"operation": "watermarkImage", "params": {"opacity": 0.3}},
            {"operation": "convert", "params": {"format": "gif"}}
        ]"""
        output, image, fmt = run(service, create_test_image(100, 100), operations)
        assert image.size == (80, 80)
        assert fmt.extension == "gif"
        assert all(step.applied for step in output.summary.steps)
