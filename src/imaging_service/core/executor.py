"""Sequential pipeline executor."""

import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from PIL import Image

from .error_handling import translate_transform_errors
from .exceptions import (
    OperationError,
    PipelineAbortedError,
    PipelineTimeoutError,
    UnsupportedOperationError,
)
from .models import OperationSpec, StepOutcome
from .observability import LogContext, PipelineMetrics, StructuredLogger
from .protocols import LoggerProtocol
from .registry import OperationRegistry


@dataclass
class PipelineResult:
    """Final image and the per-step outcomes that produced it."""

    image: Image.Image
    steps: List[StepOutcome] = field(default_factory=list)

    @property
    def ignored(self) -> List[StepOutcome]:
        return [step for step in self.steps if step.ignored]


class PipelineExecutor:
    """Runs pipeline steps strictly in order against a single image chain.

    A failing step either aborts the run or, when the step sets
    ignoreFailure, is skipped with the image from before the step kept.
    """

    def __init__(
        self,
        registry: OperationRegistry,
        metrics: Optional[PipelineMetrics] = None,
        logger: Optional[LoggerProtocol] = None,
    ):
        self._registry = registry
        self._metrics = metrics
        self._logger = logger or StructuredLogger("executor")

    def execute(
        self,
        image: Image.Image,
        specs: Sequence[OperationSpec],
        deadline: Optional[float] = None,
        context: Optional[LogContext] = None,
    ) -> PipelineResult:
        """
        Apply every step to the image in submission order.

        Args:
            image: Decoded input image; never modified
            specs: Pipeline steps
            deadline: Optional time.monotonic() value after which no further
                step is started
            context: Log context of the enclosing request

        Returns:
            PipelineResult with the final image and one outcome per step

        Raises:
            PipelineAbortedError: A step without ignoreFailure failed
            PipelineTimeoutError: The deadline passed between steps
        """
        log_context = (context or LogContext(component="executor")).with_operation(
            "execute_pipeline"
        )
        current = image
        outcomes: List[StepOutcome] = []

        for index, spec in enumerate(specs):
            if deadline is not None and time.monotonic() > deadline:
                self._logger.warning(
                    "Deadline passed, discarding partial result", log_context, step=index
                )
                raise PipelineTimeoutError(
                    f"Pipeline exceeded its deadline before step {index} ({spec.operation})"
                )

            start_time = time.time()
            try:
                current = self._run_step(current, spec)
            except OperationError as error:
                error.at_step(index)
                end_time = time.time()
                outcome = StepOutcome(
                    index=index,
                    operation=spec.operation,
                    ignored=spec.ignore_failure,
                    error=str(error),
                    error_code=error.code,
                    duration=end_time - start_time,
                )
                outcomes.append(outcome)
                self._record(spec.operation, start_time, end_time, False, spec.ignore_failure, str(error))

                if not spec.ignore_failure:
                    self._logger.error(
                        f"Step {index} ({spec.operation}) failed, aborting: {error}",
                        log_context,
                        category=error.category.value,
                    )
                    raise PipelineAbortedError(index, spec.operation, error) from error

                self._logger.warning(
                    f"Step {index} ({spec.operation}) failed, ignoring: {error}",
                    log_context,
                    category=error.category.value,
                )
                continue
            except Exception as exc:
                self._record(spec.operation, start_time, time.time(), False, False, str(exc))
                self._logger.error(
                    f"Internal error in step {index} ({spec.operation}): {exc!r}",
                    log_context,
                )
                raise

            end_time = time.time()
            outcomes.append(
                StepOutcome(
                    index=index,
                    operation=spec.operation,
                    applied=True,
                    duration=end_time - start_time,
                )
            )
            self._record(spec.operation, start_time, end_time, True)
            self._logger.debug(
                f"Step {index} ({spec.operation}) applied",
                log_context,
                size=f"{current.width}x{current.height}",
                mode=current.mode,
            )

        return PipelineResult(image=current, steps=outcomes)

    def _run_step(self, image: Image.Image, spec: OperationSpec) -> Image.Image:
        handler = self._registry.lookup(spec.operation)
        if handler is None:
            raise UnsupportedOperationError(spec.operation)
        params = handler.parse(spec.params)
        with translate_transform_errors(spec.operation):
            return handler.apply(image, params)

    def _record(
        self,
        operation: str,
        start_time: float,
        end_time: float,
        success: bool,
        ignored: bool = False,
        error_message: Optional[str] = None,
    ) -> None:
        if self._metrics is not None:
            self._metrics.record_step(
                operation, start_time, end_time, success, ignored, error_message
            )
