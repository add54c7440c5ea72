from dataclasses import dataclass, field
from typing import Any, Callable, List, Mapping, Optional

from pydantic import ValidationError

from figma_atomic.common.prompt_loader import render_prompt
from figma_atomic.common.protocol import DecodeFailure, DecodeOutcome
from figma_atomic.common.utils import ProgressLogger
from schemas import StageError


@dataclass
class StageResult:
    """
    Outcome of one stage: ``value`` is always usable (the neutral value on failure),
    ``error`` is set when the stage failed in a recoverable way.
    """
    stage: str
    value: Any
    error: Optional[StageError] = None
    raw_response: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None


def stage_failure(stage: str, kind: str, message: str, empty: Any, logger: Optional[ProgressLogger] = None,
                  raw_response: Optional[str] = None, warnings: Optional[List[str]] = None) -> StageResult:
    if logger is not None:
        logger.warn(stage, f"{kind} failure: {message}", kind=kind)
    else:
        print(f"[{stage}] warning: {kind} failure: {message}")
    return StageResult(stage, empty, StageError(stage=stage, kind=kind, message=message),
                       raw_response=raw_response, warnings=list(warnings or []))


def run_completion_stage(stage: str, template: str, variables: Mapping[str, Any],
                         complete: Callable[..., str], decoder: Callable[[str], DecodeOutcome],
                         empty: Any, logger: Optional[ProgressLogger] = None,
                         build: Optional[Callable[[Any], Any]] = None,
                         max_tokens: Optional[int] = None) -> StageResult:
    """
    Render ``template`` with ``variables``, call the completion service once and decode the reply.

    ``build`` turns the decoded value into the stage's typed value; anything it raises is a
    validation failure, anything the decoder raises is a decode failure. No failure is retried
    or re-raised.
    """
    prompt = render_prompt(template, variables)
    try:
        raw = complete(prompt, max_tokens=max_tokens, stage_id=stage)
    except Exception as exc:  # completion service errors are stage-recoverable
        return stage_failure(stage, "completion", f"{type(exc).__name__}: {exc}", empty, logger)

    try:
        outcome = decoder(raw)
    except Exception as exc:  # decoder errors count as decode failures
        return stage_failure(stage, "decode", f"{type(exc).__name__}: {exc}", empty, logger, raw_response=raw)
    warnings = list(outcome.warnings)
    for warning in warnings:
        if logger is not None:
            logger.warn(stage, warning)
    if isinstance(outcome, DecodeFailure):
        return stage_failure(stage, "decode", outcome.reason, empty, logger, raw_response=raw, warnings=warnings)

    value = outcome.value
    if build is not None:
        try:
            value = build(value)
        except (ValidationError, ValueError) as exc:
            return stage_failure(stage, "validation", (str(exc) or type(exc).__name__).splitlines()[0], empty, logger,
                                 raw_response=raw, warnings=warnings)
        except Exception as exc:
            return stage_failure(stage, "validation", f"{type(exc).__name__}: {exc}", empty, logger,
                                 raw_response=raw, warnings=warnings)
    return StageResult(stage, value, raw_response=raw, warnings=warnings)
