"""
Generation request handler.

One call runs: config check -> authenticate -> resolve calibration -> derive
effective parameters -> start audit -> upstream call with retry -> decode ->
score -> persist experiment -> analytics upsert -> completion audit.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config import Settings, missing_generation_settings
from models.calibration import Calibration
from models.experiment import Experiment
from pipeline.types import PipelineRequest, PipelineResponse
from services.analytics import upsert_analytics_summary
from services.audit_log import AuditEventType, AuditLogger, current_user_id, generate_correlation_id
from services.calibration import calibration_ranges, get_calibration_for_user, midpoint_parameters
from services.errors import AuthError, ConfigError, PersistenceError, PipelineError, ValidationError
from services.llm_client import UpstreamClient
from services.metrics import calculate_metrics
from services.schemas import EffectiveParameters, GenerateRequest, GenerationResponse, ResponseMetrics
from services.session_token import resolve_user_id

logger = logging.getLogger(__name__)


def empty_text_placeholder(model: str) -> str:
    return f'No text returned by model "{model}".'


def _elapsed_ms(started: float, clock: Callable[[], float]) -> int:
    return int((clock() - started) * 1000)


class GenerationHandler:
    """Pipeline handler producing one persisted experiment per prompt."""

    def __init__(
        self,
        *,
        config: Settings,
        session_maker: async_sessionmaker[AsyncSession],
        upstream: UpstreamClient,
        audit: AuditLogger,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.session_maker = session_maker
        self.upstream = upstream
        self.audit = audit
        self.clock = clock

    async def __call__(self, request: PipelineRequest) -> PipelineResponse:
        started = self.clock()
        self._check_config()
        user_id = self._authenticate(request)

        token = current_user_id.set(user_id)
        try:
            return await self._generate(request, user_id, started)
        finally:
            current_user_id.reset(token)

    def _check_config(self) -> None:
        missing = missing_generation_settings(self.config)
        if missing:
            logger.error("Generation disabled; missing configuration: %s", ", ".join(missing))
            raise ConfigError("Server configuration error", data={"missing": missing})

    def _authenticate(self, request: PipelineRequest) -> str:
        authorization = request.header("authorization")
        if not authorization:
            raise AuthError("Missing authorization header")
        try:
            return resolve_user_id(authorization, self.config.STORAGE_ANON_KEY)
        except ValueError as exc:
            logger.info("Rejected bearer token: %s", exc)
            raise AuthError("Not authenticated") from exc

    @staticmethod
    def _parse_body(body: Any) -> GenerateRequest:
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object")
        try:
            parsed = GenerateRequest.model_validate(body)
        except PydanticValidationError as exc:
            raise ValidationError(
                "Invalid generation request",
                data={"errors": exc.errors(include_url=False, include_context=False)},
            ) from exc
        if not parsed.prompt.strip():
            raise ValidationError("Prompt is required")
        return parsed

    async def _generate(self, request: PipelineRequest, user_id: str, started: float) -> PipelineResponse:
        payload = self._parse_body(request.body)
        correlation_id: Optional[str] = None
        try:
            async with self.session_maker() as db:
                calibration = await get_calibration_for_user(user_id, db, payload.calibration_id)
            if calibration is None:
                raise ValidationError("No calibration found. Please complete calibration first.")

            parameters = payload.parameters or midpoint_parameters(calibration_ranges(calibration))
            correlation_id = generate_correlation_id(prefix=user_id)
            await self.audit.log_event(
                AuditEventType.LLM_STREAM_STARTED,
                {
                    "correlation_id": correlation_id,
                    "calibration_id": calibration.id,
                    "event_scope": "llm",
                    "event_severity": "info",
                },
            )

            async def _report_upstream_event(event_type: str, data: Dict[str, Any]) -> None:
                await self.audit.log_event(
                    event_type,
                    {**data, "correlation_id": correlation_id, "event_scope": "llm"},
                )

            llm_started = self.clock()
            result = await self.upstream.generate(payload.prompt, parameters, on_event=_report_upstream_event)
            latency_ms = _elapsed_ms(llm_started, self.clock)

            text = result.text if result.text.strip() else empty_text_placeholder(self.upstream.model)
            metrics = calculate_metrics(text)
            response = GenerationResponse(
                id=str(uuid.uuid4()),
                text=text,
                parameters=parameters,
                metrics=metrics,
                timestamp=int(self.clock() * 1000),
                prompt=payload.prompt,
                latency_ms=latency_ms,
            )

            experiment = await self._persist(user_id, calibration, payload.prompt, parameters, response)
            await self._update_analytics(user_id, calibration.id, metrics)

            await self.audit.log_event(
                AuditEventType.EXPERIMENT_GENERATED,
                {
                    "experiment_id": experiment["id"],
                    "calibration_id": calibration.id,
                    "latency_ms": latency_ms,
                    "tokens_used": parameters.max_tokens,
                    "model": self.upstream.model,
                    "attempts": result.attempts,
                    "correlation_id": correlation_id,
                    "event_scope": "llm",
                    "event_severity": "info",
                },
            )
            total_latency_ms = _elapsed_ms(started, self.clock)
            await self.audit.log_event(
                AuditEventType.LLM_STREAM_COMPLETED,
                {
                    "correlation_id": correlation_id,
                    "total_latency_ms": total_latency_ms,
                    "event_scope": "llm",
                    "event_severity": "info",
                },
            )
            logger.info(
                "experiment_generated user=%s experiment=%s calibration=%s latency_ms=%s",
                user_id,
                experiment["id"],
                calibration.id,
                latency_ms,
            )
            return PipelineResponse.ok(
                {
                    "experiment": experiment,
                    "response": text,
                    "metrics": metrics.model_dump(by_alias=True),
                    "latency_ms": latency_ms,
                    "total_latency_ms": _elapsed_ms(started, self.clock),
                },
                message="Experiment generated successfully",
            )
        except PipelineError:
            raise
        except Exception as exc:
            logger.exception("Generate endpoint error for user %s", user_id)
            await self.audit.log_event(
                AuditEventType.LLM_REQUEST_ERROR,
                {
                    "correlation_id": correlation_id,
                    "error": str(exc),
                    "error_type": exc.__class__.__name__,
                    "event_scope": "llm",
                    "event_severity": "critical",
                },
            )
            raise

    async def _persist(
        self,
        user_id: str,
        calibration: Calibration,
        prompt: str,
        parameters: EffectiveParameters,
        response: GenerationResponse,
    ) -> Dict[str, Any]:
        try:
            async with self.session_maker() as db:
                experiment = Experiment(
                    id=str(uuid.uuid4()),
                    user_id=user_id,
                    calibration_id=calibration.id,
                    prompt=prompt,
                    parameters=parameters.model_dump(by_alias=True),
                    responses=[response.model_dump(by_alias=True)],
                    saved=True,
                    discarded=False,
                )
                db.add(experiment)
                await db.commit()
                return experiment.to_dict()
        except Exception as exc:
            logger.exception("Failed to save experiment for user %s", user_id)
            raise PersistenceError("Failed to save experiment", data={"error": str(exc)}) from exc

    async def _update_analytics(self, user_id: str, calibration_id: str, metrics: ResponseMetrics) -> None:
        try:
            async with self.session_maker() as db:
                await upsert_analytics_summary(db, user_id=user_id, calibration_id=calibration_id, metrics=metrics)
        except Exception as exc:
            logger.warning("Analytics summary update skipped for user=%s calibration=%s: %s", user_id, calibration_id, exc)
