"""
FieldMapper Mapping Orchestrator

Entry point of the suggestion engine. Validates a request, decides whether
to ask the language model, falls back to rule-based ranking whenever the
model is unavailable or unusable, and assembles the response.

States:
    RECEIVED -> AI_ATTEMPTED -> RESPONDED
    RECEIVED -> AI_SKIPPED   -> RESPONDED
    RECEIVED -> RESPONDED     (feedback requests)

An AI failure is a modelled transition to the rule-based path, never an
error surfaced to the caller.
"""

from __future__ import annotations

import json
import time
import uuid
from collections.abc import Sequence
from enum import Enum
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, ValidationError

from fieldmapper.agents.ai_suggestion_merger import AiSuggestionMerger
from fieldmapper.agents.candidate_ranker import CandidateRanker
from fieldmapper.agents.feedback_recorder import FeedbackRecorder, create_feedback_store
from fieldmapper.agents.llm_clients import (
    AiFallback,
    AiMappings,
    BaseLLMClient,
    FallbackReason,
    build_mapping_prompt,
    create_llm_client,
    default_model,
    request_ai_mappings,
)
from fieldmapper.agents.mapping_models import (
    FeedbackEntry,
    FeedbackResponse,
    MappingMeta,
    MappingRequest,
    MappingResponse,
    MappingStrategy,
)
from fieldmapper.core.exceptions import (
    FeedbackPersistenceError,
    ProviderNotConfiguredError,
    RequestValidationError,
)
from fieldmapper.core.logging import clear_request_context, log_error, set_request_context
from fieldmapper.core.metrics import track_ai_fallback, track_mapping_request

logger = structlog.get_logger(__name__)

REQUIRED_FIELDS_MESSAGE = "sourceFields and targetFields are required arrays"
AI_SUCCESS_MESSAGE = "AI suggestions returned"
AI_UNAVAILABLE_MESSAGE = "AI provider not configured; used rule-based suggestions"


class OrchestratorState(str, Enum):
    """Lifecycle of one request."""

    RECEIVED = "received"
    AI_ATTEMPTED = "ai_attempted"
    AI_SKIPPED = "ai_skipped"
    RESPONDED = "responded"


class OrchestratorResult(BaseModel):
    """Transport-agnostic outcome of ``handle``."""

    status_code: int
    body: dict[str, Any]


def error_body(status_code: int, message: str) -> dict[str, Any]:
    """Error payload shared with the HTTP layer."""
    return {"error": message, "status_code": status_code}


class MappingOrchestrator:
    """
    Suggestion engine entry point.

    Holds only configuration (clients, ranker, store); every request is
    computed independently.
    """

    def __init__(
        self,
        llm_client: BaseLLMClient | None = None,
        feedback_recorder: FeedbackRecorder | None = None,
        ranker: CandidateRanker | None = None,
        model: str | None = None,
        unavailable_message: str = AI_UNAVAILABLE_MESSAGE,
    ):
        """
        Initialize the orchestrator.

        Args:
            llm_client: Provider client; None disables the AI path
            feedback_recorder: Recorder for feedback requests
            ranker: Rule-based ranker (default weights when omitted)
            model: Model label reported in responses
            unavailable_message: Message reported when the AI path is skipped
        """
        self.llm_client = llm_client
        self.feedback_recorder = feedback_recorder or FeedbackRecorder()
        self.ranker = ranker or CandidateRanker()
        self.merger = AiSuggestionMerger(self.ranker)
        self.model = model or (llm_client.model if llm_client else default_model("openai"))
        self.unavailable_message = unavailable_message

    @classmethod
    def from_env(cls, provider: str | None = None) -> MappingOrchestrator:
        """Build an orchestrator from environment configuration."""
        try:
            client: BaseLLMClient | None = create_llm_client(provider)
            message = AI_UNAVAILABLE_MESSAGE
        except ProviderNotConfiguredError as e:
            logger.warning("llm_client_unavailable", reason=str(e))
            client = None
            message = str(e)

        store = create_feedback_store()
        logger.info(
            "orchestrator_initialized",
            ai_enabled=client is not None,
            feedback_store=store.name if store else None,
        )

        return cls(
            llm_client=client,
            feedback_recorder=FeedbackRecorder(store),
            model=client.model if client else default_model(provider or "openai"),
            unavailable_message=message,
        )

    @property
    def ai_enabled(self) -> bool:
        return self.llm_client is not None

    def _transition(self, current: OrchestratorState, target: OrchestratorState) -> OrchestratorState:
        logger.debug("orchestrator_transition", from_state=current.value, to_state=target.value)
        return target

    # -------------------------------------------------------------------------
    # Request handling
    # -------------------------------------------------------------------------

    def handle(self, payload: Any) -> OrchestratorResult:
        """
        Process a decoded request body.

        Returns 400 for malformed requests, 500 for feedback persistence
        failures and unexpected errors (without internal detail), 200 otherwise.
        """
        try:
            if not isinstance(payload, dict):
                raise RequestValidationError("Request body must be a JSON object")

            feedback = payload.get("feedback")
            if isinstance(feedback, list) and feedback:
                return self._handle_feedback(payload, feedback)

            request = self.parse_request(payload)
            response = self.suggest(request)
            return OrchestratorResult(status_code=200, body=response.to_json_dict())

        except RequestValidationError as e:
            logger.info("mapping_request_rejected", reason=str(e))
            return OrchestratorResult(status_code=400, body=error_body(400, str(e)))
        except Exception as e:
            log_error(logger, e, "mapping_request_failed")
            return OrchestratorResult(status_code=500, body=error_body(500, "Internal error"))

    def _handle_feedback(self, payload: dict[str, Any], feedback: list[Any]) -> OrchestratorResult:
        try:
            entries = [FeedbackEntry.model_validate(entry) for entry in feedback]
        except ValidationError as e:
            raise RequestValidationError(f"Invalid feedback entry: {_first_error(e)}") from e

        try:
            response = self.record_feedback(
                entries,
                request_id=_optional_str(payload.get("requestId")),
                strategy=_optional_str(payload.get("strategy")),
                model=_optional_str(payload.get("model")),
            )
        except FeedbackPersistenceError as e:
            log_error(logger, e, "feedback_persist_failed", store=e.store)
            return OrchestratorResult(
                status_code=500, body=error_body(500, "Feedback persistence failed")
            )

        return OrchestratorResult(status_code=200, body=response.to_json_dict())

    def parse_request(self, payload: dict[str, Any]) -> MappingRequest:
        """
        Validate a scoring request.

        Raises:
            RequestValidationError: missing/empty field arrays or malformed fields
        """
        sources = payload.get("sourceFields")
        targets = payload.get("targetFields")
        if not isinstance(sources, list) or not sources or not isinstance(targets, list) or not targets:
            raise RequestValidationError(REQUIRED_FIELDS_MESSAGE)

        # Loosely-shaped optional keys are ignored rather than rejected
        data = {k: v for k, v in payload.items() if k != "feedback"}
        if not isinstance(data.get("existingMappings"), dict):
            data.pop("existingMappings", None)

        try:
            return MappingRequest.model_validate(data)
        except ValidationError as e:
            raise RequestValidationError(f"Invalid mapping request: {_first_error(e)}") from e

    # -------------------------------------------------------------------------
    # Scoring path
    # -------------------------------------------------------------------------

    def suggest(self, request: MappingRequest) -> MappingResponse:
        """
        Produce suggestions for every source field.

        Args:
            request: Validated request with non-empty source and target fields

        Returns:
            MappingResponse whose meta reports which strategy was used
        """
        state = OrchestratorState.RECEIVED
        start_time = time.time()
        request_id = request.request_id or str(uuid.uuid4())
        set_request_context(request_id)

        try:
            sources = request.source_fields
            targets = request.target_fields
            prompt = build_mapping_prompt(sources, targets, request.existing_mappings)

            if self.llm_client is None:
                state = self._transition(state, OrchestratorState.AI_SKIPPED)
                outcome: AiMappings | AiFallback = AiFallback(
                    reason=FallbackReason.NOT_CONFIGURED, detail=self.unavailable_message
                )
            else:
                state = self._transition(state, OrchestratorState.AI_ATTEMPTED)
                outcome = request_ai_mappings(self.llm_client, prompt)

            if isinstance(outcome, AiMappings):
                suggestions = self.merger.merge(outcome.mappings, sources, targets)
                strategy = MappingStrategy.AI
                message = AI_SUCCESS_MESSAGE
            else:
                suggestions = self.ranker.rank_all(sources, targets)
                strategy = MappingStrategy.RULE_BASED
                if state == OrchestratorState.AI_ATTEMPTED:
                    track_ai_fallback(outcome.reason.value)
                    logger.warning(
                        "ai_fallback",
                        reason=outcome.reason.value,
                        detail=outcome.detail,
                    )
                    message = f"Used rule-based fallback ({outcome.reason.value})"
                else:
                    message = self.unavailable_message

            state = self._transition(state, OrchestratorState.RESPONDED)
            candidate_count = sum(len(s.suggestions) for s in suggestions)
            track_mapping_request(strategy.value, time.time() - start_time, candidate_count)

            logger.info(
                "mapping_responded",
                strategy=strategy.value,
                source_count=len(sources),
                target_count=len(targets),
                candidate_count=candidate_count,
            )

            return MappingResponse(
                suggestions=suggestions,
                meta=MappingMeta(
                    source_count=len(sources),
                    target_count=len(targets),
                    strategy=strategy,
                    message=message,
                    model=self.model,
                    request_id=request_id,
                    prompt=prompt,
                ),
            )
        finally:
            clear_request_context()

    # -------------------------------------------------------------------------
    # Feedback path
    # -------------------------------------------------------------------------

    def record_feedback(
        self,
        entries: Sequence[FeedbackEntry],
        request_id: str | None = None,
        strategy: str | None = None,
        model: str | None = None,
    ) -> FeedbackResponse:
        """
        Persist feedback without touching the scoring pipeline.

        Raises:
            FeedbackPersistenceError: the configured store failed
        """
        outcome = self.feedback_recorder.record(
            entries, request_id=request_id, strategy=strategy, model=model
        )
        return FeedbackResponse(
            feedback_stored=outcome.stored,
            feedback_count=len(entries),
            reason=outcome.reason,
            meta=outcome,
        )


def _first_error(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first["loc"])
    return f"{location}: {first['msg']}" if location else first["msg"]


def _optional_str(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


# -----------------------------------------------------------------------------
# CLI Entry Point
# -----------------------------------------------------------------------------


def main() -> None:
    """Command-line interface for mapping suggestions."""
    import argparse
    import sys

    from fieldmapper.core.logging import setup_logging

    parser = argparse.ArgumentParser(
        description="FieldMapper - suggest source-to-target field mappings"
    )
    parser.add_argument(
        "input",
        help="Request file (JSON with sourceFields and targetFields)",
    )
    parser.add_argument(
        "-o", "--output",
        help="Output file path (default: stdout)",
    )
    parser.add_argument(
        "--provider",
        choices=["openai", "anthropic", "mock", "none"],
        help="LLM provider (default: FIELDMAPPER_LLM_PROVIDER or openai)",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        help="Log level for stderr output (default: WARNING)",
    )

    args = parser.parse_args()
    setup_logging(level=args.log_level, stream=sys.stderr)

    input_path = Path(args.input)
    if not input_path.exists():
        print(f"Error: File not found: {args.input}", file=sys.stderr)
        sys.exit(1)

    try:
        payload = json.loads(input_path.read_text())
    except json.JSONDecodeError as e:
        print(f"Error: Invalid JSON: {e}", file=sys.stderr)
        sys.exit(1)

    orchestrator = MappingOrchestrator.from_env(args.provider)
    result = orchestrator.handle(payload)
    output_json = json.dumps(result.body, indent=2)

    if args.output:
        Path(args.output).write_text(output_json)
        print(f"Output written to: {args.output}", file=sys.stderr)
    else:
        print(output_json)

    if result.status_code >= 400:
        sys.exit(1)


if __name__ == "__main__":
    main()
