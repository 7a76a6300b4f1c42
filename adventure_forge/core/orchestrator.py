"""
Generation orchestration.

Ties together rate limits, regeneration limits, credit metering, the
response cache, prompt assembly and the LLM collaborator. Every operation
runs the same linear sequence:

1. The user's rate limit window for the operation is counted.
2. Regeneration-type requests are counted against the adventure's budget.
3. One credit slot is consumed.
4. The cache is consulted; a hit is returned (and still charged).
5. On a miss the prompt is assembled, the LLM called, the completion
   decoded and stored in the cache.
6. Any failure after step 3 refunds the credit before the error propagates.
   The counts from steps 1 and 2 are never reversed.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from .cache import ResponseCache
from .errors import UpstreamGenerationError
from .ledger import CreditLedger
from .prompts import AssembledPrompt, ContentCandidate, GenerationRequest, PromptAssembler
from .rate_limit import RateLimiter
from .regeneration import LimitGuidance, RegenerationGovernor, RegenerationUsage
from .requests import (
    MovementRegenerationRequest,
    OperationKind,
    RefinementRequest,
    ScaffoldRequest,
    SceneExpansionRequest,
    SceneType,
)
from .results import (
    GenerationResult,
    decode_cached,
    encode_result,
    parse_completion,
)
from adventure_forge.config.loader import DEFAULT_MODEL, ForgeConfig

logger = logging.getLogger(__name__)

RETRIEVAL_LIMIT = 5


@dataclass(frozen=True)
class Completion:
    """Raw output of one LLM completion call."""
    text: str
    model: str
    total_tokens: int = 0


class LLMClient(Protocol):
    """External LLM completion endpoint."""

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float,
        response_format: Optional[str] = None
    ) -> Completion:
        ...


class ContentRetriever(Protocol):
    """External ranked search over tier-filtered game content."""

    def __call__(
        self,
        query: str,
        scene_type: SceneType,
        tier: int,
        limit: int
    ) -> Sequence[ContentCandidate]:
        ...


@dataclass(frozen=True)
class GenerationOutcome:
    """Result of one billable generation call."""
    kind: OperationKind
    result: GenerationResult
    cached: bool
    remaining_credits: int
    adventure_id: Optional[str] = None
    regeneration: Optional[RegenerationUsage] = None


class GenerationOrchestrator:
    """Façade over rate limits, credits, the cache, regeneration limits and the LLM.

    All collaborators are passed in; nothing is held in module state.
    """

    def __init__(
        self,
        llm: LLMClient,
        ledger: CreditLedger,
        cache: ResponseCache,
        governor: RegenerationGovernor,
        assembler: Optional[PromptAssembler] = None,
        retriever: Optional[ContentRetriever] = None,
        rate_limiter: Optional[RateLimiter] = None,
        model: str = DEFAULT_MODEL,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4())
    ):
        self.llm = llm
        self.ledger = ledger
        self.cache = cache
        self.governor = governor
        self.assembler = assembler or PromptAssembler()
        self.retriever = retriever
        self.rate_limiter = rate_limiter
        self.model = model
        self.id_factory = id_factory

    @classmethod
    def from_config(
        cls,
        config: ForgeConfig,
        llm: LLMClient,
        retriever: Optional[ContentRetriever] = None
    ) -> "GenerationOrchestrator":
        """Build the orchestrator and its storage-backed services once at startup."""
        db_path = config.storage.db_path
        return cls(
            llm=llm,
            ledger=CreditLedger(db_path),
            cache=ResponseCache(db_path),
            governor=RegenerationGovernor(
                db_path,
                scaffold_limit=config.regeneration.scaffold_limit,
                expansion_limit=config.regeneration.expansion_limit
            ),
            retriever=retriever,
            rate_limiter=RateLimiter(),
            model=config.llm.model
        )

    def generate_scaffold(self, user_id: str, request: ScaffoldRequest) -> GenerationOutcome:
        _require(request, ScaffoldRequest)
        return self.generate(user_id, request)

    def expand_scene(self, user_id: str, request: SceneExpansionRequest) -> GenerationOutcome:
        _require(request, SceneExpansionRequest)
        return self.generate(user_id, request)

    def refine_content(self, user_id: str, request: RefinementRequest) -> GenerationOutcome:
        _require(request, RefinementRequest)
        return self.generate(user_id, request)

    def regenerate_movement(
        self,
        user_id: str,
        request: MovementRegenerationRequest
    ) -> GenerationOutcome:
        _require(request, MovementRegenerationRequest)
        return self.generate(user_id, request)

    def get_user_credits(self, user_id: str) -> int:
        return self.ledger.get_balance(user_id)

    def check_credit_sufficiency(self, user_id: str, kind: OperationKind) -> bool:
        return self.ledger.check_sufficiency(user_id, kind)

    def generate(self, user_id: str, request: GenerationRequest) -> GenerationOutcome:
        """Run one generation request through the full metering sequence.

        Raises:
            RateLimitExceeded: Before anything is counted or consumed
            RegenerationLimitReached: Before any credit is consumed
            AdventureNotFound: Before any credit is consumed
            InsufficientCredits: Before any generation work
            UpstreamGenerationError: LLM or retrieval failure (credit refunded)
            MalformedResponseError: Undecodable completion (credit refunded)
            StorageError: Storage failure after consumption (credit refunded)
        """
        if not user_id:
            raise ValueError("user_id is required")
        kind = request.kind
        if self.rate_limiter is not None:
            self.rate_limiter.enforce(user_id, kind)
        regeneration = self._record_regeneration(request)

        metadata = _ledger_metadata(request)
        remaining = self.ledger.consume(user_id, kind, metadata)

        try:
            canonical = self._canonical_params(request, regeneration)
            entry = self.cache.lookup(canonical)
            if entry is not None:
                result = decode_cached(kind, entry.response)
                cached = True
            else:
                result = self._generate_fresh(request, canonical)
                cached = False

            adventure_id = request.adventure_id
            if isinstance(request, ScaffoldRequest) and not request.is_regeneration:
                adventure_id = self.id_factory()
                self.governor.create_counters(adventure_id)
        except Exception as error:
            self._refund(user_id, kind, metadata, error)
            raise

        return GenerationOutcome(
            kind=kind,
            result=result,
            cached=cached,
            remaining_credits=remaining,
            adventure_id=adventure_id,
            regeneration=regeneration
        )

    def _record_regeneration(self, request: GenerationRequest) -> Optional[RegenerationUsage]:
        if isinstance(request, (ScaffoldRequest, MovementRegenerationRequest)):
            if request.is_regeneration:
                return self.governor.record_scaffold_regeneration(request.adventure_id)
            return None
        if isinstance(request, RefinementRequest):
            return self.governor.record_expansion_or_refinement(
                request.adventure_id, LimitGuidance.MANUAL_EDITING
            )
        if request.is_regeneration:
            return self.governor.record_expansion_or_refinement(
                request.adventure_id, LimitGuidance.LOCKING_COMPONENTS
            )
        return None

    def _canonical_params(
        self,
        request: GenerationRequest,
        regeneration: Optional[RegenerationUsage]
    ) -> Dict[str, Any]:
        params = request.canonical_params()
        params["model"] = self.model
        # Each regeneration slot gets its own key so it can produce new content.
        if regeneration is not None and request.kind is not OperationKind.REFINEMENT:
            params["adventure_id"] = request.adventure_id
            params["regeneration"] = regeneration.used
        return params

    def _generate_fresh(
        self,
        request: GenerationRequest,
        canonical: Dict[str, Any]
    ) -> GenerationResult:
        candidates = self._retrieve(request)
        prompt = self.assembler.build_prompt(request, candidates)
        completion = self._complete(prompt)
        result = parse_completion(request.kind, completion.text)

        try:
            self.cache.store(
                canonical,
                encode_result(result),
                completion.total_tokens,
                completion.model or self.model,
                prompt.temperature
            )
        except Exception:
            logger.warning("Caching %s result failed", request.kind.value, exc_info=True)
        return result

    def _retrieve(self, request: GenerationRequest) -> List[ContentCandidate]:
        if self.retriever is None or not isinstance(request, SceneExpansionRequest):
            return []
        scene = request.scene
        query = f"{scene.title} {scene.content}".strip()
        try:
            return list(self.retriever(query, scene.scene_type, request.adventure.tier, RETRIEVAL_LIMIT))
        except UpstreamGenerationError:
            raise
        except Exception as e:
            raise UpstreamGenerationError(f"Content retrieval failed: {e}") from e

    def _complete(self, prompt: AssembledPrompt) -> Completion:
        try:
            return self.llm.complete(
                prompt.system_prompt,
                prompt.user_prompt,
                prompt.temperature,
                prompt.response_format
            )
        except UpstreamGenerationError:
            raise
        except TimeoutError as e:
            raise UpstreamGenerationError(f"LLM call timed out: {e}", reason="timeout") from e
        except Exception as e:
            raise UpstreamGenerationError(f"LLM call failed: {e}") from e

    def _refund(
        self,
        user_id: str,
        kind: OperationKind,
        metadata: Dict[str, Any],
        error: BaseException
    ) -> None:
        """Best-effort refund; a failed refund is logged for reconciliation."""
        refund_metadata = dict(metadata, reason=f"{kind.value} failed", error=str(error))
        try:
            self.ledger.refund(user_id, kind, refund_metadata)
        except Exception as refund_error:
            logger.error(
                "Refund failed, reconciliation required: user=%s kind=%s metadata=%s "
                "original_error=%r refund_error=%r",
                user_id,
                kind.value,
                refund_metadata,
                error,
                refund_error
            )


def _require(request: Any, expected: type) -> None:
    if not isinstance(request, expected):
        raise TypeError(f"Expected {expected.__name__}, got {type(request).__name__}")


def _ledger_metadata(request: GenerationRequest) -> Dict[str, Any]:
    metadata: Dict[str, Any] = {"operation": request.kind.value}
    if request.adventure_id:
        metadata["adventure_id"] = request.adventure_id
    scene = getattr(request, "scene", None) or getattr(request, "movement", None)
    if scene is not None:
        metadata["scene_id"] = scene.id
    return metadata

