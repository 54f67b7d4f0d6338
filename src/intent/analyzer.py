"""Two-stage intent analysis for incoming user messages.

Stage 1 classifies the message against a minimal window (recent messages
plus the previous analysis). Strategies that search history trigger stage 2,
which re-runs the classification with every summary visible. Whatever the
path, exactly one analysis row is written per call and a decision is always
returned.
"""

import json
import sqlite3
import time
from typing import Optional

from config import get_config, logger
from db.store import ConversationStore
from errors import ContextRecallError, ParseError
from intent.confidence import rescore_with_search_quality, score_analysis
from intent.prompts import INTENT_SYSTEM_PROMPT, AnalysisContext, build_user_prompt
from intent.rules import apply_classification_rules
from intent.schema import (
    DATE_BASED_SEARCH,
    INTENT_JSON_SCHEMA,
    ConfidenceReport,
    IntentAnalysisResult,
    fallback_result,
    parse_intent_result,
)
from intent.stages import Stage, next_stage, reanalysis_reason
from llm.client import ChatClient
from models import IntentAnalysisRecord, new_id, now
from usage import INTENT_ANALYSIS, UsageTracker
from utils.time_query import find_temporal_reference


class IntentAnalyzer:
    """Decides which history a reply needs.

    Args:
        store: Conversation store
        llm: Chat client (structured output)
        usage: Usage tracker for analysis calls
        hybrid: Attach date + semantic plans (defaults to config)
        minimal_window: Messages shown in stage 1
        full_window: Unsummarized messages shown in stage 2
    """

    def __init__(
        self,
        store: ConversationStore,
        llm: ChatClient,
        usage: Optional[UsageTracker] = None,
        hybrid: Optional[bool] = None,
        minimal_window: int = 10,
        full_window: int = 20
    ):
        cfg = get_config()
        self.store = store
        self.llm = llm
        self.usage = usage
        self.hybrid = cfg.hybrid_retrieval if hybrid is None else hybrid
        self.minimal_window = minimal_window
        self.full_window = full_window
        self.model = cfg.intent_model

    async def load_minimal_context(self, conversation_id: str) -> AnalysisContext:
        return AnalysisContext(
            kind="minimal",
            messages=await self.store.get_recent_messages(conversation_id, self.minimal_window),
            last_analysis=await self.store.get_latest_intent_analysis(conversation_id),
        )

    async def load_full_context(self, conversation_id: str) -> AnalysisContext:
        return AnalysisContext(
            kind="full",
            messages=await self.store.get_recent_messages(
                conversation_id, self.full_window, unsummarized_only=True
            ),
            summaries=await self.store.get_summaries(conversation_id),
            last_analysis=await self.store.get_latest_intent_analysis(conversation_id),
        )

    async def analyze(
        self,
        conversation_id: str,
        message: str,
        message_id: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> IntentAnalysisResult:
        """Analyze a user message. Never raises for model or storage failures."""
        stage = Stage.INITIAL
        try:
            context = await self.load_minimal_context(conversation_id)
        except (ContextRecallError, sqlite3.Error) as e:
            logger.error(f"Could not load context for {conversation_id}: {e}")
            context = AnalysisContext(kind="minimal")

        result = await self._run_pass(context, message, conversation_id, message_id, user_id)
        stage = next_stage(stage, result)

        if stage is Stage.REANALYZE:
            logger.debug(f"Re-analyzing {conversation_id}: {reanalysis_reason(result)}")
            try:
                full = await self.load_full_context(conversation_id)
            except (ContextRecallError, sqlite3.Error) as e:
                logger.error(f"Could not load full context for {conversation_id}: {e}")
                full = None
            if full is not None:
                second = await self._run_pass(full, message, conversation_id, message_id, user_id)
                if second.fallback:
                    logger.warning(f"Stage 2 analysis failed for {conversation_id}, keeping stage 1")
                else:
                    result, context = second, full

        stage = next_stage(stage)

        if not result.fallback:
            result.confidence = score_analysis(
                result, message, len(context.messages), len(context.summaries)
            )

        await self._persist(conversation_id, message_id, result)
        logger.info(
            f"Intent for {conversation_id}: {result.context_retrieval_strategy} "
            f"({result.relationship_to_history}, confidence {result.confidence.level}, "
            f"{stage.value} via {result.stage} context)"
        )
        return result

    async def _run_pass(
        self,
        context: AnalysisContext,
        message: str,
        conversation_id: str,
        message_id: Optional[str],
        user_id: Optional[str]
    ) -> IntentAnalysisResult:
        """One model call plus validation and rules; fallback on any failure."""
        started = time.monotonic()
        try:
            completion = await self.llm.complete(
                INTENT_SYSTEM_PROMPT,
                build_user_prompt(context, message),
                temperature=0.1,
                max_tokens=1000,
                json_schema=INTENT_JSON_SCHEMA,
                schema_name="intent_analysis",
                model=self.model,
            )
        except ContextRecallError as e:
            logger.warning(f"Intent analysis LLM call failed ({context.kind}): {e}")
            self._track(conversation_id, message_id, user_id, started, 0, 0, False, str(e), context.kind)
            return fallback_result()

        self._track(
            conversation_id, message_id, user_id, started,
            completion.prompt_tokens, completion.completion_tokens, True, None, context.kind
        )

        try:
            raw = json.loads(completion.content)
            if (
                isinstance(raw, dict)
                and raw.get("contextRetrievalStrategy") == DATE_BASED_SEARCH
                and not raw.get("dateQuery")
            ):
                raw["dateQuery"] = find_temporal_reference(message)
            result = parse_intent_result(raw)
        except (json.JSONDecodeError, ParseError) as e:
            logger.warning(f"Invalid intent analysis output ({context.kind}): {e}")
            return fallback_result()

        try:
            result = apply_classification_rules(result, message, hybrid=self.hybrid)
        except (OverflowError, ValueError) as e:
            logger.warning(f"Classification rules failed ({context.kind}): {e}")
            return fallback_result()
        result.stage = context.kind
        return result

    def _track(
        self,
        conversation_id: str,
        message_id: Optional[str],
        user_id: Optional[str],
        started: float,
        input_tokens: int,
        output_tokens: int,
        success: bool,
        error: Optional[str],
        stage: str
    ) -> None:
        if self.usage is None:
            return
        self.usage.track(
            operation_type=INTENT_ANALYSIS,
            model=self.model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            duration_ms=int((time.monotonic() - started) * 1000),
            success=success,
            error=error,
            conversation_id=conversation_id,
            message_id=message_id,
            user_id=user_id,
            metadata={"stage": stage},
        )

    async def _persist(
        self,
        conversation_id: str,
        message_id: Optional[str],
        result: IntentAnalysisResult
    ) -> None:
        confidence = result.confidence or ConfidenceReport(score=0.0, level="low")
        record = IntentAnalysisRecord(
            id=new_id(),
            conversation_id=conversation_id,
            message_id=message_id,
            current_intent=result.current_intent,
            contextual_relevance=result.contextual_relevance,
            relationship_to_history=result.relationship_to_history,
            context_retrieval_strategy=result.context_retrieval_strategy,
            confidence_score=confidence.score,
            confidence_level=confidence.level,
            key_topics=result.key_topics,
            pending_questions=result.pending_questions,
            last_assistant_question=result.last_assistant_question,
            compressed_context=result.compressed_context,
            confidence_factors=confidence.factors,
            raw_result=result.to_dict(),
            created_at=now(),
        )
        try:
            await self.store.save_intent_analysis(record)
            result.analysis_id = record.id
        except (ContextRecallError, sqlite3.Error) as e:
            logger.error(f"Failed to store intent analysis for {conversation_id}: {e}")

    async def update_confidence_with_search_results(
        self,
        result: IntentAnalysisResult,
        search_quality: float
    ) -> Optional[ConfidenceReport]:
        """Back-fill measured search quality into the stored confidence."""
        if result.fallback or result.confidence is None:
            return result.confidence

        report = rescore_with_search_quality(result.confidence, search_quality)
        result.confidence = report
        if result.analysis_id:
            try:
                await self.store.update_intent_confidence(
                    result.analysis_id, report.score, report.level, report.factors
                )
            except (ContextRecallError, sqlite3.Error) as e:
                logger.error(f"Failed to update confidence for analysis {result.analysis_id}: {e}")
        return report

    async def get_latest_intent_analysis(self, conversation_id: str) -> Optional[IntentAnalysisRecord]:
        return await self.store.get_latest_intent_analysis(conversation_id)
