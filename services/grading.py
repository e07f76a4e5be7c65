import logging
import time
import uuid
from typing import Callable, Optional

from models import AssessResponse, GradeResponse, Timings
from services.assessment import AssessmentService
from services.judge import OpenAIJudge, build_evidence, get_judge
from services.phonetics import EnEvidenceBuilder, ZhEvidenceBuilder
from services.recognition import Provider, RecognitionService
from services.upstream import Outcome, ProviderError
from services.verdict import parse_judge_content, verdict_from_assessment, verdict_from_judge


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


class GradingService:
    """Recognition, evidence, judging and verdict normalization for one recording."""

    def __init__(
        self,
        recognition: Optional[RecognitionService] = None,
        zh_builder: Optional[ZhEvidenceBuilder] = None,
        en_builder: Optional[EnEvidenceBuilder] = None,
        assessment: Optional[AssessmentService] = None,
        judge_factory: Callable = get_judge,
        audio_judge_factory: Callable = OpenAIJudge,
    ):
        self.recognition = recognition or RecognitionService()
        self.zh_builder = zh_builder or ZhEvidenceBuilder()
        self.en_builder = en_builder or EnEvidenceBuilder()
        self.assessment = assessment or AssessmentService()
        self.judge_factory = judge_factory
        self.audio_judge_factory = audio_judge_factory

    async def grade(
        self,
        audio: bytes,
        mime_type: str,
        expected: str,
        language: str,
        provider_name: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> Outcome:
        request_id = request_id or str(uuid.uuid4())[:8]
        provider = Provider.parse(provider_name)
        started = time.monotonic()

        # 1) Recognition
        try:
            recognized = await self.recognition.recognize(audio, mime_type, language, provider)
        except ProviderError as e:
            logging.error(f"[{request_id}] Recognition failed ({e.status}): {e.message}")
            return Outcome.failure(e.message, diagnostics={"status": e.status})
        if recognized.error and not recognized.candidates:
            logging.info(f"[{request_id}] No usable candidates from {recognized.provider_used}")
            return Outcome.failure(recognized.error)
        asr_ms = _elapsed_ms(started)
        candidates = recognized.candidates
        logging.info(f"[{request_id}] {recognized.provider_used} returned {len(candidates)} candidate(s)")

        # 2) Helper evidence, best-effort
        zh_augment = await self.zh_builder.build(candidates, language)
        en_homophones = await self.en_builder.build(candidates, language)

        # 3) Judge
        judge = self.judge_factory()
        judge_started = time.monotonic()
        evidence = build_evidence(language, expected, recognized.provider_used, candidates, zh_augment, en_homophones)
        try:
            content = await judge.judge(evidence)
        except ProviderError as e:
            logging.error(f"[{request_id}] Judge failed ({e.status}): {e.message}")
            return Outcome.failure(e.message, diagnostics={"status": e.status})
        verdict = verdict_from_judge(parse_judge_content(content))

        return Outcome.success(
            GradeResponse(
                **verdict.model_dump(),
                transcriptTop=candidates[0] if candidates else "",
                candidates=candidates,
                zhAugment=zh_augment,
                enHomophones=en_homophones,
                timings=Timings(asr_ms=asr_ms, judge_ms=_elapsed_ms(judge_started), total_ms=_elapsed_ms(started)),
                provider=recognized.provider_used,
            )
        )

    async def grade_direct(
        self,
        audio: bytes,
        mime_type: str,
        expected: str,
        language: str,
        request_id: Optional[str] = None,
    ) -> Outcome:
        """Judge the recording itself, with no recognition step."""
        request_id = request_id or str(uuid.uuid4())[:8]
        judge = self.audio_judge_factory()
        try:
            content = await judge.judge_audio(audio, mime_type, language, expected)
        except ProviderError as e:
            logging.error(f"[{request_id}] Audio judge failed ({e.status}): {e.message}")
            return Outcome.failure(e.message, diagnostics={"status": e.status})
        return Outcome.success(verdict_from_judge(parse_judge_content(content)))

    async def assess(
        self,
        audio: bytes,
        mime_type: str,
        expected: str,
        language: str,
        request_id: Optional[str] = None,
    ) -> Outcome:
        request_id = request_id or str(uuid.uuid4())[:8]
        outcome = await self.assessment.assess(audio, mime_type, expected, language)
        if not outcome.ok:
            logging.error(f"[{request_id}] Assessment failed: {outcome.diagnostics}")
            return outcome
        verdict = verdict_from_assessment(outcome.value, language)
        return Outcome.success(AssessResponse(**verdict.model_dump()))
