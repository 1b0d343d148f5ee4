"""Resume analysis: prompt, dispatch, parse, and persist.

A submission is written in two phases. The Resume row is committed first
with ``status="pending_analysis"`` so a failed model call never loses the
submission; the analysis and roadmap are written afterwards and the Resume
is marked ``analyzed``, or ``failed`` if anything in between raised.
"""

import math
from typing import Any

import structlog

from career_coach_api.dispatcher import FallbackDispatcher
from career_coach_api.errors import ValidationError
from career_coach_api.gemini_client import Attachment
from career_coach_api.models import (
    ROADMAP_CATEGORIES,
    AnalysisDetail,
    AnalysisDraft,
    AnalyzeResponse,
    Resume,
    RoadmapItem,
    RoadmapItemDraft,
    RoadmapStatus,
    ScanResponse,
)
from career_coach_api.output_parser import MalformedModelOutput, parse_model_output
from career_coach_api.prompts import build_analysis_prompt, build_scan_prompt
from career_coach_api.scan_cache import ScanCache
from career_coach_api.store import Store
from career_coach_api.uploads import UploadArchive

logger = structlog.get_logger()

FEEDBACK_PLACEHOLDER = "No detailed feedback was generated for this resume."
MIN_ROADMAP_ITEMS = 6
MAX_ROADMAP_ITEMS = 8
MAX_SCAN_SKILLS = 5

SUB_SCORES = {
    "resume_quality": "resumeQuality",
    "skill_match": "skillMatch",
    "project_strength": "projectStrength",
    "interview_readiness": "interviewReadiness",
}


# =============================================================================
# Model output mapping
# =============================================================================


def coerce_score(value: Any) -> int | None:
    """Turn a model-supplied score into an int clamped to 0-100, or None if unusable."""
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().rstrip("%")
        try:
            value = float(value)
        except ValueError:
            return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, (int, float)):
        return max(0, min(100, int(round(value))))
    return None


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if item is not None and str(item).strip()]


def _required_score(parsed: dict[str, Any], key: str, raw_text: str) -> int:
    score = coerce_score(parsed.get(key))
    if score is None:
        raise MalformedModelOutput(raw_text, f"Missing or non-numeric '{key}'")
    return score


def _required_list(parsed: dict[str, Any], key: str, raw_text: str) -> list[str]:
    items = _string_list(parsed.get(key))
    if not items:
        raise MalformedModelOutput(raw_text, f"Missing or empty '{key}' list")
    return items


def map_roadmap(value: Any, raw_text: str) -> list[RoadmapItemDraft]:
    """Validate roadmap steps, sorted by priority and capped at MAX_ROADMAP_ITEMS."""
    if not isinstance(value, list):
        raise MalformedModelOutput(raw_text, "Missing 'roadmap' list")

    drafts = []
    for position, item in enumerate(value, start=1):
        if not isinstance(item, dict) or not str(item.get("title") or "").strip():
            logger.warning("Skipping malformed roadmap item", position=position)
            continue

        category = str(item.get("category") or "").strip().lower()
        if category not in ROADMAP_CATEGORIES:
            logger.warning("Unknown roadmap category", category=category, position=position)
            category = "skill"

        order = item.get("order")
        if isinstance(order, bool) or not isinstance(order, (int, float, str)):
            order = position
        try:
            order = int(order)
        except (ValueError, OverflowError):
            order = position

        drafts.append(
            RoadmapItemDraft(
                title=str(item["title"]).strip(),
                description=str(item.get("description") or "").strip(),
                category=category,
                order=order,
            )
        )

    if not drafts:
        raise MalformedModelOutput(raw_text, "Roadmap has no usable items")

    drafts.sort(key=lambda d: d.order)
    if len(drafts) < MIN_ROADMAP_ITEMS:
        logger.warning("Roadmap shorter than requested", items=len(drafts))
    return drafts[:MAX_ROADMAP_ITEMS]


def map_analysis(
    parsed: dict[str, Any], raw_text: str
) -> tuple[AnalysisDraft, list[RoadmapItemDraft]]:
    """Map parsed model output onto an analysis draft and roadmap drafts.

    Sub-scores default to 0 and feedback to a placeholder; every other field
    is required and a missing one raises ``MalformedModelOutput``.
    """
    rewritten = parsed.get("rewrittenContent")
    if not isinstance(rewritten, str) or not rewritten.strip():
        raise MalformedModelOutput(raw_text, "Missing 'rewrittenContent'")

    analysis_data = parsed.get("analysisData")
    analysis_data = dict(analysis_data) if isinstance(analysis_data, dict) else {}
    analysis_data["addedKeywords"] = _string_list(
        parsed.get("addedKeywords", analysis_data.get("addedKeywords"))
    )

    feedback = parsed.get("feedback")
    feedback = feedback.strip() if isinstance(feedback, str) and feedback.strip() else None

    sub_scores = {
        name: coerce_score(parsed.get(key)) or 0 for name, key in SUB_SCORES.items()
    }

    draft = AnalysisDraft(
        readiness_score=_required_score(parsed, "readinessScore", raw_text),
        ats_score=_required_score(parsed, "atsScore", raw_text),
        feedback=feedback or FEEDBACK_PLACEHOLDER,
        rewritten_content=rewritten.strip(),
        analysis_data=analysis_data,
        strengths=_required_list(parsed, "strengths", raw_text),
        gaps=_required_list(parsed, "gaps", raw_text),
        **sub_scores,
    )
    return draft, map_roadmap(parsed.get("roadmap"), raw_text)


def map_scan(parsed: dict[str, Any]) -> ScanResponse:
    def _optional_text(value: Any) -> str | None:
        if isinstance(value, str) and value.strip() and value.strip().lower() != "null":
            return value.strip()
        return None

    return ScanResponse(
        candidate_name=_optional_text(parsed.get("candidateName")),
        suggested_role=_optional_text(parsed.get("suggestedRole")),
        skills=_string_list(parsed.get("skills"))[:MAX_SCAN_SKILLS],
    )


# =============================================================================
# Orchestrator
# =============================================================================


class AnalysisOrchestrator:
    """Turns a resume and a target role into a stored, structured analysis."""

    def __init__(
        self,
        store: Store,
        dispatcher: FallbackDispatcher,
        scan_cache: ScanCache | None = None,
        archive: UploadArchive | None = None,
    ):
        self._store = store
        self._dispatcher = dispatcher
        self._scan_cache = scan_cache
        self._archive = archive

    async def analyze(
        self,
        *,
        target_role: str,
        file_name: str,
        content: str = "",
        attachment: Attachment | None = None,
        user_id: int | None = None,
        raw_file: bytes | None = None,
    ) -> AnalyzeResponse:
        """Analyze a resume and persist the result.

        ``raw_file`` is the uploaded file as received; it is archived when an
        upload archive is configured.

        Raises:
            ValidationError: Missing target role, or neither content nor attachment.
            NoProvidersConfiguredError / ProviderExhaustedError: The model call failed.
            MalformedModelOutput: The model reply could not be used.
        """
        target_role = target_role.strip()
        if not target_role:
            raise ValidationError("Target role is required", field="targetRole")
        if not content.strip() and attachment is None:
            raise ValidationError("Resume content or a file is required", field="content")

        resume = self._store.create_resume(
            target_role=target_role,
            file_name=file_name,
            content=content,
            user_id=user_id,
        )
        logger.info(
            "Resume stored, starting analysis",
            resume_id=resume.id,
            target_role=target_role,
            content_chars=len(content),
            has_attachment=attachment is not None,
        )
        if raw_file and self._archive is not None:
            self._archive.save(resume.id, file_name, raw_file)

        try:
            result = await self._dispatcher.dispatch(
                build_analysis_prompt(target_role, content),
                structured=True,
                attachment=attachment,
            )
            parsed = parse_model_output(result.content)
            draft, roadmap = map_analysis(parsed, result.content)

            analysis = self._store.create_analysis_result(resume.id, draft)
            items = self._store.create_roadmap_items(analysis.id, roadmap)
        except Exception:
            self._store.update_resume_status(resume.id, "failed")
            logger.warning("Analysis failed, resume marked failed", resume_id=resume.id)
            raise

        self._store.update_resume_status(resume.id, "analyzed")
        logger.info(
            "Analysis stored",
            resume_id=resume.id,
            analysis_id=analysis.id,
            readiness_score=analysis.readiness_score,
            roadmap_items=len(items),
            provider=result.provider.label,
        )
        return AnalyzeResponse(resume_id=resume.id, analysis_id=analysis.id)

    async def scan(self, content: str) -> ScanResponse:
        """Infer name, suggested role and top skills from resume text. Nothing is stored."""
        if not content.strip():
            raise ValidationError("Resume content is required", field="content")

        if self._scan_cache is not None:
            cached = self._scan_cache.get(content)
            if cached is not None:
                logger.info("Scan cache hit")
                return cached

        result = await self._dispatcher.dispatch(build_scan_prompt(content), structured=True)
        scan = map_scan(parse_model_output(result.content))

        if self._scan_cache is not None:
            self._scan_cache.set(content, scan)
        return scan

    def get_resume(self, resume_id: int) -> Resume | None:
        return self._store.get_resume(resume_id)

    def get_analysis(self, resume_id: int) -> AnalysisDetail | None:
        """Analysis with its resume and ordered roadmap, or None if not analyzed."""
        resume = self._store.get_resume(resume_id)
        if resume is None:
            return None
        analysis = self._store.get_analysis_result_by_resume_id(resume_id)
        if analysis is None:
            return None
        roadmap = self._store.get_roadmap_items_by_analysis_id(analysis.id)
        return AnalysisDetail(**analysis.model_dump(), resume=resume, roadmap=roadmap)

    def get_latest_analysis(self) -> AnalysisDetail | None:
        resume = self._store.get_latest_resume()
        if resume is None:
            return None
        return self.get_analysis(resume.id)

    def update_roadmap_status(self, item_id: int, status: RoadmapStatus) -> RoadmapItem | None:
        item = self._store.update_roadmap_item_status(item_id, status)
        if item is not None:
            logger.info("Roadmap item updated", item_id=item_id, status=status)
        return item
