"""Mock interview sessions driven by full-transcript replay.

The stored message log is the only conversational state: every turn
reloads all messages in creation order and renders them into one prompt.
"""

import structlog

from career_coach_api.dispatcher import FallbackDispatcher
from career_coach_api.models import Interview, InterviewDetail, InterviewMessage
from career_coach_api.prompts import build_turn_prompt, build_welcome_prompt
from career_coach_api.store import Store

logger = structlog.get_logger()


class InterviewOrchestrator:
    def __init__(self, store: Store, dispatcher: FallbackDispatcher):
        self._store = store
        self._dispatcher = dispatcher

    async def create_interview(self, resume_id: int, user_id: int) -> Interview:
        """Create an interview and seed it with the interviewer's opening message.

        If the resume cannot be found the interview is still created, with no
        messages.
        """
        interview = self._store.create_interview(resume_id=resume_id, user_id=user_id)

        resume = self._store.get_resume(resume_id)
        if resume is None:
            logger.warning(
                "Resume not found, skipping welcome message",
                interview_id=interview.id,
                resume_id=resume_id,
            )
            return interview

        result = await self._dispatcher.dispatch(
            build_welcome_prompt(resume.target_role, resume.content)
        )
        self._store.create_interview_message(interview.id, "ai", result.content.strip())
        logger.info("Interview created", interview_id=interview.id, resume_id=resume_id)
        return interview

    async def add_message(self, interview_id: int, content: str) -> InterviewMessage | None:
        """Record the candidate's answer and return the interviewer's reply.

        Returns None if the interview does not exist.
        """
        interview = self._store.get_interview(interview_id)
        if interview is None:
            return None

        self._store.create_interview_message(interview_id, "user", content)
        history = self._store.get_interview_messages(interview_id)

        resume = self._store.get_resume(interview.resume_id)
        target_role = resume.target_role if resume else None

        result = await self._dispatcher.dispatch(
            build_turn_prompt(history, latest=content, target_role=target_role)
        )
        reply = self._store.create_interview_message(interview_id, "ai", result.content.strip())
        logger.info(
            "Interview turn completed",
            interview_id=interview_id,
            transcript_messages=len(history) + 1,
        )
        return reply

    def get_interview(self, interview_id: int) -> InterviewDetail | None:
        interview = self._store.get_interview(interview_id)
        if interview is None:
            return None
        messages = self._store.get_interview_messages(interview_id)
        return InterviewDetail(**interview.model_dump(), messages=messages)
