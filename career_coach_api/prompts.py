"""Prompt templates for resume analysis, scanning and mock interviews."""

from career_coach_api.models import InterviewMessage

RESUME_EXCERPT_CHARS = 1500

ATTACHED_RESUME_NOTE = "(The resume is attached as a file. Read it from the attachment.)"

ANALYSIS_PROMPT = """You are an expert career coach, ATS specialist and technical interviewer.
Analyze the candidate's resume for the target role of "{target_role}".

RESUME:
{resume}

INSTRUCTIONS:
1. Score the resume on six independent axes, each an integer from 0 to 100:
   readinessScore (overall fit for the role), atsScore (how well it parses in an
   Applicant Tracking System), resumeQuality, skillMatch, projectStrength,
   interviewReadiness.
2. List 3-5 concrete strengths and 3-5 concrete gaps for this role.
3. Rewrite the resume as a concise markdown document (under 450 words):
   - Use Action-Context-Result bullets.
   - GROUND FACTS (NEVER VIOLATE THESE): keep every employer, job title, date
     and degree exactly as written. Do NOT invent employers, dates, projects
     or metrics that are not in the original.
   - Weave industry-standard keywords adjacent to the candidate's real skills
     into the skill mentions, and report every keyword you added.
4. Produce a prioritized roadmap of 6-8 steps. Each step has a title, a one
   or two sentence description, a category (one of "skill", "project",
   "practice", "interview") and an order (1 = do first).
5. Write one short paragraph of overall feedback.

Return ONLY a JSON object with exactly this structure (no markdown, no prose):
{{
  "readinessScore": <integer 0-100>,
  "atsScore": <integer 0-100>,
  "resumeQuality": <integer 0-100>,
  "skillMatch": <integer 0-100>,
  "projectStrength": <integer 0-100>,
  "interviewReadiness": <integer 0-100>,
  "feedback": "<overall feedback>",
  "strengths": ["<strength>", ...],
  "gaps": ["<gap>", ...],
  "rewrittenContent": "<markdown resume>",
  "addedKeywords": ["<keyword>", ...],
  "roadmap": [
    {{"title": "<title>", "description": "<description>", "category": "skill", "order": 1}}
  ]
}}"""

SCAN_PROMPT = """Read the resume below and infer who the candidate is.

RESUME:
{resume}

Return ONLY a JSON object:
{{
  "candidateName": "<full name, or null if not present>",
  "suggestedRole": "<the job title this resume is best suited for>",
  "skills": ["<top skill>", ...]
}}
List at most 5 skills, strongest first."""

INTERVIEWER_PERSONA = """You are a senior technical interviewer running a mock interview{role_clause}.

Rules:
- Ask exactly ONE question at a time.
- Before asking the next question, briefly evaluate the candidate's previous answer
  (what was good, what was missing).
- If the candidate says "I don't know" or cannot answer, acknowledge it kindly,
  give a one-line hint at the expected answer, and pivot to a different topic.
- Ground questions in the candidate's resume and the target role.
- Keep every reply under 100 words. Plain text, no markdown headings."""

WELCOME_PROMPT = """{persona}

The candidate is applying for: {target_role}

RESUME EXCERPT:
{resume}

Introduce yourself in one or two sentences, then ask one opening question
based on the resume."""

TURN_PROMPT = """{persona}

TRANSCRIPT SO FAR:
{transcript}

The candidate just answered:
{latest}

Respond as the interviewer: briefly evaluate that answer, then ask the next question."""


def resume_excerpt(content: str, limit: int = RESUME_EXCERPT_CHARS) -> str:
    content = content.strip()
    if not content:
        return ATTACHED_RESUME_NOTE
    if len(content) <= limit:
        return content
    return content[:limit].rstrip() + " ..."


def build_analysis_prompt(target_role: str, content: str) -> str:
    resume = content.strip() or ATTACHED_RESUME_NOTE
    return ANALYSIS_PROMPT.format(target_role=target_role, resume=resume)


def build_scan_prompt(content: str) -> str:
    return SCAN_PROMPT.format(resume=content.strip())


def interviewer_persona(target_role: str | None = None) -> str:
    role_clause = f" for a {target_role} position" if target_role else ""
    return INTERVIEWER_PERSONA.format(role_clause=role_clause)


def build_welcome_prompt(target_role: str, content: str) -> str:
    return WELCOME_PROMPT.format(
        persona=interviewer_persona(target_role),
        target_role=target_role,
        resume=resume_excerpt(content),
    )


def format_transcript(messages: list[InterviewMessage]) -> str:
    """Render messages as ``ROLE: content`` lines in the given order."""
    return "\n".join(f"{m.role.upper()}: {m.content}" for m in messages)


def build_turn_prompt(
    messages: list[InterviewMessage],
    latest: str,
    target_role: str | None = None,
) -> str:
    return TURN_PROMPT.format(
        persona=interviewer_persona(target_role),
        transcript=format_transcript(messages),
        latest=latest,
    )
