import re
from functools import lru_cache
from typing import List, Sequence, Type

import structlog
from openai import AsyncOpenAI
from pydantic import BaseModel

from settings import get_settings
from schemas import CVAnalysis


logger = structlog.get_logger(__name__)

# --- Application Info for OpenRouter ---
APP_NAME = "Job Board"
APP_URL = "https://github.com/job-board/job-board"


class LLMResponseError(RuntimeError):
    """The model answered but the answer could not be parsed into the expected schema."""


class CVAnalysisDraft(BaseModel):
    """What the model is asked to return; its score may come back fractional."""

    skills: List[str]
    experience_years: float
    education: str
    match_score: float


@lru_cache()
def get_client() -> AsyncOpenAI:
    """OpenAI client pointed at OpenRouter, built on first use."""
    settings = get_settings()
    if not settings.openrouter_api_key:
        logger.error("OPENROUTER_API_KEY not found in environment variables or .env file.")
        raise ValueError(
            "OPENROUTER_API_KEY not found. Ensure it's set in your environment or .env file."
        )
    return AsyncOpenAI(
        base_url="https://openrouter.ai/api/v1",
        api_key=settings.openrouter_api_key,
        default_headers={
            "HTTP-Referer": APP_URL,
            "X-Title": APP_NAME,
        },
    )


# --- Model Configuration ---
# The model name comes from Settings.analysis_model
MODEL_CONFIG = {
    "cv_analysis": {
        "temperature": 0.0,
        "top_p": 1,
        "max_tokens": 2048,
    },
}
COMMON_OPTS = {"seed": 123}

# --- Structured Output Example ---
CV_ANALYSIS_OUTPUT_EXAMPLE = """{
    \"skills\": [
        \"React\",
        \"TypeScript\",
        \"SQL\"
    ],
    \"experience_years\": 4,
    \"education\": \"BSc Computer Science, University of Rwanda\",
    \"match_score\": 50
}"""
CV_ANALYSIS_OUTPUT_EXAMPLE = re.sub(r"\n +", "", CV_ANALYSIS_OUTPUT_EXAMPLE).replace(
    "\n", ""
)


async def call_llm(
    system_prompt: str,
    user_prompt: str,
    model_config: dict,
    response_model: Type[BaseModel],
) -> BaseModel:
    """Call the LLM and parse its reply into ``response_model``."""

    messages = [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_prompt},
    ]

    response = await get_client().chat.completions.parse(
        messages=messages,
        model=get_settings().analysis_model,
        response_format=response_model,
        **model_config,
        **COMMON_OPTS,
    )
    parsed = response.choices[0].message.parsed
    if parsed is None:
        raise LLMResponseError(
            f"Model returned no parseable {response_model.__name__} payload"
        )

    return parsed


# --- Specific LLM Interaction Functions --- #


async def call_llm_for_cv_analysis(
    required_skills: Sequence[str], cv_text: str
) -> CVAnalysis:
    """Extract skills, experience and education from CV text."""

    system_prompt = f"""You are a professional recruiter analyzing CVs. Extract structured information and calculate match scores.
Example output: {CV_ANALYSIS_OUTPUT_EXAMPLE}
- "skills" lists the concrete technical and professional skills the candidate shows, one short name per entry.
- "experience_years" is the total years of professional experience as a number.
- "education" is a one-line summary of the highest relevant education.
- "match_score" is 0-100 based on how many of the required skills the candidate has."""

    skills_line = ", ".join(required_skills) if required_skills else "(none listed)"
    user_prompt = f"""Required skills for the job: {skills_line}

CV Text:
{cv_text}"""

    parsed = await call_llm(
        system_prompt=system_prompt,
        user_prompt=user_prompt,
        model_config=MODEL_CONFIG["cv_analysis"],
        response_model=CVAnalysisDraft,
    )
    # The model's score is only an estimate; clamp it to a whole percentage
    analysis = CVAnalysis(
        skills=parsed.skills,
        experience_years=parsed.experience_years,
        education=parsed.education,
        match_score=min(100, max(0, int(parsed.match_score + 0.5))),
    )

    logger.info("Successfully analyzed CV", skills_found=len(analysis.skills))
    return analysis
