"""
Generative Assist Gateway

One coroutine per AI operation. Each method renders a prompt template, calls
the model through call_llm_with_retry(), parses the JSON answer and validates
it into a pydantic model. Any response that does not fit the expected shape
raises GatewayResponseError; transport failures raise GatewayError.

Discovery operations run with the WebSearch/WebFetch tools enabled and ask the
model to list its sources, which are returned as citations. File operations
write the upload into a temporary directory and let the model Read it.
"""

import base64
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterator, Optional, TypeVar

from pydantic import BaseModel, ValidationError

from resonext.models.config import GatewayConfig
from resonext.models.professor import (
    AnalysisResult,
    EmailRevision,
    ProfessorProfile,
)
from resonext.models.profile import PartialProfile, UserProfile
from resonext.models.program import ProgramDiscoveryResult
from resonext.models.university import (
    Citation,
    ProfessorSearchResult,
    TieredUniversities,
)
from resonext.models.document import TargetProfessor
from resonext.utils.errors import GatewayResponseError, InputValidationError
from resonext.utils.llm_helpers import call_llm_with_retry, parse_json_response
from resonext.utils.logger import get_logger
from resonext.utils.prompt_loader import PromptLoader, get_default_loader

ModelT = TypeVar("ModelT", bound=BaseModel)

LLMCallable = Callable[..., Awaitable[str]]

SEARCH_TOOLS = ["WebSearch", "WebFetch"]
FILE_TOOLS = ["Read"]

KEYWORD_KINDS = ("interests", "programs")

_EXTENSIONS = {
    "application/pdf": ".pdf",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ".docx",
    "text/plain": ".txt",
}


class AssistGateway:
    """Structured access to the generative model.

    Args:
        config: Gateway settings (model, attempts, search turn budget)
        llm: Coroutine with the call_llm_with_retry() signature; tests inject
            a fake here
        prompts: Template loader (defaults to the package prompts)
    """

    def __init__(
        self,
        config: Optional[GatewayConfig] = None,
        llm: Optional[LLMCallable] = None,
        prompts: Optional[PromptLoader] = None,
    ) -> None:
        self.config = config or GatewayConfig()
        self._llm = llm or call_llm_with_retry
        self._prompts = prompts or get_default_loader()

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    async def extract_profile_from_cv(
        self,
        file_content_b64: str,
        mime_type: str,
        correlation_id: Optional[str] = None,
    ) -> PartialProfile:
        """Extract profile fields from a base64-encoded CV (PDF or DOCX)."""
        with _uploaded_file(file_content_b64, mime_type) as path:
            prompt = self._prompts.render(
                "profile/cv_extraction.j2",
                correlation_id=correlation_id,
                file_name=path.name,
                mime_type=mime_type,
            )
            payload = await self._call(
                prompt,
                operation="extract_profile_from_cv",
                system="extractor",
                tools=FILE_TOOLS,
                max_turns=3,
                cwd=path.parent,
                correlation_id=correlation_id,
            )
        return _validate(PartialProfile, payload, "extract_profile_from_cv")

    async def extract_text(
        self,
        file_content_b64: str,
        mime_type: str,
        correlation_id: Optional[str] = None,
    ) -> str:
        """Extract the plain text of a base64-encoded document."""
        with _uploaded_file(file_content_b64, mime_type) as path:
            prompt = self._prompts.render(
                "profile/text_extraction.j2",
                correlation_id=correlation_id,
                file_name=path.name,
                mime_type=mime_type,
            )
            payload = await self._call(
                prompt,
                operation="extract_text",
                system="extractor",
                tools=FILE_TOOLS,
                max_turns=3,
                cwd=path.parent,
                correlation_id=correlation_id,
            )
        text = payload.get("text")
        if not isinstance(text, str):
            raise GatewayResponseError("extract_text: response has no 'text' string")
        return text

    async def suggest_keywords(
        self,
        profile: UserProfile,
        kind: str = "interests",
        correlation_id: Optional[str] = None,
    ) -> list[str]:
        """Suggest short search keywords for professors ("interests") or programs."""
        if kind not in KEYWORD_KINDS:
            raise ValueError(f"kind must be one of {KEYWORD_KINDS}, got {kind!r}")
        prompt = self._prompts.render(
            "profile/keyword_suggestions.j2",
            correlation_id=correlation_id,
            profile=profile,
            kind=kind,
        )
        payload = await self._call(
            prompt,
            operation="suggest_keywords",
            system="editor",
            correlation_id=correlation_id,
        )
        keywords = payload.get("keywords")
        if not isinstance(keywords, list) or not all(
            isinstance(k, str) for k in keywords
        ):
            raise GatewayResponseError(
                "suggest_keywords: response has no 'keywords' string array"
            )
        return [k.strip() for k in keywords if k.strip()]

    # ------------------------------------------------------------------
    # Email
    # ------------------------------------------------------------------

    async def analyze_and_draft_email(
        self,
        profile: UserProfile,
        professor: ProfessorProfile,
        papers: Optional[list[str]] = None,
        correlation_id: Optional[str] = None,
    ) -> AnalysisResult:
        """Summarize profile/professor alignment and draft an outreach email."""
        prompt = self._prompts.render(
            "email/analysis.j2",
            correlation_id=correlation_id,
            profile=profile,
            professor=professor,
            papers=papers or [],
        )
        payload = await self._call(
            prompt,
            operation="analyze_and_draft_email",
            system="editor",
            correlation_id=correlation_id,
        )
        return _validate(AnalysisResult, payload, "analyze_and_draft_email")

    async def revise_email(
        self,
        profile: UserProfile,
        professor: ProfessorProfile,
        previous: AnalysisResult,
        instruction: str,
        correlation_id: Optional[str] = None,
    ) -> EmailRevision:
        """Rewrite an outreach email subject and body following an instruction."""
        prompt = self._prompts.render(
            "email/revision.j2",
            correlation_id=correlation_id,
            profile=profile,
            professor=professor,
            previous=previous,
            instruction=instruction,
        )
        payload = await self._call(
            prompt,
            operation="revise_email",
            system="editor",
            correlation_id=correlation_id,
        )
        return _validate(EmailRevision, payload, "revise_email")

    # ------------------------------------------------------------------
    # SOP
    # ------------------------------------------------------------------

    async def draft_sop(
        self,
        profile: UserProfile,
        university: str,
        program: str,
        target_professors: Optional[list[TargetProfessor]] = None,
        papers: Optional[list[str]] = None,
        correlation_id: Optional[str] = None,
    ) -> str:
        """Draft a complete statement of purpose."""
        prompt = self._prompts.render(
            "sop/draft.j2",
            correlation_id=correlation_id,
            profile=profile,
            university=university,
            program=program,
            target_professors=target_professors or [],
            papers=papers or [],
        )
        payload = await self._call(
            prompt,
            operation="draft_sop",
            system="editor",
            correlation_id=correlation_id,
        )
        return _sop_content(payload, "draft_sop")

    async def revise_sop(
        self,
        profile: UserProfile,
        previous_sop: str,
        instruction: str,
        correlation_id: Optional[str] = None,
    ) -> str:
        """Rewrite a whole statement of purpose following an instruction."""
        prompt = self._prompts.render(
            "sop/revision.j2",
            correlation_id=correlation_id,
            profile=profile,
            previous_sop=previous_sop,
            instruction=instruction,
        )
        payload = await self._call(
            prompt,
            operation="revise_sop",
            system="editor",
            correlation_id=correlation_id,
        )
        return _sop_content(payload, "revise_sop")

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def find_universities(
        self,
        profile: UserProfile,
        country: str,
        state: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> TieredUniversities:
        """Find universities in a country (and optional state) grouped by tier."""
        prompt = self._prompts.render(
            "discovery/universities.j2",
            correlation_id=correlation_id,
            profile=profile,
            country=country,
            state=state,
        )
        payload = await self._call(
            prompt,
            operation="find_universities",
            system="research_assistant",
            tools=SEARCH_TOOLS,
            max_turns=self.config.search_max_turns,
            correlation_id=correlation_id,
        )
        return _validate(
            TieredUniversities, _collect_citations(payload), "find_universities"
        )

    async def find_professors(
        self,
        profile: UserProfile,
        university: str,
        department: Optional[str] = None,
        interest: Optional[str] = None,
        exclude: Optional[list[str]] = None,
        correlation_id: Optional[str] = None,
    ) -> ProfessorSearchResult:
        """Find up to ten professors at a university, skipping excluded names."""
        prompt = self._prompts.render(
            "discovery/professors.j2",
            correlation_id=correlation_id,
            profile=profile,
            university=university,
            department=department,
            interest=interest,
            exclude=exclude or [],
        )
        payload = await self._call(
            prompt,
            operation="find_professors",
            system="research_assistant",
            tools=SEARCH_TOOLS,
            max_turns=self.config.search_max_turns,
            correlation_id=correlation_id,
        )
        payload = _collect_citations(payload)
        payload.setdefault("universityName", university)
        professors = payload.get("professors")
        if isinstance(professors, list):
            for entry in professors:
                if isinstance(entry, dict) and not entry.get("university"):
                    entry["university"] = university
        return _validate(ProfessorSearchResult, payload, "find_professors")

    async def find_programs(
        self,
        profile: UserProfile,
        university: Optional[str] = None,
        country: Optional[str] = None,
        state: Optional[str] = None,
        keywords: Optional[str] = None,
        exclude: Optional[list[str]] = None,
        correlation_id: Optional[str] = None,
    ) -> ProgramDiscoveryResult:
        """Find graduate programs at one university, or broadly with tiers."""
        if university:
            template = "discovery/programs_university.j2"
        else:
            template = "discovery/programs_broad.j2"
        prompt = self._prompts.render(
            template,
            correlation_id=correlation_id,
            profile=profile,
            university=university,
            country=country,
            state=state,
            keywords=keywords,
            exclude=exclude or [],
        )
        payload = await self._call(
            prompt,
            operation="find_programs",
            system="research_assistant",
            tools=SEARCH_TOOLS,
            max_turns=self.config.search_max_turns,
            correlation_id=correlation_id,
        )
        return _validate(
            ProgramDiscoveryResult, _collect_citations(payload), "find_programs"
        )

    # ------------------------------------------------------------------

    async def _call(
        self,
        prompt: str,
        operation: str,
        system: str,
        tools: Optional[list[str]] = None,
        max_turns: int = 1,
        cwd: Optional[Path] = None,
        correlation_id: Optional[str] = None,
    ) -> dict[str, Any]:
        log = get_logger(
            correlation_id=correlation_id,
            flow="gateway",
            component="assist_gateway",
        )
        log.info("Gateway call", operation=operation, tools=tools or [])

        response = await self._llm(
            prompt,
            system_prompt=self._prompts.get_system_prompt(system),
            allowed_tools=tools or [],
            max_turns=max_turns,
            cwd=cwd,
            model=self.config.model,
            max_attempts=self.config.max_attempts,
            correlation_id=correlation_id,
        )
        payload = parse_json_response(response, correlation_id=correlation_id)
        log.debug("Gateway response parsed", operation=operation, keys=sorted(payload))
        return payload


def _validate(model: type[ModelT], payload: dict[str, Any], operation: str) -> ModelT:
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise GatewayResponseError(
            f"{operation}: response does not match {model.__name__}: "
            f"{e.error_count()} validation error(s)"
        ) from e


def _sop_content(payload: dict[str, Any], operation: str) -> str:
    content = payload.get("sopContent")
    if not isinstance(content, str) or not content.strip():
        raise GatewayResponseError(f"{operation}: response has no 'sopContent' text")
    return content.strip()


def _collect_citations(payload: dict[str, Any]) -> dict[str, Any]:
    """Move the model's "sources" list into "citations", keeping valid unique URIs."""
    raw: list[Any] = []
    for key in ("sources", "citations"):
        value = payload.pop(key, None)
        if isinstance(value, list):
            raw.extend(value)
    citations: list[dict[str, str]] = []
    seen: set[str] = set()
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        uri = entry.get("uri") or entry.get("url")
        if not isinstance(uri, str) or not uri or uri in seen:
            continue
        seen.add(uri)
        citation = Citation(uri=uri, title=str(entry.get("title") or uri))
        citations.append(citation.to_json_dict())
    payload["citations"] = citations
    return payload


@contextmanager
def _uploaded_file(file_content_b64: str, mime_type: str) -> Iterator[Path]:
    """Decode a base64 upload into a fresh temporary directory."""
    try:
        data = base64.b64decode(file_content_b64, validate=True)
    except ValueError as e:
        raise InputValidationError(f"Upload is not valid base64: {e}") from e

    with tempfile.TemporaryDirectory(prefix="resonext-upload-") as tmp:
        suffix = _EXTENSIONS.get(mime_type, ".bin")
        path = Path(tmp) / f"upload{suffix}"
        path.write_bytes(data)
        yield path
