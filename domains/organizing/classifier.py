"""
Classification client using Ollama or an OpenAI-compatible API.

Provides:
- Prompt building from file metadata, extracted text and user rules
- Local-model backend (Ollama /api/generate)
- Hosted backend (OpenAI-compatible /v1/chat/completions)
- Retry with exponential backoff for transient failures
- Tolerant parsing of the backend's free-form answer
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import httpx
from loguru import logger
from pydantic import ValidationError

from app.models.schemas import Classification, FileMetadata, RenameConfig, RenameMode
from app.utils.helpers import format_bytes, truncate_text
from domains.organizing.errors import (
    ClassificationError,
    InvalidResponseError,
    RejectedError,
    ResponseParseError,
    TransportError,
)

# Statuses that will not change on retry: bad request, bad key, unknown model
NON_RETRYABLE_STATUS = {400, 401, 404}

DATE_FORMAT = "%Y-%m-%d %H:%M"


@dataclass(frozen=True)
class OllamaBackend:
    """Local model served by Ollama."""
    model: str = "llama3.2"
    base_url: str = "http://localhost:11434"
    temperature: float = 0.1
    num_predict: int = 256
    timeout: float = 120.0


@dataclass(frozen=True)
class OpenAIBackend:
    """Any OpenAI-compatible chat-completion endpoint."""
    api_key: str
    model: str = "gpt-4o-mini"
    base_url: str = "https://api.openai.com"
    max_completion_tokens: int = 4096
    timeout: float = 60.0


Backend = Union[OllamaBackend, OpenAIBackend]


def parse_classification(text: str) -> Classification:
    """
    Parse a backend answer into a Classification.

    Backends sometimes wrap the JSON object in commentary despite being
    told not to, so everything outside the outermost braces is ignored.

    Raises:
        ResponseParseError: No JSON object, or one that does not fit the schema
    """
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end < start:
        raise ResponseParseError(f"No JSON object in response: {text[:200]}")

    try:
        return Classification.model_validate_json(text[start:end + 1])
    except ValidationError as e:
        raise ResponseParseError(f"Invalid classification JSON: {e}") from e


class ClassificationClient:
    """Asks a backend where a file belongs."""

    def __init__(
        self,
        backend: Optional[Backend] = None,
        max_attempts: int = 3,
        base_delay: float = 2.0,
        text_budget: int = 2000,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize classification client.

        Args:
            backend: Backend to call, defaults to a local Ollama
            max_attempts: Total attempts per classification, including the first
            base_delay: Backoff base; attempt n waits base * 2**n before retrying
            text_budget: Maximum characters of extracted text put in the prompt
            transport: Optional httpx transport (used by tests)
            sleep: Coroutine used to wait between attempts
        """
        self.backend = backend or OllamaBackend()
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.text_budget = text_budget
        self.transport = transport
        self._sleep = sleep

    async def classify(
        self,
        metadata: FileMetadata,
        extracted_text: str,
        existing_folders: List[str],
        user_prompt: str,
        rename_config: Optional[RenameConfig] = None,
    ) -> Classification:
        """
        Classify a file.

        Args:
            metadata: Name, extension, size and dates of the file
            extracted_text: Text pulled from the file (may be empty)
            existing_folders: Immediate subfolders of the watched root
            user_prompt: The user's organization instructions
            rename_config: Rename settings, disabled when omitted

        Returns:
            The parsed classification

        Raises:
            ClassificationError: Once retries are exhausted, or immediately
                for rejections and unparseable answers
        """
        prompt = self.build_prompt(
            metadata,
            extracted_text,
            existing_folders,
            user_prompt,
            rename_config or RenameConfig.disabled(),
        )

        response_text = await self._with_retry(lambda: self._call_backend(prompt))
        classification = parse_classification(response_text)

        logger.debug(f"Classified {metadata.name} -> {classification.folder}")
        return classification

    # Retry ---------------------------------------------------------------------------

    async def _with_retry(self, operation: Callable[[], Awaitable[str]]) -> str:
        last_error: Optional[ClassificationError] = None

        for attempt in range(self.max_attempts):
            try:
                return await operation()
            except ClassificationError as e:
                if not e.retryable:
                    raise
                last_error = e

                if attempt < self.max_attempts - 1:
                    delay = self.base_delay * (2 ** attempt)
                    logger.warning(
                        f"Classification attempt {attempt + 1}/{self.max_attempts} failed, "
                        f"retrying in {delay:.1f}s: {e}"
                    )
                    await self._sleep(delay)

        raise last_error

    # Backends ------------------------------------------------------------------------

    async def _call_backend(self, prompt: str) -> str:
        backend = self.backend
        if isinstance(backend, OllamaBackend):
            return await self._call_ollama(prompt, backend)
        if isinstance(backend, OpenAIBackend):
            return await self._call_openai(prompt, backend)
        raise TypeError(f"Unsupported backend: {backend!r}")

    async def _post(self, url: str, payload: Dict[str, Any], timeout: float,
                    headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self.transport) as client:
                response = await client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise TransportError(f"Request to {url} timed out after {timeout:.0f}s") from e
        except httpx.HTTPError as e:
            raise TransportError(f"Request to {url} failed: {e}") from e

        if response.status_code != 200:
            message = f"HTTP {response.status_code}: {response.text[:500]}"
            if response.status_code in NON_RETRYABLE_STATUS:
                raise RejectedError(message, response.status_code)
            raise TransportError(message, response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            raise InvalidResponseError(f"Response is not JSON: {response.text[:500]}") from e

        if not isinstance(data, dict):
            raise InvalidResponseError(f"Unexpected response body: {response.text[:500]}")
        return data

    async def _call_ollama(self, prompt: str, backend: OllamaBackend) -> str:
        data = await self._post(
            f"{backend.base_url.rstrip('/')}/api/generate",
            {
                "model": backend.model,
                "prompt": prompt,
                "stream": False,
                "options": {
                    "temperature": backend.temperature,
                    "num_predict": backend.num_predict,
                },
            },
            timeout=backend.timeout,
        )

        text = data.get("response")
        if not isinstance(text, str):
            raise InvalidResponseError("Ollama response missing 'response' field")
        return text

    async def _call_openai(self, prompt: str, backend: OpenAIBackend) -> str:
        data = await self._post(
            f"{backend.base_url.rstrip('/')}/v1/chat/completions",
            {
                "model": backend.model,
                "messages": [{"role": "user", "content": prompt}],
                "max_completion_tokens": backend.max_completion_tokens,
            },
            timeout=backend.timeout,
            headers={"Authorization": f"Bearer {backend.api_key}"},
        )

        text = extract_openai_text(data)
        if text is None:
            raise InvalidResponseError(f"No text in response: {str(data)[:500]}")
        return text

    # Prompt --------------------------------------------------------------------------

    def build_prompt(
        self,
        metadata: FileMetadata,
        extracted_text: str,
        existing_folders: List[str],
        user_prompt: str,
        rename_config: RenameConfig,
    ) -> str:
        """Render the single natural-language prompt sent to the backend."""
        created = metadata.created.strftime(DATE_FORMAT) if metadata.created else "unknown"
        modified = metadata.modified.strftime(DATE_FORMAT) if metadata.modified else "unknown"

        text = truncate_text(extracted_text, self.text_budget) if extracted_text else ""
        folders = ", ".join(existing_folders) if existing_folders else "none"

        rename_section, name_example, name_description = _rename_instructions(rename_config)

        return f"""You are a file organizing assistant. Decide the best destination folder for the file described below.

## File information
- Name: {metadata.name}
- Extension: {metadata.extension}
- Size: {format_bytes(metadata.size)}
- Created: {created}
- Modified: {modified}

## File content (extracted text)
{text or "(no text extracted)"}

## Existing subfolders
{folders}

## User's organization rules
{user_prompt}
{rename_section}
## Answer format
Reply with only a single JSON object in the format below. Do not include any other text.
{{"folder": "destination folder", "reason": "short explanation of the choice", "suggestedName": {name_example}}}

- folder: destination folder name (use slashes for subfolders, e.g. "invoices/2024")
- reason: a brief explanation of why this folder was chosen
- suggestedName: {name_description}
"""


def extract_openai_text(data: Dict[str, Any]) -> Optional[str]:
    """
    Pull the answer text out of a chat-completion body.

    Reasoning models may leave ``choices[0].message.content`` empty and put
    the answer in a Responses-style ``output[].content[].text`` list instead.
    """
    choices = data.get("choices")
    if isinstance(choices, list) and choices:
        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if isinstance(content, str) and content:
            return content

    output = data.get("output")
    if isinstance(output, list):
        for item in output:
            if not isinstance(item, dict) or not isinstance(item.get("content"), list):
                continue
            for part in item["content"]:
                text = part.get("text") if isinstance(part, dict) else None
                if isinstance(text, str) and text:
                    return text

    return None


def _rename_instructions(rename_config: RenameConfig) -> tuple[str, str, str]:
    if not rename_config.enabled:
        return "", "null", "null (keep the current file name)"

    if rename_config.mode == RenameMode.RULE_BASED:
        section = f"""
## File rename instructions
Propose a new name for the file in suggestedName by following the user's rule below.
If the rule cannot be followed exactly, propose the name closest to its intent.
Do not include the file extension (it is added automatically).

### Rename rule
{rename_config.rule}
"""
        return section, '"name following the rule"', "file name generated from the rule (no extension)"

    section = """
## File rename instructions
Propose a descriptive, human-friendly file name in suggestedName based on the file's content.
- Keep it short and specific to the content
- If a date is known, put it first as YYYY-MM-DD (e.g. "2024-03-15_invoice_ACME")
- Use underscores (_) instead of spaces
- Do not include the file extension (it is added automatically)
- Propose a consistent name even when the current one is already clear
"""
    return section, '"proposed file name"', "proposed file name (no extension)"
