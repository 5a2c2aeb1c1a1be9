"""Gemini multimodal content analysis.

Turns raw media (audio, image, document, video) into a natural-language
synopsis the conversational agent can act on. The bytes are sent inline with
the prompt; nothing is uploaded or stored.
"""

import structlog
from google import genai
from google.genai import types

from whatsapp_agent.config import settings
from whatsapp_agent.errors import AnalysisFailed

logger = structlog.get_logger()

AUDIO_PROMPT = """Transcribe and analyze this audio. Provide:
1. Complete transcription of the speech
2. Summary of main points
3. Sentiment or tone of the message"""

_DOCUMENT_SUMMARY_POINTS = """provide a comprehensive summary including:
1. Main topic and purpose
2. Key points and findings
3. Important details or data
4. Overall conclusion"""


# ---------------------------------------------------------------------------
# Prompt builders
# ---------------------------------------------------------------------------


def image_prompt(caption: str | None = None) -> str:
    if caption:
        return (
            f'The user sent this image with the caption: "{caption}". '
            "Analyze the image and describe what you see."
        )
    return "Analyze this image and provide a detailed description of what you see."


def video_prompt(caption: str | None = None) -> str:
    if caption:
        return (
            f'The user sent this video with the caption: "{caption}". '
            "Analyze the video and respond accordingly."
        )
    return "Analyze this video and provide a summary of its content."


def document_prompt(filename: str | None = None) -> str:
    if filename:
        return f"Analyze this document ({filename}) and {_DOCUMENT_SUMMARY_POINTS}"
    return f"Analyze this document and {_DOCUMENT_SUMMARY_POINTS}"


# ---------------------------------------------------------------------------
# Analyzer
# ---------------------------------------------------------------------------


class ContentAnalyzer:
    """Wraps a google-genai client. The client is created lazily so a missing
    API key surfaces as AnalysisFailed on first use, not at startup."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        client: genai.Client | None = None,
    ) -> None:
        self.api_key = settings.GEMINI_API_KEY if api_key is None else api_key
        self.model = model or settings.GEMINI_MODEL
        self._client = client

    def _get_client(self) -> genai.Client:
        if self._client is None:
            if not self.api_key:
                raise AnalysisFailed("GEMINI_API_KEY not configured")
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def _generate(self, contents: list, log) -> str:
        client = self._get_client()
        try:
            response = await client.aio.models.generate_content(model=self.model, contents=contents)
        except Exception as exc:
            log.error("gemini_request_failed", error=str(exc))
            raise AnalysisFailed(f"Gemini request failed: {exc}") from exc

        candidates = response.candidates or []
        if candidates and candidates[0].finish_reason == types.FinishReason.MAX_TOKENS:
            log.error("gemini_response_truncated")
            raise AnalysisFailed("Gemini response was truncated by the token limit")

        text = (response.text or "").strip()
        if not text:
            log.error("gemini_empty_response")
            raise AnalysisFailed("Gemini returned no text")
        return text

    async def analyze(self, data: bytes, mime_type: str, prompt: str) -> str:
        """Send *data* inline with *prompt* and return the model's synopsis.

        Raises:
            AnalysisFailed: missing key, upstream error, empty or truncated output.
        """
        log = logger.bind(mime_type=mime_type, size=len(data), model=self.model)
        contents = [prompt, types.Part.from_bytes(data=data, mime_type=mime_type)]
        text = await self._generate(contents, log)
        log.info("gemini_analysis_ready", length=len(text))
        return text

    async def analyze_image(self, data: bytes, mime_type: str, caption: str | None = None) -> str:
        return await self.analyze(data, mime_type, image_prompt(caption))

    async def analyze_video(self, data: bytes, mime_type: str, caption: str | None = None) -> str:
        return await self.analyze(data, mime_type, video_prompt(caption))

    async def analyze_document(self, data: bytes, mime_type: str, filename: str | None = None) -> str:
        return await self.analyze(data, mime_type, document_prompt(filename))

    async def analyze_audio(self, data: bytes, mime_type: str) -> str:
        return await self.analyze(data, mime_type, AUDIO_PROMPT)
