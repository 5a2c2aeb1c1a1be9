# Shared fixtures for the webhook, dispatcher and service tests.
#
# NOTE: We set the env vars here before any whatsapp_agent module is imported,
# so that Settings() picks up deterministic test values instead of a real .env.

import os

os.environ.setdefault("WEBHOOK_VERIFICATION_TOKEN", "test-verify-token")
os.environ.setdefault("APP_SECRET", "test-app-secret")
os.environ.setdefault("ACCESS_TOKEN", "test-access-token")
os.environ.setdefault("PHONE_ID", "1234567890")
os.environ.setdefault("GRAPH_API_URL", "https://graph.test/v21.0")
os.environ.setdefault("GEMINI_API_KEY", "test-gemini-key")
os.environ.setdefault("CA_PROJECT_ID", "test-project")
os.environ.setdefault("CA_LOCATION", "global")
os.environ.setdefault("CA_AGENT_ID", "test-agent")

from unittest.mock import AsyncMock  # noqa: E402

import pytest  # noqa: E402

APP_SECRET = os.environ["APP_SECRET"]


class FakeWhatsApp:
    """Records sends; media lookups are an AsyncMock tests can reconfigure."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.fetch_media = AsyncMock()
        self.send_error: Exception | None = None

    async def send_text_message(self, to: str, body: str) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((to, body))


@pytest.fixture
def fake_whatsapp() -> FakeWhatsApp:
    return FakeWhatsApp()


@pytest.fixture
def fake_analyzer():
    analyzer = AsyncMock()
    analyzer.analyze_audio.return_value = "audio synopsis"
    analyzer.analyze_image.return_value = "image synopsis"
    analyzer.analyze_document.return_value = "document synopsis"
    analyzer.analyze_video.return_value = "video synopsis"
    return analyzer


@pytest.fixture
def fake_resolver():
    resolver = AsyncMock()
    resolver.resolve.return_value = "agent reply"
    return resolver


@pytest.fixture
def dispatcher(fake_whatsapp, fake_analyzer, fake_resolver):
    from whatsapp_agent.dispatcher import MessageDispatcher

    return MessageDispatcher(
        whatsapp=fake_whatsapp,
        analyzer=fake_analyzer,
        resolver=fake_resolver,
        app_secret=APP_SECRET,
    )

