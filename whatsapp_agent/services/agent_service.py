"""Conversational Agent (Dialogflow CX) intent resolution.

Each WhatsApp sender maps to one agent session, so the agent keeps
multi-turn context across separate webhook deliveries.
"""

import structlog
from google.cloud import dialogflowcx_v3
from google.oauth2 import service_account

from whatsapp_agent.config import settings
from whatsapp_agent.errors import IntentResolutionFailed

logger = structlog.get_logger()

SESSION_PREFIX = "meta-whatsapp-"
FALLBACK_REPLY = "I'm sorry, I didn't understand that. Could you please rephrase?"


def session_id_for(sender: str) -> str:
    return f"{SESSION_PREFIX}{sender}"


def extract_reply_text(response_messages) -> str:
    """Join every non-empty text fragment in order; "" if there are none."""
    fragments: list[str] = []
    for message in response_messages or []:
        text = getattr(message, "text", None)
        for fragment in getattr(text, "text", None) or []:
            if fragment and fragment.strip():
                fragments.append(fragment)
    return "\n".join(fragments)


class IntentResolver:
    def __init__(
        self,
        project_id: str | None = None,
        location: str | None = None,
        agent_id: str | None = None,
        language_code: str | None = None,
        client: dialogflowcx_v3.SessionsAsyncClient | None = None,
    ) -> None:
        self.project_id = settings.CA_PROJECT_ID if project_id is None else project_id
        self.location = settings.CA_LOCATION if location is None else location
        self.agent_id = settings.CA_AGENT_ID if agent_id is None else agent_id
        self.language_code = language_code or settings.CA_LANGUAGE_CODE
        self._client = client

    def _get_client(self) -> dialogflowcx_v3.SessionsAsyncClient:
        if self._client is None:
            try:
                info = settings.service_account_info()
                credentials = service_account.Credentials.from_service_account_info(info)
            except ValueError as exc:
                raise IntentResolutionFailed(str(exc)) from exc
            client_options = None
            if self.location and self.location != "global":
                client_options = {"api_endpoint": f"{self.location}-dialogflow.googleapis.com"}
            self._client = dialogflowcx_v3.SessionsAsyncClient(
                credentials=credentials, client_options=client_options
            )
        return self._client

    def session_path(self, sender: str) -> str:
        if not self.project_id or not self.location or not self.agent_id:
            raise IntentResolutionFailed(
                "Missing Conversational Agent configuration. "
                "Required: CA_PROJECT_ID, CA_LOCATION, CA_AGENT_ID"
            )
        return dialogflowcx_v3.SessionsAsyncClient.session_path(
            self.project_id, self.location, self.agent_id, session_id_for(sender)
        )

    async def resolve(self, text: str, sender: str, parameters: dict | None = None) -> str:
        """Send *text* to the sender's agent session and return the agent's reply.

        Optional *parameters* are set as session parameters on the query.
        Never returns an empty string: an answer with no text falls back to
        FALLBACK_REPLY.

        Raises:
            IntentResolutionFailed: credentials/configuration missing or the
                agent call failed.
        """
        session = self.session_path(sender)
        client = self._get_client()
        log = logger.bind(session_id=session_id_for(sender))

        request = dialogflowcx_v3.DetectIntentRequest(
            session=session,
            query_input=dialogflowcx_v3.QueryInput(
                text=dialogflowcx_v3.TextInput(text=text),
                language_code=self.language_code,
            ),
        )
        if parameters:
            request.query_params = dialogflowcx_v3.QueryParameters(parameters=parameters)

        log.info("agent_query_sent", query_length=len(text))
        try:
            response = await client.detect_intent(request=request)
        except Exception as exc:
            log.error("agent_request_failed", error=str(exc))
            raise IntentResolutionFailed(f"Failed to get response from Conversational Agent: {exc}") from exc

        query_result = response.query_result
        reply = extract_reply_text(query_result.response_messages)

        matched = getattr(query_result, "match", None)
        intent_name = getattr(getattr(matched, "intent", None), "display_name", "")
        if intent_name:
            log.info("agent_intent_matched", intent=intent_name, confidence=getattr(matched, "confidence", None))

        if not reply:
            log.warning("agent_empty_reply")
            return FALLBACK_REPLY
        return reply
