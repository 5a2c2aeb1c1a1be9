import json

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Meta webhook
    WEBHOOK_VERIFICATION_TOKEN: str = ""
    APP_SECRET: str = ""  # Signs x-hub-signature-256

    # WhatsApp Cloud API
    ACCESS_TOKEN: str = ""
    PHONE_ID: str = ""
    GRAPH_API_URL: str = "https://graph.facebook.com/v21.0"
    HTTP_TIMEOUT_SECONDS: float = 30.0

    # Gemini
    GEMINI_API_KEY: str = ""
    GEMINI_MODEL: str = "gemini-1.5-flash"

    # Conversational Agent (Dialogflow CX)
    GCP_SERVICE_ACCOUNT_JSON: str = ""
    CA_PROJECT_ID: str = ""
    CA_LOCATION: str = ""
    CA_AGENT_ID: str = ""
    CA_LANGUAGE_CODE: str = "en"

    # Observability
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    def service_account_info(self) -> dict:
        """Parse GCP_SERVICE_ACCOUNT_JSON into a credentials dict.

        Raises:
            ValueError: the variable is unset, is not valid JSON, or lacks
                ``client_email`` / ``private_key``.
        """
        if not self.GCP_SERVICE_ACCOUNT_JSON:
            raise ValueError("GCP_SERVICE_ACCOUNT_JSON environment variable is not set")
        try:
            info = json.loads(self.GCP_SERVICE_ACCOUNT_JSON)
        except json.JSONDecodeError as exc:
            raise ValueError("Invalid JSON in GCP_SERVICE_ACCOUNT_JSON environment variable") from exc
        if not isinstance(info, dict) or not info.get("client_email") or not info.get("private_key"):
            raise ValueError("Invalid service account JSON: missing client_email or private_key")
        return info


settings = Settings()
