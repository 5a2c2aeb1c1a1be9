"""Error taxonomy for webhook handling and the per-message pipelines.

``SignatureInvalid``, ``InvalidPayload`` and ``UnknownEventSource`` end the
whole request. The rest are caught per message by the dispatcher and turned
into an apology reply.
"""


class AgentError(RuntimeError):
    @property
    def kind(self) -> str:
        return type(self).__name__


class SignatureInvalid(AgentError):
    pass


class InvalidPayload(AgentError):
    pass


class UnknownEventSource(AgentError):
    pass


class MediaUnavailable(AgentError):
    pass


class AnalysisFailed(AgentError):
    pass


class IntentResolutionFailed(AgentError):
    pass


class DeliveryFailed(AgentError):
    pass


# Not raised: recorded as MessageOutcome.error_kind for the unsupported branch.
UNSUPPORTED_MESSAGE_TYPE = "UnsupportedMessageType"
