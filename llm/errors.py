"""Exception types raised across the message-response pipeline."""


class OrganizationNotFoundError(RuntimeError):
    """Inbound message addressed to an unknown organization."""

    def __init__(self, org_id: str):
        super().__init__(f"Organization '{org_id}' not found")
        self.org_id = org_id


class RetrievalError(RuntimeError):
    """Embedding or vector search failed."""


class LLMCallError(RuntimeError):
    """The LLM provider call failed."""


class TransportNotReadyError(RuntimeError):
    """Send attempted on a transport that is not in the ready state."""


class TransportSendError(RuntimeError):
    """The transport accepted the send but delivery failed."""


class EscalationCreateError(RuntimeError):
    """Writing an escalation ticket failed."""
