from __future__ import annotations


class PipelineError(RuntimeError): ...

class ConfigurationError(PipelineError):
    """Missing credential or unusable setup. Aborts the run before any contact is touched."""

class ExternalServiceError(PipelineError): ...

class SearchUnavailable(ExternalServiceError):
    """Search backend could not be reached (distinct from an empty result page)."""

class LLMNotReady(ExternalServiceError): ...

class VerificationError(ExternalServiceError): ...

class DeliveryError(ExternalServiceError): ...

class StoreError(ExternalServiceError): ...

class UniqueViolation(StoreError):
    """Insert collided with a unique constraint (e.g. contacts.email)."""

class ModelOutputError(PipelineError):
    """Model reply could not be parsed, even after one repair pass."""

class MissingDraft(PipelineError): ...

class MissingIdentity(PipelineError): ...

class SentNotRecorded(PipelineError):
    """Provider accepted the email but the store update that follows failed."""
