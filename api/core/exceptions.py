"""
Error taxonomy for the recommendation pipeline.

Recoverable errors are caught by the component that compensates for them:
the retriever falls back to SQL on embedding/vector errors, the engine falls
back to heuristic scoring on LLM errors. Everything else propagates.
"""


class RecommendationError(Exception):
    """Base class for recommendation pipeline errors"""


class ProfileMissing(RecommendationError):
    """No stored profile exists for the requested user"""

    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__(f"No profile found for user {user_id}")


class NoCandidates(RecommendationError):
    """Retrieval produced no eligible products"""


class EmbeddingError(RecommendationError):
    """Base class for embedding gateway failures"""


class EmbeddingUnavailable(EmbeddingError):
    """No embedding provider is configured"""


class EmbeddingProviderError(EmbeddingError):
    """The embedding provider failed, timed out or returned nothing"""


class VectorSearchError(RecommendationError):
    """Stored embeddings could not be loaded or ranked"""


class LLMError(RecommendationError):
    """Base class for language-model failures"""


class LLMProviderUnavailable(LLMError):
    """The LLM provider is disabled or has no credentials"""


class LLMProviderError(LLMError):
    """Transport, authentication or timeout failure talking to the LLM"""


class LLMContractViolation(LLMError):
    """The LLM response could not be parsed or validated"""

    def __init__(self, message: str, raw_response: str = None):
        self.raw_response = raw_response
        super().__init__(message)


class PersistenceError(RecommendationError):
    """A recommendation row could not be written"""


class StorageUnavailable(RecommendationError):
    """The product/profile store could not be read"""

    def __init__(self, message: str = "Recommendation storage is unavailable"):
        super().__init__(message)
