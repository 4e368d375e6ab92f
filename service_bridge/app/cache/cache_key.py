"""Cache key generation logic."""

from dataclasses import dataclass

SEPARATOR = ":"


@dataclass(frozen=True)
class CacheKey:
    """
    Opaque key into the shared cache store.

    Keys are built from ordered string elements joined with ``:``. Use the
    classmethod factories rather than the constructor so every writer and
    reader of an entry derives the same key.
    """

    key: str

    @classmethod
    def etag(cls, model: str, *keys: str) -> "CacheKey":
        """
        Key holding the modifiedOn timestamp of an entity.

        Example:
            >>> str(CacheKey.etag("Study", "api", "study1"))
            'api:study1:Study:Etag'
        """
        if not keys:
            raise ValueError("Etag cache key requires at least one key value")
        return cls(SEPARATOR.join([*keys, model, "Etag"]))

    @classmethod
    def user_session(cls, session_token: str) -> "CacheKey":
        """Key holding a serialized user session."""
        return cls(SEPARATOR.join([session_token, "session"]))

    @classmethod
    def study(cls, app_id: str, study_id: str) -> "CacheKey":
        return cls(SEPARATOR.join([app_id, study_id, "Study"]))

    @classmethod
    def schedule(cls, app_id: str, study_id: str) -> "CacheKey":
        return cls(SEPARATOR.join([app_id, study_id, "Schedule"]))

    def __str__(self) -> str:
        return self.key
