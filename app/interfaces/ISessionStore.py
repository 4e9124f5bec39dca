from abc import ABC, abstractmethod

from app.domain.models import Session


class ISessionStore(ABC):
    """
    Session persistence keyed by `user:<id>` or `session:<id>`.

    Every write resets the record's expiry to the full TTL window.
    """

    @abstractmethod
    def get(self, key: str) -> Session:
        """Return the stored session, creating and persisting an empty one on a miss."""
        pass

    @abstractmethod
    def put(self, key: str, session: Session) -> bool:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass

    @abstractmethod
    def exists(self, key: str) -> bool:
        pass

    def ping(self) -> bool:
        return True
