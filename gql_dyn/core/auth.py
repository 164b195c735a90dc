"""Header providers for requests and subscription streams.

Providers are asked for headers on every dispatch, so changing a
provider's headers affects the next request without rebuilding the
client. Concurrent changes are last-writer-wins.
"""

from typing import Dict, Protocol, runtime_checkable


@runtime_checkable
class Auth(Protocol):
    """Protocol for header providers.

    Example:
        class TenantAuth:
            def __init__(self, session):
                self.session = session

            def get_headers(self) -> dict[str, str]:
                return {"Authorization": f"Bearer {self.session.token}",
                        "X-Tenant": self.session.tenant}
    """

    def get_headers(self) -> Dict[str, str]:
        """Return headers to include in the next request."""
        ...


class BearerAuth:
    """Bearer token authentication; the token can be swapped at runtime."""

    def __init__(self, token: str):
        self.token = token

    def set_token(self, token: str):
        self.token = token

    def get_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


class HeaderAuth:
    """A mutable set of headers.

    Example:
        auth = HeaderAuth({"X-Api-Key": "key123"})
        auth.set("Authorization", "Bearer new-token")
        auth.remove("X-Api-Key")
    """

    def __init__(self, headers: Dict[str, str] | None = None):
        self._headers = dict(headers or {})

    def set(self, name: str, value: str):
        self._headers[name] = value

    def update(self, headers: Dict[str, str]):
        self._headers.update(headers)

    def remove(self, name: str):
        self._headers.pop(name, None)

    def get_headers(self) -> Dict[str, str]:
        return self._headers.copy()


class NoAuth:
    """No headers (public endpoints and tests)."""

    def get_headers(self) -> Dict[str, str]:
        return {}
