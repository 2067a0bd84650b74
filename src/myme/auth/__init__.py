"""OAuth2 credentials for GitHub and Google.

Created: 2026-09-02

Token persistence, the browser authorization-code flow (CSRF + PKCE),
and the refresh policy used by every authenticated request.
"""

from myme.auth.flow import FlowState, OAuthFlow, OAuthSession
from myme.auth.oauth import OAuthManager
from myme.auth.providers import GitHubProvider, GoogleProvider, OAuthProvider
from myme.auth.token_store import TokenSet, TokenStore

__all__ = [
    "FlowState",
    "GitHubProvider",
    "GoogleProvider",
    "OAuthFlow",
    "OAuthManager",
    "OAuthProvider",
    "OAuthSession",
    "TokenSet",
    "TokenStore",
]
