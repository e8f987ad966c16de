"""Authentication infrastructure: bearer token verification."""

from confession_service.infra.auth.tokens import TokenVerifier, get_token_verifier, reset_token_verifier

__all__ = ["TokenVerifier", "get_token_verifier", "reset_token_verifier"]
