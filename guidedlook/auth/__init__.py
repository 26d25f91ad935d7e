from .identity import IdentityVerifier, bearer_token

__all__ = ["IdentityVerifier", "bearer_token"]
