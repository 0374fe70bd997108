"""
aegis.identity.token

Projected service account tokens mounted into the operator pod.
"""

import os
from typing import Any, Dict

import jwt

from ..exceptions import InvalidTokenError, TokenNotFoundError


class ProjectedToken:
    """A JWT read from a projected service account token file."""

    def __init__(self, token_path: str):
        """
        Initialize a projected token.

        Args:
            token_path: Path to the token file
        """
        self.token_path = token_path

    def read(self) -> str:
        """
        Read the raw token.

        The file is read on every call: kubelet rotates projected tokens in
        place.
        """
        if not os.path.exists(self.token_path):
            raise TokenNotFoundError(
                f"Token not found at {self.token_path}. "
                "Ensure the projected token volume is mounted."
            )

        try:
            with open(self.token_path, "r") as f:
                token = f.read().strip()
        except IOError as e:
            raise TokenNotFoundError(
                f"Failed to read token from {self.token_path}: {e}"
            ) from e

        if not token:
            raise TokenNotFoundError(f"Token file {self.token_path} is empty")

        return token

    def claims(self) -> Dict[str, Any]:
        """Return the token claims."""
        token = self.read()
        try:
            # Decode without verification (the API server signs these tokens)
            return jwt.decode(token, options={"verify_signature": False})
        except jwt.DecodeError as e:
            raise InvalidTokenError(
                f"Failed to decode JWT token from {self.token_path}: {e}"
            ) from e

    def issuer(self) -> str:
        """Return the cluster OIDC issuer from the 'iss' claim."""
        issuer = self.claims().get("iss")
        if not isinstance(issuer, str) or not issuer:
            raise InvalidTokenError(
                f"Token at {self.token_path} does not contain an 'iss' claim"
            )
        return issuer
