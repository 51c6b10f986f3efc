"""
Security module.

Caller identity and token verification, shared by the chat API and the edge
proxy. Kept as a layer over the business logic: services only ever see the
resolved Identity.
"""

from .identity import (
    Identity,
    TokenVerifier,
    get_identity,
    get_token_verifier,
    is_valid_guest_id,
    new_guest_id,
    require_authenticated
)

__all__ = [
    'Identity',
    'TokenVerifier',
    'get_identity',
    'get_token_verifier',
    'is_valid_guest_id',
    'new_guest_id',
    'require_authenticated'
]
