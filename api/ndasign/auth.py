from typing import Optional
from fastapi import Header, Query
from itsdangerous import BadSignature

from .errors import AuthenticationRequired, AuthorizationDenied
from .schemas import Caller
from .utils import read_token

CORPORATE_PARTNER = "corporate-partner"


def resolve_caller(
    x_access_token: Optional[str] = Header(default=None, alias="X-Access-Token"),
    token: Optional[str] = Query(default=None),
) -> Caller:
    candidate = x_access_token or token
    if not candidate:
        raise AuthenticationRequired("Authentication required.")
    try:
        data = read_token(candidate)
    except BadSignature:
        raise AuthenticationRequired("Invalid access token.")
    if not isinstance(data, dict) or not data.get("user_id"):
        raise AuthenticationRequired("Invalid access token.")
    return Caller(**data)


def require_listing_owner(caller: Caller, listing) -> None:
    if caller.role != CORPORATE_PARTNER:
        raise AuthorizationDenied("Only corporate partners can upload NDA documents.")
    if listing.author_id != caller.user_id:
        raise AuthorizationDenied("Only the listing owner can upload its NDA document.")


def require_provider(transaction, user_id: str) -> None:
    if transaction.provider.id != user_id:
        raise AuthorizationDenied("Only the corporate partner can initiate signature requests.")


def require_party(signers, user_id: str, message: str = "You are not a party to this NDA."):
    for signer in signers:
        if signer.user_id == user_id:
            return signer
    raise AuthorizationDenied(message)
