from typing import Generator

from sqlmodel import Session

from onboardsign.db.session import get_session
from onboardsign.services.signature_provider import SignatureProvider, get_signature_provider


def get_db() -> Generator[Session, None, None]:
    yield from get_session()


def get_provider() -> SignatureProvider:
    return get_signature_provider()
