import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Union

from jose import jwt
from jose.exceptions import JWTError
from werkzeug.security import check_password_hash, generate_password_hash

CREDENTIAL_ALGORITHM = "HS256"
# Anything longer than this is not something our QR codes carry.
MAX_TOKEN_LENGTH = 2048

_REQUIRED_CLAIMS = ("uid", "eid", "rid", "nonce")


@dataclass(frozen=True)
class Credential:
    user_id: str
    event_id: str
    registration_id: str
    nonce: str


@dataclass(frozen=True)
class DecodeError:
    reason: str


def mint_credential(user_id: str, event_id: str, registration_id: str, secret: str) -> str:
    payload = {
        "uid": user_id,
        "eid": event_id,
        "rid": registration_id,
        "nonce": uuid.uuid4().hex,
        "iat": int(datetime.now(timezone.utc).timestamp()),
    }
    return jwt.encode(payload, secret, algorithm=CREDENTIAL_ALGORITHM)


def decode_credential(token: Union[str, bytes], secret: str) -> Union[Credential, DecodeError]:
    """Parse scanned text back into a Credential.

    Scanned text is hostile input, so this never raises: every malformed,
    oversized or forged token comes back as a DecodeError.
    """
    if isinstance(token, bytes):
        try:
            token = token.decode("ascii")
        except UnicodeDecodeError:
            return DecodeError("NOT_TEXT")
    if not isinstance(token, str):
        return DecodeError("NOT_TEXT")

    token = token.strip()
    if not token or len(token) > MAX_TOKEN_LENGTH:
        return DecodeError("BAD_LENGTH")

    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[CREDENTIAL_ALGORITHM],
            options={"verify_exp": False},
        )
    except (JWTError, ValueError, TypeError, KeyError, AttributeError):
        return DecodeError("INVALID_TOKEN")

    if not isinstance(payload, dict):
        return DecodeError("INVALID_TOKEN")
    for claim in _REQUIRED_CLAIMS:
        value = payload.get(claim)
        if not isinstance(value, str) or not value:
            return DecodeError("MISSING_CLAIM")

    return Credential(
        user_id=payload["uid"],
        event_id=payload["eid"],
        registration_id=payload["rid"],
        nonce=payload["nonce"],
    )


# --- Session tokens (login) ---

def create_session_token(user_id: str, secret: str, algorithm: str = "HS256", ttl_minutes: int = 60 * 24 * 7) -> str:
    exp = int((datetime.now(timezone.utc) + timedelta(minutes=ttl_minutes)).timestamp())
    return jwt.encode({"sub": user_id, "exp": exp}, secret, algorithm=algorithm)


def read_session_token(token: str, secret: str, algorithm: str = "HS256") -> str | None:
    try:
        payload = jwt.decode(token, secret, algorithms=[algorithm])
    except JWTError:
        return None
    sub = payload.get("sub")
    return sub if isinstance(sub, str) else None


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password_hash: str, password: str) -> bool:
    try:
        return check_password_hash(password_hash, password)
    except ValueError:
        # unknown hash method or a placeholder value
        return False
