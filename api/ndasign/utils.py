import hashlib, json, logging, re, secrets, time
from datetime import datetime
from html import escape
import httpx
from itsdangerous import URLSafeSerializer
from .config import SECRET_KEY, HTTP_MAX_RETRIES, HTTP_RETRY_BACKOFF_SECONDS
from .errors import ExternalProviderError

logger = logging.getLogger(__name__)

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")

def sanitize_text(text, max_length: int = 50000) -> str:
    if not text or not isinstance(text, str):
        return ""
    cleaned = text[:max_length].replace("\0", "")
    cleaned = _CONTROL_CHARS.sub("", cleaned)
    return escape(cleaned, quote=True)

def sha256_bytes(b: bytes) -> str:
    return hashlib.sha256(b).hexdigest()

def canonical_json(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)

def new_id(prefix: str) -> str:
    return f"{prefix}_{int(time.time() * 1000)}_{secrets.token_hex(5)}"

def utcnow() -> datetime:
    return datetime.utcnow()

def isoformat(value):
    if value is None:
        return None
    return value.isoformat() + "Z"

def make_token(payload: dict) -> str:
    s = URLSafeSerializer(SECRET_KEY, salt="session")
    return s.dumps(payload)

def read_token(token: str) -> dict:
    s = URLSafeSerializer(SECRET_KEY, salt="session")
    return s.loads(token)

def call_with_retries(fn, retry_on, attempts: int = None, backoff: float = None, label: str = "call"):
    """Run ``fn`` and retry on ``retry_on`` exceptions with linear backoff.

    The last exception is re-raised once the budget is spent.
    """
    attempts = (HTTP_MAX_RETRIES if attempts is None else attempts) + 1
    backoff = HTTP_RETRY_BACKOFF_SECONDS if backoff is None else backoff
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except retry_on as exc:
            if attempt == attempts:
                raise
            logger.warning("%s failed (attempt %s/%s): %s", label, attempt, attempts, exc)
            if backoff:
                time.sleep(backoff * attempt)

class TransientHttpError(Exception):
    pass

def send_with_retries(client: httpx.Client, method: str, url: str, label: str, **kwargs) -> httpx.Response:
    """Send a request, retrying transport errors and 5xx responses.

    Raises ExternalProviderError once the retry budget is exhausted; any other
    response (including 4xx) is returned for the caller to interpret.
    """
    def attempt():
        try:
            resp = client.request(method, url, **kwargs)
        except httpx.TransportError as exc:
            raise TransientHttpError(f"{method} {url}: {exc}") from exc
        if resp.status_code >= 500:
            raise TransientHttpError(f"{method} {url} -> {resp.status_code}")
        return resp

    try:
        return call_with_retries(attempt, TransientHttpError, label=label)
    except TransientHttpError as exc:
        logger.error("%s gave up: %s", label, exc)
        raise ExternalProviderError(f"{label} is unavailable, please retry.") from exc

def json_body(resp: httpx.Response, label: str) -> dict:
    """Decode a successful response; an unreadable body counts as a provider failure."""
    if not resp.content:
        return {}
    try:
        return resp.json()
    except ValueError as exc:
        logger.error("%s returned a non-JSON body (%s): %s", label, resp.status_code, resp.text[:200])
        raise ExternalProviderError(f"{label} returned an unreadable response.") from exc
