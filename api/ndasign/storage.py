from minio import Minio
from .config import MINIO_ENDPOINT, MINIO_ACCESS_KEY, MINIO_SECRET_KEY, MINIO_BUCKET, SIGNED_DOCUMENT_BASE_URL
import io

_client = Minio(
    MINIO_ENDPOINT,
    access_key=MINIO_ACCESS_KEY,
    secret_key=MINIO_SECRET_KEY,
    secure=False
)

def signed_nda_key(request_id: str) -> str:
    return f"signed-ndas/{request_id}.pdf"

def signed_nda_url(request_id: str) -> str:
    return f"{SIGNED_DOCUMENT_BASE_URL.rstrip('/')}/{signed_nda_key(request_id)}"

def ensure_bucket():
    if not _client.bucket_exists(MINIO_BUCKET):
        _client.make_bucket(MINIO_BUCKET)

def put_bytes(key: str, data: bytes, content_type: str = "application/octet-stream"):
    ensure_bucket()
    _client.put_object(MINIO_BUCKET, key, io.BytesIO(data), length=len(data), content_type=content_type)
