import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./nda.db")
SECRET_KEY = os.getenv("SECRET_KEY", "devsecret")
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

MINIO_ENDPOINT = os.getenv("MINIO_ENDPOINT", "minio:9000")
MINIO_ACCESS_KEY = os.getenv("MINIO_ACCESS_KEY", "minioadmin")
MINIO_SECRET_KEY = os.getenv("MINIO_SECRET_KEY", "minioadmin")
MINIO_BUCKET = os.getenv("MINIO_BUCKET", "signing")

REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")
WORKER_QUEUE = os.getenv("WORKER_QUEUE", "signing")
CELERY_TASK_ALWAYS_EAGER = os.getenv("CELERY_TASK_ALWAYS_EAGER", "0") == "1"

DIRECTORY_API_URL = os.getenv("DIRECTORY_API_URL", "http://directory:8080/api")
DIRECTORY_API_TOKEN = os.getenv("DIRECTORY_API_TOKEN")

HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "10"))
HTTP_MAX_RETRIES = int(os.getenv("HTTP_MAX_RETRIES", "2"))
HTTP_RETRY_BACKOFF_SECONDS = float(os.getenv("HTTP_RETRY_BACKOFF_SECONDS", "0.5"))
METADATA_CONFLICT_RETRIES = int(os.getenv("METADATA_CONFLICT_RETRIES", "3"))

DROPBOX_SIGN_API_KEY = os.getenv("DROPBOX_SIGN_API_KEY")
DROPBOX_SIGN_CLIENT_ID = os.getenv("DROPBOX_SIGN_CLIENT_ID")
DROPBOX_SIGN_API_URL = os.getenv("DROPBOX_SIGN_API_URL", "https://api.hellosign.com/v3")

SIGNED_DOCUMENT_BASE_URL = os.getenv("SIGNED_DOCUMENT_BASE_URL", "https://storage.street2ivy.com")
