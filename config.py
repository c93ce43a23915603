import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        default_total_available_cents: int,
        reimbursement_category: str,
        blob_backend: str,
        blob_root: Path,
        supabase_url: str,
        supabase_service_key: str,
        storage_bucket: str,
        storage_timeout_secs: float,
    ) -> None:
        self.database_url = database_url
        self.default_total_available_cents = default_total_available_cents
        self.reimbursement_category = reimbursement_category
        self.blob_backend = blob_backend
        self.blob_root = blob_root
        self.supabase_url = supabase_url
        self.supabase_service_key = supabase_service_key
        self.storage_bucket = storage_bucket
        self.storage_timeout_secs = storage_timeout_secs


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    default_total_available_cents = int(
        os.getenv("FINANCE_DEFAULT_BUDGET_CENTS", "0")
    )
    reimbursement_category = os.getenv(
        "FINANCE_REIMBURSEMENT_CATEGORY", "Reimbursement"
    )
    blob_backend = os.getenv("FINANCE_BLOB_BACKEND", "local")
    blob_root = Path(os.getenv("FINANCE_BLOB_ROOT", str(data_dir / "blobs")))
    supabase_url = os.getenv("SUPABASE_URL", "")
    supabase_service_key = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
    storage_bucket = os.getenv("FINANCE_STORAGE_BUCKET", "reimbursements")
    storage_timeout_secs = float(os.getenv("FINANCE_STORAGE_TIMEOUT_SECS", "10"))
    return Settings(
        database_url=database_url,
        default_total_available_cents=default_total_available_cents,
        reimbursement_category=reimbursement_category,
        blob_backend=blob_backend,
        blob_root=blob_root,
        supabase_url=supabase_url,
        supabase_service_key=supabase_service_key,
        storage_bucket=storage_bucket,
        storage_timeout_secs=storage_timeout_secs,
    )
