from __future__ import annotations

import os
from pathlib import Path

try:
    from dotenv import load_dotenv
except Exception:  # pragma: no cover - optional dependency
    load_dotenv = None

if load_dotenv:
    _repo_root = Path(__file__).resolve().parents[3]
    load_dotenv(dotenv_path=_repo_root / ".env")


def _env_int(name: str, default: int) -> int:
    """정수형 환경변수를 안전하게 파싱."""
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except Exception:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except Exception:
        return default


def _env_optional_float(name: str) -> float | None:
    """값이 없거나 0 이하이면 None (제한 없음)."""
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    try:
        value = float(raw)
    except Exception:
        return None
    return value if value > 0 else None


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    return raw in {"1", "true", "True", "yes", "YES"}


def get_api_key() -> str:
    # 호출 시점에 읽는다 (테스트/런타임 중 .env 변경 반영)
    return (os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY") or "").strip()


# ==========================================
# 분석 서비스 (Gemini REST)
# ==========================================

GEMINI_API_BASE = os.getenv("GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
# 0이면 타임아웃 없음: 멈춘 호출은 사용자가 취소할 때까지 배치를 붙잡는다
GEMINI_TIMEOUT_SEC = _env_optional_float("GEMINI_TIMEOUT_SEC")
GEMINI_TEMPERATURE = _env_float("GEMINI_TEMPERATURE", 0.2)

# ==========================================
# 재시도 / 백오프
# ==========================================

ENRICH_MAX_ATTEMPTS = _env_int("ENRICH_MAX_ATTEMPTS", 5)
ENRICH_INITIAL_DELAY_SEC = _env_float("ENRICH_INITIAL_DELAY_SEC", 10.0)
ENRICH_BACKOFF_MULTIPLIER = _env_float("ENRICH_BACKOFF_MULTIPLIER", 1.5)
ENRICH_MAX_DELAY_SEC = _env_optional_float("ENRICH_MAX_DELAY_SEC")

# ==========================================
# 보조 콘텐츠 수집 서비스 (scraper)
# ==========================================

SCRAPER_ENABLED = _env_bool("SCRAPER_ENABLED", True)
SCRAPER_API_URL = os.getenv("SCRAPER_API_URL", "http://localhost:3001").rstrip("/")
SCRAPER_TIMEOUT_SEC = _env_int("SCRAPER_TIMEOUT_SEC", 60)

# ==========================================
# 파이프라인 / 추출
# ==========================================

PIPELINE_PACING_SEC = _env_int("PIPELINE_PACING_SEC", 15)
BODY_MAX_CHARS = _env_int("BODY_MAX_CHARS", 60000)

# ==========================================
# 로컬 저장 경로
# ==========================================

REPO_ROOT = Path(__file__).resolve().parents[3]
DATA_DIR = Path(os.getenv("DATA_DIR", str(REPO_ROOT / "data")))
STORE_DIR = Path(os.getenv("STORE_DIR", str(DATA_DIR / "store")))
# 시작 시 읽는 외부 시드 폴더
BACKUP_DIR = Path(os.getenv("BACKUP_DIR", str(DATA_DIR / "bd")))
BACKUP_LOOKBACK_DAYS = _env_int("BACKUP_LOOKBACK_DAYS", 30)
# 날짜별 백업(export --backup) 저장 위치. open()은 이 폴더를 읽지 않는다
EXPORT_DIR = Path(os.getenv("EXPORT_DIR", str(DATA_DIR / "exports")))
STORE_KEY = os.getenv("STORE_KEY", "main_db")

# ==========================================
# 로깅
# ==========================================

LOG_LEVEL = (os.getenv("LOG_LEVEL", "INFO") or "INFO").strip().upper()
LOG_FILE = os.getenv("LOG_FILE", "").strip() or None
LOG_BUFFER_MAX_RECORDS = _env_int("LOG_BUFFER_MAX_RECORDS", 10000)
