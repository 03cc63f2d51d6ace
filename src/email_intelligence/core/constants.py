from __future__ import annotations

# ==========================================
# 분석 결과 예약 토픽 (배치 제어 신호)
# - 기존 DB와의 호환을 위해 저장 값은 원래 문자열을 유지
# ==========================================

QUOTA_SENTINEL_TOPIC = "Error Cuota API"  # 쿼터 소진: 배치 전체 중단
ANALYSIS_FAILURE_TOPIC = "Error en Análisis"  # 분석 실패: 해당 항목만 건너뜀
UNCLASSIFIED_TOPIC = "Sin clasificar"  # 토픽이 비었을 때 기본값
RESERVED_TOPICS = (QUOTA_SENTINEL_TOPIC, ANALYSIS_FAILURE_TOPIC)

QUOTA_SENTINEL_TAGS = ("Error", "Quota")
ANALYSIS_FAILURE_TAGS = ("Error",)

QUOTA_USER_MESSAGE = (
    "La API Key ha excedido la cuota (429 Resource Exhausted). "
    "Espera unos minutos o revisa tu plan de facturación."
)
QUOTA_SUMMARY_HTML = (
    "Error: Se ha excedido la cuota de la API Key (429 Resource Exhausted). "
    "Espera unos minutos o revisa tu plan de facturación en Google AI Studio."
)
RECORD_SUMMARY_FALLBACK = "No se pudo generar resumen del contenido."

# ==========================================
# URL 정규화 / 중복 판정
# ==========================================

SOCIAL_PRIMARY_HOST = "x.com"
SOCIAL_HOST_ALIASES = ("x.com", "twitter.com")  # 같은 게시물을 가리키는 호스트 별칭
TRACKING_QUERY_PARAMS = (  # 비교 전에 제거하는 추적용 쿼리 파라미터
    "t", "s", "utm_source", "utm_medium", "utm_campaign", "ref"
)
VIDEO_URL_HINTS = ("youtube.com/", "youtu.be/")  # 자막(transcript) 흐름 대상 URL 힌트

# ==========================================
# EML 추출
# ==========================================

UNKNOWN_DATE = "Unknown Date"
NO_SUBJECT = "No Subject"
ATTACHMENT_PLACEHOLDER = "[...Attachment data removed...]"
TRUNCATION_MARKER = "... [Truncated]"
ATTACHMENT_RUN_MIN_CHARS = 100  # base64 덩어리로 간주하는 최소 연속 길이
HTML_ENTITY_MAP = {  # 본문에서 치환하는 고정 HTML 엔티티
    "&nbsp;": " ",
    "&amp;": "&",
    "&lt;": "<",
    "&gt;": ">",
    "&quot;": '"',
    "&#39;": "'",
}

# ==========================================
# 자막(transcript) 검증 / 근거성 점검
# ==========================================

TRANSCRIPT_MIN_CHARS = 200
TRANSCRIPT_MIN_UNIQUE_WORDS = 10
TRANSCRIPT_MIN_UNIQUENESS_RATIO = 0.1

HALLUCINATION_PHRASES = [  # 자막에 없으면 환각 가능성이 높은 일반적 문구
    "promete revolucionar",
    "revoluciona el campo",
    "herramienta indispensable",
    "introducción completa",
    "tutorial completo",
    "guía completa",
    "explora sus capacidades avanzadas",
    "facilita la generación",
    "prototipado rápido",
    "colaboración en tiempo real",
]

# ==========================================
# 저장소
# ==========================================

TABLE_NAME = "emails"
SQLITE_HEADER = b"SQLite format 3\x00"
BACKUP_FILE_PREFIX = "email_intelligence_"
BACKUP_FILE_SUFFIX = ".sqlite"

STATUS_COMPLETED = "completed"
STATUS_ERROR = "error"

DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"
