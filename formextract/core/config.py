# =============================================================================
# Batching Configuration
# =============================================================================

DEFAULT_BATCH_SIZE = 5  # Pages per batch when the requested size is unusable
DEFAULT_EXTRACTION_CONCURRENCY = 3  # Parallel upstream calls per run


# =============================================================================
# Field Signature
# =============================================================================

SIGNATURE_DELIMITER = "|"
SIGNATURE_ESCAPE = "\\"
LABEL_CONTENT_PREVIEW_CHARS = 50  # Rich-text chars used to identify label blocks
DEFAULT_FIELD_TYPE = "unknown"
DEFAULT_PAGE_NUMBER = 1


# =============================================================================
# Field Types
# =============================================================================

LABEL_TYPE = "label"
LABEL_FIELD_TYPES = ("label", "richtext")
KNOWN_FIELD_TYPES = (
    "text",
    "email",
    "tel",
    "textarea",
    "select",
    "date",
    "radio",
    "checkbox",
    "radio-with-other",
    "checkbox-with-other",
    "label",
    "richtext",
)


# =============================================================================
# Stability Analysis
# =============================================================================

STABLE_THRESHOLD = 100.0
MOSTLY_STABLE_THRESHOLD = 80.0
SOMEWHAT_STABLE_THRESHOLD = 60.0
UNSTABLE_THRESHOLD = 40.0

CONDITIONAL_PHRASES = ("if yes", "if no", "if applicable")

LOW_STABILITY_REPORT_LIMIT = 50  # Rows in the inconsistent-fields table
PREVIEW_MAX_CHARS = 40  # Label/content preview width in reports


# =============================================================================
# Field Comparison
# =============================================================================

SIGNIFICANT_WORD_MIN_LENGTH = 4  # Words shorter than this are ignored
SIMILAR_MIN_COMMON_WORDS = 2
SIMILAR_MIN_COMMON_RATIO = 0.5
SIMILAR_MATCHES_LIMIT = 10


# =============================================================================
# Upstream Extractor
# =============================================================================

DEFAULT_EXTRACTOR_MODEL = "gpt-4o"
DEFAULT_TEMPERATURE = 0.1
DEFAULT_MAX_TOKENS = 16000  # Model-safe ceiling for a single completion
EXTRACTOR_TIMEOUT_SECONDS = 180  # Timeout for one vision completion request
ERROR_BODY_MAX_CHARS = 200  # Maximum chars from error response bodies


# =============================================================================
# Retry Configuration
# =============================================================================

MAX_RETRIES = 3
INITIAL_BACKOFF = 1.0  # seconds
MAX_BACKOFF = 30.0  # seconds
BACKOFF_MULTIPLIER = 2  # Exponential backoff multiplier for retries
