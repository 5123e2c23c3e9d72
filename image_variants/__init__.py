from .config import Config
from .errors import (
    ConfigError,
    DecodeError,
    FetchError,
    ImageVariantError,
    JobTimeout,
    MalformedJob,
    SizeOutOfRange,
    UnsupportedMediaType,
    UploadError,
    UpscaleError,
    VariantRenderError,
)
from .jobs import Job, StorageLocation, decode_job
from .keys import output_key, sanitize_key
from .pipeline import JobState, process_job
from .planner import ORIGINAL, OutputFormat, VariantSpec, plan_variants
from .results import JobResult, VariantResult
from .storage import S3ObjectStore
from .tiers import DEFAULT_TIERS, Tier, filter_policy, select_tier

__version__ = "0.1.0"
