"""Configuration management for paperpilot.

Supports:
- Local config file (~/.paperpilot/config.json)
- Environment variables (PAPERPILOT_*)
- CLI overrides

Secrets (API tokens, keys) can be provided via:
1. Environment variables (recommended for containers)
2. Config file with underscore prefix (e.g., "_api_token" - not committed)
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .logger import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".paperpilot" / "config.json"


@dataclass
class PaperlessConfig:
    """Paperless-ngx connection settings."""

    base_url: str = "http://localhost:8000"
    api_token: str | None = None
    page_size: int = 100
    image_dpi: int = 300
    timeout: float = 30.0


@dataclass
class AIConfig:
    """LLM used for title and tag suggestions."""

    provider: str = "openai"  # openai (also Ollama via base_url), anthropic
    model: str = "gpt-4o-mini"
    base_url: str | None = None
    api_key: str | None = None
    temperature: float = 0.0


@dataclass
class OCRConfig:
    """Page text extraction settings."""

    backend: str = "llm"  # llm, tesseract

    # Vision LLM
    vision_provider: str = "openai"
    vision_model: str = "gpt-4o"

    # Tesseract options
    tesseract_cmd: str | None = None
    tesseract_lang: str = "eng"


@dataclass
class JobsConfig:
    """Async OCR worker pool."""

    workers: int = 1
    queue_capacity: int = 100


@dataclass
class ServerConfig:
    """Server configuration."""

    host: str = "127.0.0.1"
    port: int = 8080
    token: str | None = None


@dataclass
class LoggingConfig:
    level: str = "INFO"


@dataclass
class PaperpilotConfig:
    """Main configuration container."""

    paperless: PaperlessConfig = field(default_factory=PaperlessConfig)
    ai: AIConfig = field(default_factory=AIConfig)
    ocr: OCRConfig = field(default_factory=OCRConfig)
    jobs: JobsConfig = field(default_factory=JobsConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Database and page-image cache live here
    data_dir: Path = field(default_factory=lambda: Path.home() / ".paperpilot")

    @property
    def db_path(self) -> Path:
        return self.data_dir / "paperpilot.db"

    @property
    def image_cache_dir(self) -> Path:
        return self.data_dir / "images"


def load_config(
    config_path: Path | str | None = None,
    env_prefix: str = "PAPERPILOT_",
) -> PaperpilotConfig:
    """Load configuration from file and environment.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file
    3. Defaults
    """
    config = PaperpilotConfig()

    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    if path.exists():
        try:
            with open(path) as f:
                data = json.load(f)
            config = _merge_config(config, data)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Failed to load config from %s: %s", path, e)

    config = _apply_env_overrides(config, env_prefix)

    config.data_dir.mkdir(parents=True, exist_ok=True)

    return config


def _merge_config(config: PaperpilotConfig, data: dict[str, Any]) -> PaperpilotConfig:
    """Merge loaded data into config object."""

    if "paperless" in data:
        p = data["paperless"]
        config.paperless.base_url = p.get("base_url", config.paperless.base_url)
        config.paperless.api_token = p.get("api_token") or p.get("_api_token")
        config.paperless.page_size = int(p.get("page_size", config.paperless.page_size))
        config.paperless.image_dpi = int(p.get("image_dpi", config.paperless.image_dpi))
        config.paperless.timeout = float(p.get("timeout", config.paperless.timeout))

    if "ai" in data:
        ai = data["ai"]
        config.ai.provider = ai.get("provider", config.ai.provider)
        config.ai.model = ai.get("model", config.ai.model)
        config.ai.base_url = ai.get("base_url", config.ai.base_url)
        config.ai.api_key = ai.get("api_key") or ai.get("_api_key")
        config.ai.temperature = float(ai.get("temperature", config.ai.temperature))

    if "ocr" in data:
        ocr = data["ocr"]
        config.ocr.backend = ocr.get("backend", config.ocr.backend)
        config.ocr.vision_provider = ocr.get("vision_provider", config.ocr.vision_provider)
        config.ocr.vision_model = ocr.get("vision_model", config.ocr.vision_model)
        config.ocr.tesseract_cmd = ocr.get("tesseract_cmd")
        config.ocr.tesseract_lang = ocr.get("tesseract_lang", config.ocr.tesseract_lang)

    if "jobs" in data:
        jobs = data["jobs"]
        config.jobs.workers = int(jobs.get("workers", config.jobs.workers))
        config.jobs.queue_capacity = int(jobs.get("queue_capacity", config.jobs.queue_capacity))

    if "server" in data:
        srv = data["server"]
        config.server.host = srv.get("host", config.server.host)
        config.server.port = int(srv.get("port", config.server.port))
        config.server.token = srv.get("token") or srv.get("_token")

    if "logging" in data:
        config.logging.level = data["logging"].get("level", config.logging.level)

    if "data_dir" in data:
        config.data_dir = Path(data["data_dir"]).expanduser()

    return config


def _apply_env_overrides(config: PaperpilotConfig, prefix: str) -> PaperpilotConfig:
    """Apply environment variable overrides."""

    # Paperless
    if v := os.environ.get(f"{prefix}PAPERLESS_BASE_URL"):
        config.paperless.base_url = v
    if v := os.environ.get(f"{prefix}PAPERLESS_API_TOKEN"):
        config.paperless.api_token = v

    # AI
    if v := os.environ.get(f"{prefix}AI_PROVIDER"):
        config.ai.provider = v
    if v := os.environ.get(f"{prefix}AI_MODEL"):
        config.ai.model = v
    if v := os.environ.get(f"{prefix}AI_API_KEY"):
        config.ai.api_key = v
    if v := os.environ.get(f"{prefix}AI_BASE_URL"):
        config.ai.base_url = v

    # OCR
    if v := os.environ.get(f"{prefix}OCR_BACKEND"):
        config.ocr.backend = v
    if v := os.environ.get(f"{prefix}OCR_VISION_PROVIDER"):
        config.ocr.vision_provider = v
    if v := os.environ.get(f"{prefix}OCR_VISION_MODEL"):
        config.ocr.vision_model = v

    # Jobs
    if v := os.environ.get(f"{prefix}JOBS_WORKERS"):
        config.jobs.workers = int(v)
    if v := os.environ.get(f"{prefix}JOBS_QUEUE_CAPACITY"):
        config.jobs.queue_capacity = int(v)

    if v := os.environ.get(f"{prefix}LOG_LEVEL"):
        config.logging.level = v
    if v := os.environ.get(f"{prefix}DATA_DIR"):
        config.data_dir = Path(v).expanduser()

    return config


def save_config(config: PaperpilotConfig, config_path: Path | str | None = None) -> None:
    """Save configuration to file (excludes secrets)."""
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)

    data = {
        "paperless": {
            "base_url": config.paperless.base_url,
            "page_size": config.paperless.page_size,
            "image_dpi": config.paperless.image_dpi,
        },
        "ai": {
            "provider": config.ai.provider,
            "model": config.ai.model,
            "base_url": config.ai.base_url,
        },
        "ocr": {
            "backend": config.ocr.backend,
            "vision_provider": config.ocr.vision_provider,
            "vision_model": config.ocr.vision_model,
            "tesseract_lang": config.ocr.tesseract_lang,
        },
        "jobs": {
            "workers": config.jobs.workers,
            "queue_capacity": config.jobs.queue_capacity,
        },
        "server": {
            "host": config.server.host,
            "port": config.server.port,
        },
        "logging": {
            "level": config.logging.level,
        },
    }

    with open(path, "w") as f:
        json.dump(data, f, indent=2)
