"""Configuration for the PromptVerse search server."""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional


DEFAULT_DATA_DIR = Path.home() / ".promptverse"


def _default_field_weights() -> Dict[str, int]:
    return {"title": 10, "description": 5, "content": 3, "tags": 7}


def _default_phrase_bonuses() -> Dict[str, int]:
    # Checked in this order; the first field containing the phrase wins
    return {"title": 20, "description": 15, "content": 10}


@dataclass
class SearchConfig:
    """Ranking and caching knobs for the search engine."""
    score_threshold: float = 0.1  # Minimum score for a prompt to be returned
    fuzzy_threshold: int = 2  # Max edit distance for a fuzzy match (lower is stricter)
    cache_max_size: int = 100
    coverage_bonus: int = 5  # Per distinct query term matched anywhere
    field_weights: Dict[str, int] = field(default_factory=_default_field_weights)
    phrase_bonuses: Dict[str, int] = field(default_factory=_default_phrase_bonuses)

    @classmethod
    def from_env(cls) -> "SearchConfig":
        """Create config from environment variables."""
        return cls(
            score_threshold=float(os.environ.get("PROMPTVERSE_SCORE_THRESHOLD", "0.1")),
            fuzzy_threshold=int(os.environ.get("PROMPTVERSE_FUZZY_THRESHOLD", "2")),
            cache_max_size=int(os.environ.get("PROMPTVERSE_CACHE_SIZE", "100")),
        )


@dataclass
class RendererConfig:
    """Defaults for the virtualized list renderer."""
    item_height: float = 50.0
    buffer_size: int = 10  # Items rendered above/below the viewport
    frame_interval: float = 1 / 60  # Seconds between coalesced scroll renders


@dataclass
class Config:
    """Main configuration for the PromptVerse server."""
    search: SearchConfig = field(default_factory=SearchConfig.from_env)
    renderer: RendererConfig = field(default_factory=RendererConfig)
    data_dir: Path = DEFAULT_DATA_DIR
    api_url: Optional[str] = None  # None = read prompts from local JSON files
    api_timeout: float = 30.0
    search_log_db_path: Optional[Path] = None  # None = <data_dir>/search_log.db

    @property
    def resolved_search_log_db_path(self) -> Path:
        return self.search_log_db_path or self.data_dir / "search_log.db"

    @classmethod
    def from_env(cls) -> "Config":
        """Create config from environment variables."""
        data_dir_str = os.environ.get("PROMPTVERSE_DATA_DIR")
        log_db_str = os.environ.get("PROMPTVERSE_SEARCH_LOG_DB")

        return cls(
            search=SearchConfig.from_env(),
            data_dir=Path(data_dir_str) if data_dir_str else DEFAULT_DATA_DIR,
            api_url=os.environ.get("PROMPTVERSE_API_URL") or None,
            api_timeout=float(os.environ.get("PROMPTVERSE_API_TIMEOUT", "30.0")),
            search_log_db_path=Path(log_db_str) if log_db_str else None,
        )


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global config instance.

    Returns:
        Config loaded from environment
    """
    global _config

    if _config is None:
        _config = Config.from_env()

    return _config
