"""Configuration management for Content Dates."""

import json
import logging
import tempfile
from pathlib import Path
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

from .services.history_source import DEFAULT_SENTINEL

logger = logging.getLogger(__name__)

CONFIG_DIR_NAME = ".content-dates"


class Config(BaseModel):
    """Main configuration for Content Dates."""

    repo_dir: Path = Field(
        default=Path("."), description="Root of the git-controlled content tree"
    )
    metadata_dir: Path = Field(
        default=Path("metadata"),
        description="Directory holding history snapshots, relative to repo_dir",
    )
    ref: str = Field(
        default="HEAD",
        description="Revision whose history is walked and which names new snapshots",
    )
    sentinel: str = Field(
        default=DEFAULT_SENTINEL,
        description="Token tagging the start of each commit record in the log",
    )
    content_extensions: List[str] = Field(
        default=["md", "html"],
        description="Extensions of content files tracked for publication times",
    )
    git_timeout: Optional[int] = Field(
        default=None, description="Timeout for git commands in seconds (None waits)"
    )
    use_cache: bool = Field(
        default=True, description="Persist history snapshots for incremental updates"
    )

    @field_validator("repo_dir", "metadata_dir", mode="before")
    @classmethod
    def convert_path(cls, v: Any) -> Path:
        """Convert string paths to Path objects."""
        if isinstance(v, str):
            return Path(v)
        if isinstance(v, Path):
            return v
        raise ValueError(f"Expected str or Path, got {type(v)}")

    @field_validator("sentinel")
    @classmethod
    def require_sentinel(cls, v: str) -> str:
        if not v:
            raise ValueError("sentinel must not be empty")
        return v

    @field_validator("content_extensions")
    @classmethod
    def normalize_extensions(cls, v: List[str]) -> List[str]:
        """Remove dots from file extensions."""
        return [ext.lstrip(".") for ext in v]

    def resolved_metadata_dir(self) -> Path:
        if self.metadata_dir.is_absolute():
            return self.metadata_dir
        return self.repo_dir / self.metadata_dir


class ConfigManager:
    """Manages configuration loading and saving."""

    DEFAULT_CONFIG_PATH = Path(CONFIG_DIR_NAME) / "config.json"

    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = config_path or self.DEFAULT_CONFIG_PATH
        self._config: Optional[Config] = None

    @property
    def project_root(self) -> Path:
        """Directory containing the .content-dates/ directory."""
        return self.config_path.parent.parent

    def load(self) -> Config:
        """Load configuration from file or create default rooted at the project."""
        if self.config_path.exists():
            try:
                with open(self.config_path, "r") as f:
                    data = json.load(f)

                # A file without repo_dir still describes the project it lives in
                data.setdefault("repo_dir", str(self.project_root.resolve()))
                data["repo_dir"] = str(self._resolve_relative_path(data["repo_dir"]))

                self._config = Config(**data)
            except Exception as e:
                raise ValueError(f"Failed to load config from {self.config_path}: {e}")
        else:
            self._config = Config(repo_dir=self.project_root.resolve())

        return self._config

    def save(self, config: Optional[Config] = None) -> None:
        """Save configuration to file with a relative repo_dir."""
        if config is None:
            config = self._config

        if config is None:
            raise ValueError("No configuration to save")

        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        config_dict = config.model_dump(mode="json")
        config_dict["repo_dir"] = self._make_relative_to_config(config.repo_dir)

        with open(self.config_path, "w") as f:
            json.dump(config_dict, f, indent=2)

    @staticmethod
    def find_config_path(start_dir: Optional[Path] = None) -> Optional[Path]:
        """Find .content-dates/config.json by walking up the directory tree.

        Args:
            start_dir: Directory to start searching from (default: current directory)

        Returns:
            Path to config.json if found, None otherwise
        """
        current = start_dir or _safe_cwd()

        for path in [current] + list(current.parents):
            config_path = path / CONFIG_DIR_NAME / "config.json"
            if config_path.exists():
                return config_path

        return None

    @classmethod
    def create_with_backtrack(cls, start_dir: Optional[Path] = None) -> "ConfigManager":
        """Create ConfigManager by finding config through directory backtracking.

        Falls back to the default location under ``start_dir`` when no config
        exists in any parent directory.
        """
        config_path = cls.find_config_path(start_dir)
        if config_path is None:
            start = start_dir or _safe_cwd()
            config_path = start / CONFIG_DIR_NAME / "config.json"
        return cls(config_path)

    def _make_relative_to_config(self, path: Path) -> str:
        """Express ``path`` relative to the project root when possible."""
        try:
            return str(Path(path).resolve().relative_to(self.project_root.resolve()))
        except ValueError:
            return str(path)

    def _resolve_relative_path(self, path_str: str) -> Path:
        path = Path(path_str)
        if path.is_absolute():
            return path
        return (self.project_root / path).resolve()


def _safe_cwd() -> Path:
    try:
        return Path.cwd()
    except (FileNotFoundError, OSError):
        # Working directory deleted
        return Path(tempfile.gettempdir())
