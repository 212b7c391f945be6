from __future__ import annotations

import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from tomlkit import dumps as toml_dumps

from .formats import CODEC_TABLE, TargetFormat


DEFAULT_CONFIG_PATH = Path("~/.config/legacy-audio-converter/config.toml").expanduser()
DEFAULT_HISTORY_PATH = "~/.local/share/lac/conversion-history.json"
ENV_PREFIX = "LAC_"


@dataclass(frozen=True)
class ConversionSettings:
    """Immutable settings snapshot consumed by one conversion run."""

    target_format: TargetFormat = TargetFormat.WAV
    preserve_originals: bool = True
    auto_convert_on_import: bool = False
    output_directory: Optional[Path] = None  # None = next to each input file
    sample_rate: int = 44100
    bit_depth: int = 16
    channels: int = 2

    def describe(self) -> str:
        return f"{self.target_format.name} {self.sample_rate} Hz/{self.bit_depth}-bit/{self.channels}ch"


class LacSettings(BaseSettings):
    """Global settings for legacy-audio-converter.

    Priority (lowest -> highest):
    - Class defaults below
    - TOML file at `config_path` (default: ~/.config/legacy-audio-converter/config.toml)
    - Environment variables with prefix LAC_
    - CLI overrides passed to `load(overrides=...)`
    """

    # Logging
    log_level: str = Field(default="INFO", description="Console log level")
    log_json: Optional[str] = Field(default=None, description="Path for structured JSON log file")

    # Conversion target
    target_format: Literal["wav", "aiff"] = Field(default="wav", description="Output container")
    sample_rate: int = Field(default=44100, description="Output sample rate in Hz")
    bit_depth: int = Field(default=16, description="Output PCM bit depth (8, 16, 24 or 32)")
    channels: int = Field(default=2, description="Output channel count")

    preserve_originals: bool = Field(default=True, description="Keep source files after a successful conversion")
    auto_convert_on_import: bool = Field(default=False, description="Convert legacy files as they are imported")
    output_directory: Optional[str] = Field(
        default=None, description="Write outputs here instead of next to each source"
    )

    ffmpeg_path: Optional[str] = Field(default=None, description="ffmpeg binary; None = look up in PATH")

    # Conversion history
    history_path: str = Field(default=DEFAULT_HISTORY_PATH, description="Path to the conversion history JSON file")

    # Config source/path (not persisted as part of effective config when writing)
    config_path: Path = Field(default=DEFAULT_CONFIG_PATH, exclude=True)

    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX, extra="ignore")

    @field_validator("target_format", mode="before")
    @classmethod
    def _lower_format(cls, v: Any) -> Any:
        if isinstance(v, TargetFormat):
            return v.value
        if isinstance(v, str):
            return TargetFormat.parse(v).value
        return v

    @field_validator("bit_depth")
    @classmethod
    def _check_bit_depth(cls, v: int) -> int:
        supported = CODEC_TABLE[TargetFormat.WAV].pcm_codecs
        if v not in supported:
            raise ValueError(f"bit_depth must be one of {sorted(supported)}")
        return v

    @field_validator("sample_rate")
    @classmethod
    def _check_sample_rate(cls, v: int) -> int:
        if not 8000 <= v <= 384000:
            raise ValueError("sample_rate must be between 8000 and 384000")
        return v

    @field_validator("channels")
    @classmethod
    def _check_channels(cls, v: int) -> int:
        if not 1 <= v <= 8:
            raise ValueError("channels must be between 1 and 8")
        return v

    @staticmethod
    def default_config_path() -> Path:
        return DEFAULT_CONFIG_PATH

    @classmethod
    def _toml_file_source(cls, config_path: Path) -> Dict[str, Any]:
        """Read settings from a TOML file if it exists; unknown keys are ignored."""
        if not config_path or not config_path.exists():
            return {}
        with config_path.open("rb") as f:
            data = tomllib.load(f)
        if not isinstance(data, dict):
            return {}
        return data

    @classmethod
    def load(
        cls,
        *,
        config_path: Optional[Path] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> "LacSettings":
        """Load settings from defaults + TOML + env + CLI overrides.

        - config_path: path to TOML config; defaults to DEFAULT_CONFIG_PATH
        - overrides: dict of CLI values (None values are ignored)
        """
        cp = config_path or DEFAULT_CONFIG_PATH
        file_values = cls._toml_file_source(cp)
        # Init kwargs outrank env in pydantic-settings, so lift env-set fields over the file explicitly
        env_only = cls()
        env_values = {k: getattr(env_only, k) for k in env_only.model_fields_set}
        non_none = {k: v for k, v in (overrides or {}).items() if v is not None}
        merged = dict(file_values)
        merged.update(env_values)
        merged.update(non_none)
        settings = cls(**merged)
        settings.config_path = cp
        return settings

    def snapshot(self) -> ConversionSettings:
        out_dir = Path(self.output_directory).expanduser() if self.output_directory else None
        return ConversionSettings(
            target_format=TargetFormat.parse(self.target_format),
            preserve_originals=self.preserve_originals,
            auto_convert_on_import=self.auto_convert_on_import,
            output_directory=out_dir,
            sample_rate=self.sample_rate,
            bit_depth=self.bit_depth,
            channels=self.channels,
        )

    def resolved_history_path(self) -> Path:
        return Path(self.history_path).expanduser()

    def to_toml(self) -> str:
        """Serialize effective settings (excluding ephemeral and unset fields) to TOML."""
        data = self.model_dump(exclude={"config_path"}, exclude_none=True)
        return toml_dumps(data)

    def write(self, path: Optional[Path] = None) -> Path:
        """Write effective config to TOML at `path` (or the loaded path). Creates parent dirs."""
        target = path or self.config_path or DEFAULT_CONFIG_PATH
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.to_toml(), encoding="utf-8")
        return target


def cli_overrides_from_args(args: Any) -> Dict[str, Any]:
    """Extract known settings keys from an argparse Namespace into an overrides dict.

    Unknown keys are ignored; None values are preserved for filtering by `load()`.
    """
    keys = {
        "log_level",
        "log_json",
        "target_format",
        "sample_rate",
        "bit_depth",
        "channels",
        "preserve_originals",
        "auto_convert_on_import",
        "output_directory",
        "ffmpeg_path",
        "history_path",
    }
    result: Dict[str, Any] = {}
    for k in keys:
        if hasattr(args, k):
            result[k] = getattr(args, k)
    return result
