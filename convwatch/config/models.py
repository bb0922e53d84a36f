from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_EXTENSIONS = [
    ".mp4", ".mkv", ".avi", ".mov", ".flv", ".wmv", ".webm", ".mpg", ".mpeg",
    ".3gp", ".3g2", ".ts", ".m4v", ".f4v", ".rmvb", ".vob", ".ogv", ".divx",
    ".xvid", ".h264", ".h265", ".hevc",
]

# ffmpeg muxer name -> output file extension
CONTAINER_EXTENSIONS = {
    "mp4": ".mp4",
    "matroska": ".mkv",
    "mov": ".mov",
}

class GeneralConfig(BaseModel):
    debug: bool = False
    log_path: Optional[str] = None

class WatchConfig(BaseModel):
    directory: Path = Path("/Conversions")
    extensions: List[str] = Field(default_factory=lambda: list(DEFAULT_EXTENSIONS))
    poll_interval_s: float = Field(default=0.1, gt=0)
    queue_size: int = Field(default=100, ge=1)

    @field_validator("extensions")
    @classmethod
    def normalize_extensions(cls, v: List[str]) -> List[str]:
        # Matching is case-sensitive, so only the leading dot is normalized.
        normalized = []
        for ext in v:
            ext = ext.strip()
            if not ext:
                continue
            normalized.append(ext if ext.startswith(".") else f".{ext}")
        if not normalized:
            raise ValueError("extensions must contain at least one entry")
        return normalized

class ConversionConfig(BaseModel):
    output_dir: Optional[Path] = None  # defaults to <watch.directory>/Converted
    ffmpeg_path: str = "ffmpeg"
    video_codec: str = "libx264"
    extra_args: List[str] = Field(default_factory=list)
    container: str = "mp4"
    settle_interval_s: float = Field(default=1.0, gt=0)
    copy_timeout_s: float = Field(default=600.0, gt=0)

    @field_validator("container")
    @classmethod
    def validate_container(cls, v: str) -> str:
        if v not in CONTAINER_EXTENSIONS:
            raise ValueError(f"Unsupported container: {v}. Use one of {sorted(CONTAINER_EXTENSIONS)}")
        return v

    @model_validator(mode="after")
    def validate_timeout(self):
        if self.copy_timeout_s < self.settle_interval_s:
            raise ValueError("copy_timeout_s must be >= settle_interval_s")
        return self

    @property
    def output_extension(self) -> str:
        return CONTAINER_EXTENSIONS[self.container]

class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = Field(default=8080, ge=0, le=65535)
    shutdown_timeout_s: float = Field(default=5.0, gt=0)
    reply_timeout_s: float = Field(default=5.0, gt=0)

class AppConfig(BaseModel):
    general: GeneralConfig = Field(default_factory=GeneralConfig)
    watch: WatchConfig = Field(default_factory=WatchConfig)
    conversion: ConversionConfig = Field(default_factory=ConversionConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    @property
    def output_dir(self) -> Path:
        if self.conversion.output_dir is not None:
            return self.conversion.output_dir
        return self.watch.directory / "Converted"

    @model_validator(mode="after")
    def validate_output_dir(self):
        # Renamed outputs must never land among the watched sources
        if self.output_dir.resolve() == self.watch.directory.resolve():
            raise ValueError(
                f"conversion.output_dir must differ from watch.directory ({self.watch.directory})"
            )
        return self
