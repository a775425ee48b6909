from pathlib import Path
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator
from mbc.domain.models import MediaCategory

def _normalize_ext(ext: str) -> str:
    ext = ext.strip().lower()
    return ext if ext.startswith(".") else f".{ext}"

def _default_extensions() -> Dict[MediaCategory, List[str]]:
    return {
        MediaCategory.AUDIO: [".mp3", ".wav", ".flac", ".aac", ".ogg", ".m4a", ".wma", ".opus", ".aiff"],
        MediaCategory.VIDEO: [".mp4", ".mov", ".avi", ".mkv", ".webm", ".flv", ".wmv", ".m4v", ".mpg", ".mpeg", ".3gp"],
        MediaCategory.IMAGE: [".jpg", ".jpeg", ".png", ".bmp", ".tif", ".tiff", ".webp", ".heic", ".gif"],
    }

class GeneralConfig(BaseModel):
    max_concurrent: Optional[int] = Field(default=None, ge=2, le=8)  # None = derive from cores
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    output_subdir: str = "converted"
    probe_durations: bool = True
    log_path: Optional[str] = None
    debug: bool = False

    @field_validator("output_subdir")
    @classmethod
    def validate_output_subdir(cls, v: str) -> str:
        v = v.strip()
        if not v or Path(v).is_absolute() or ".." in Path(v).parts:
            raise ValueError(f"output_subdir must be a relative folder name, got {v!r}")
        return v

class AudioConfig(BaseModel):
    """Target for audio files and for the audio track of videos."""
    codec: str = "libmp3lame"
    bitrate: str = "128k"
    channels: int = Field(default=1, ge=1, le=8)
    sample_rate: int = Field(default=44100, gt=0)
    quality: int = Field(default=0, ge=0, le=9)  # -q:a

class VideoConfig(BaseModel):
    codec: str = "libsvtav1"
    crf: int = Field(default=22, ge=0, le=63)
    preset: int = Field(default=4, ge=0, le=13)
    pix_fmt: str = "yuv420p10le"
    gop: int = Field(default=240, gt=0)
    svt_params: List[str] = Field(default_factory=lambda: ["tune=1", "enable-overlays=1", "enable-qm=1", "rc=1"])
    max_width: int = Field(default=1920, gt=0)
    faststart: bool = True

class ImageConfig(BaseModel):
    codec: str = "libsvtav1"
    crf: int = Field(default=22, ge=0, le=63)
    preset: int = Field(default=4, ge=0, le=13)
    pix_fmt: str = "yuv420p10le"
    max_width: int = Field(default=1920, gt=0)

class AppConfig(BaseModel):
    general: GeneralConfig = Field(default_factory=GeneralConfig)
    audio: AudioConfig = Field(default_factory=AudioConfig)
    video: VideoConfig = Field(default_factory=VideoConfig)
    image: ImageConfig = Field(default_factory=ImageConfig)
    extensions: Dict[MediaCategory, List[str]] = Field(default_factory=_default_extensions)

    @field_validator("extensions", mode="before")
    @classmethod
    def merge_default_extensions(cls, v):
        # Categories missing from the config keep their defaults
        merged = {category.value: exts for category, exts in _default_extensions().items()}
        for key, exts in (v or {}).items():
            merged[getattr(key, "value", key)] = exts
        return merged

    @field_validator("extensions")
    @classmethod
    def normalize_extensions(cls, v: Dict[MediaCategory, List[str]]) -> Dict[MediaCategory, List[str]]:
        return {category: [_normalize_ext(ext) for ext in exts] for category, exts in v.items()}

    @model_validator(mode="after")
    def validate_extension_overlap(self):
        seen: Dict[str, MediaCategory] = {}
        for category, exts in self.extensions.items():
            for ext in exts:
                if ext in seen and seen[ext] != category:
                    raise ValueError(f"Extension {ext} is listed for both {seen[ext].value} and {category.value}")
                seen[ext] = category
        return self

    def category_for(self, path: Path) -> Optional[MediaCategory]:
        """Media category of a file by extension, None if unsupported."""
        suffix = path.suffix.lower()
        for category, exts in self.extensions.items():
            if suffix in exts:
                return category
        return None
