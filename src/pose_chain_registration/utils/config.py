"""
Configuration management for pose-chain-registration.

Provides a typed pydantic model and YAML loader with sensible defaults.
The registration defaults reproduce the settings the regression runs were
calibrated with (delta 0.01, overlap 0.2, 500 samples, 90 degree normals).
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Literal, List, Any, Dict, TYPE_CHECKING

from pydantic import BaseModel, Field, ValidationError
import yaml

if TYPE_CHECKING:
    from ..alignment.matchers import RegistrationOptions


# -----------------------
# Typed config structures
# -----------------------


class PathsConfig(BaseModel):
    conf_files: List[str] = Field(
        default_factory=lambda: ["datasets/bunny/data/bun.conf"],
        description="Calibration files, processed in order and concatenated into one chain",
    )
    output_dir: Optional[str] = Field(
        default=None,
        description="Directory for per-pair transform matrices and summary.json (disabled if None)",
    )


class RegistrationConfig(BaseModel):
    delta: float = Field(default=0.01, gt=0, description="Distance tolerance for inlier points (scan units)")
    overlap_estimation: float = Field(default=0.2, gt=0, le=1.0, description="Estimated overlap between consecutive scans")
    terminate_threshold: float = Field(
        default=1.0,
        description="Stop searching once the score reaches this value (1.0 = never stop early)",
    )
    max_color_distance: float = Field(default=1e9, description="Max RGB distance between matched points (1e9 = off)")
    sample_size: int = Field(default=500, gt=0, description="Number of sampled points per scan")
    max_normal_difference_deg: float = Field(default=90.0, description="Max angle between matched normals (degrees)")
    max_time_seconds: float = Field(default=1e9, gt=0, description="Soft time budget per registration call")
    seed: Optional[int] = Field(default=0, description="Seed for point sampling (None = nondeterministic)")
    use_feature_matching: bool = Field(
        default=False,
        description="Use the Open3D FPFH/RANSAC matcher instead of the principal-axes matcher",
    )
    icp_max_iterations: int = Field(default=50, gt=0)
    feature_voxel_size: Optional[float] = Field(
        default=None,
        description="Voxel size for feature matching (None = derived from delta)",
    )

    def to_options(self) -> "RegistrationOptions":
        from ..alignment.matchers import RegistrationOptions

        return RegistrationOptions(
            overlap_estimation=self.overlap_estimation,
            sample_size=self.sample_size,
            max_normal_difference_deg=self.max_normal_difference_deg,
            max_color_distance=self.max_color_distance,
            max_time_seconds=self.max_time_seconds,
            delta=self.delta,
            terminate_threshold=self.terminate_threshold,
            seed=self.seed,
        )


class SanitizationConfig(BaseModel):
    enabled: bool = Field(default=True, description="Remove degenerate normals from face-less scans")
    min_normal_norm: float = Field(default=0.1, gt=0)


class VerificationConfig(BaseModel):
    enabled: bool = Field(default=True, description="Compare registrations against calibration poses")
    rotation_tolerance_deg: float = Field(default=5.0, ge=0)
    translation_tolerance: float = Field(default=0.01, ge=0, description="Scan units")
    fail_on_mismatch: bool = Field(default=True, description="Exit non-zero when a pair exceeds tolerance")


class LoggingConfig(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    file: Optional[str] = Field(default=None)


class AppConfig(BaseModel):
    paths: PathsConfig = Field(default_factory=PathsConfig)
    registration: RegistrationConfig = Field(default_factory=RegistrationConfig)
    sanitization: SanitizationConfig = Field(default_factory=SanitizationConfig)
    verification: VerificationConfig = Field(default_factory=VerificationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# -----------------------
# Loader
# -----------------------


def _project_root() -> Path:
    """
    Resolve the repository root directory.

    File is at: repo_root/src/pose_chain_registration/utils/config.py
    parents sequence:
      0 -> .../src/pose_chain_registration/utils
      1 -> .../src/pose_chain_registration
      2 -> .../src
      3 -> repo_root
    """
    return Path(__file__).resolve().parents[3]


def load_config(path: Optional[str | Path] = None, *, allow_missing: bool = True) -> AppConfig:
    """
    Load configuration from YAML into a typed AppConfig.

    Search order when path is None:
    1) repo_root/config/default.yaml
    2) if missing and allow_missing=True: return default AppConfig()

    Args:
        path: Explicit YAML file path.
        allow_missing: If True, returns defaults when file missing; otherwise raises.

    Returns:
        AppConfig instance
    """
    cfg_path: Path
    if path is None:
        cfg_path = _project_root() / "config" / "default.yaml"
    else:
        cfg_path = Path(path)

    if not cfg_path.exists():
        if allow_missing:
            return AppConfig()
        raise FileNotFoundError(f"Config file not found: {cfg_path}")

    with cfg_path.open("r", encoding="utf-8") as f:
        raw: Dict[str, Any] = yaml.safe_load(f) or {}

    try:
        return AppConfig.model_validate(raw)
    except ValidationError as e:
        # Re-raise with context to help users fix the YAML
        raise ValueError(f"Invalid configuration in {cfg_path}: {e}")
