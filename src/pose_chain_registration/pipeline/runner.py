"""
Command-line entry point for the registration regression run.

Exit codes:
    0: every pair was registered (and verified, when verification is on)
    1: a precondition failed (missing calibration or scan file, unreadable
       scan, malformed chain) or a pair exceeded the verification tolerance
"""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import List, Optional, Sequence

from ..alignment.matchers import create_matcher
from ..preprocessing.pose_chain import parse_pose_chains
from ..utils.config import AppConfig, load_config
from ..utils.logging import attach_log_file, set_package_level, setup_logger
from .pairwise import GroundTruthVerifier, PairwiseRegistrationDriver, RunSummary

EXIT_SUCCESS = 0
EXIT_FAILURE = 1

logger = setup_logger(__name__)


def build_driver(cfg: AppConfig) -> PairwiseRegistrationDriver:
    """Assemble the driver, matcher and verifier described by ``cfg``."""
    options = cfg.registration.to_options()
    matcher = create_matcher(
        options,
        use_feature_matching=cfg.registration.use_feature_matching,
        icp_max_iterations=cfg.registration.icp_max_iterations,
        feature_voxel_size=cfg.registration.feature_voxel_size,
    )
    verifier = None
    if cfg.verification.enabled:
        verifier = GroundTruthVerifier(
            rotation_tolerance_deg=cfg.verification.rotation_tolerance_deg,
            translation_tolerance=cfg.verification.translation_tolerance,
        )
    return PairwiseRegistrationDriver(
        matcher,
        sanitize=cfg.sanitization.enabled,
        min_normal_norm=cfg.sanitization.min_normal_norm,
        verifier=verifier,
        output_dir=cfg.paths.output_dir,
    )


def run_from_config(cfg: AppConfig) -> RunSummary:
    """Parse the configured calibration files and register every pair."""
    chain = parse_pose_chains(cfg.paths.conf_files)
    driver = build_driver(cfg)
    summary = driver.run(chain)

    if cfg.paths.output_dir:
        summary_path = Path(cfg.paths.output_dir) / "summary.json"
        summary_path.parent.mkdir(parents=True, exist_ok=True)
        with summary_path.open("w", encoding="utf-8") as f:
            json.dump(summary.to_dict(), f, indent=2)
        logger.info(f"Summary saved to: {summary_path}")
    return summary


def _parse_args(argv: Optional[Sequence[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Pairwise registration regression over a pose chain")
    parser.add_argument(
        "conf_files",
        nargs="*",
        help="Calibration files (override paths.conf_files from the config)",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to YAML configuration file (defaults to config/default.yaml)",
    )
    parser.add_argument(
        "--output-dir",
        type=str,
        default=None,
        help="Directory for per-pair transforms and summary.json",
    )
    parser.add_argument(
        "--feature-matching",
        action="store_true",
        help="Use the Open3D FPFH/RANSAC matcher",
    )
    parser.add_argument(
        "--no-verify",
        action="store_true",
        help="Only run the registrations; do not compare against calibration poses",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Seed for point sampling",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)

    try:
        cfg: AppConfig = load_config(args.config, allow_missing=args.config is None)
    except (FileNotFoundError, ValueError) as e:
        logger.error(str(e))
        return EXIT_FAILURE

    if args.conf_files:
        cfg.paths.conf_files = list(args.conf_files)
    if args.output_dir:
        cfg.paths.output_dir = args.output_dir
    if args.feature_matching:
        cfg.registration.use_feature_matching = True
    if args.no_verify:
        cfg.verification.enabled = False
    if args.seed is not None:
        cfg.registration.seed = args.seed

    log_level = getattr(logging, cfg.logging.level.upper(), logging.INFO)
    set_package_level(log_level)
    if cfg.logging.file:
        attach_log_file(cfg.logging.file, level=log_level)

    logger.info("Pose Chain Registration Regression")
    logger.info("==================================")

    try:
        summary = run_from_config(cfg)
    except (FileNotFoundError, ValueError, OSError) as e:
        logger.error(f"Run aborted: {e}")
        return EXIT_FAILURE

    if cfg.verification.enabled and cfg.verification.fail_on_mismatch and not summary.ok:
        logger.error(f"{summary.n_failed} of {summary.n_pairs} pairs exceeded the verification tolerance")
        return EXIT_FAILURE

    logger.info(f"Completed {summary.n_pairs} registrations")
    return EXIT_SUCCESS
