"""
Pose Chain Parsing

This module reads calibration files in the Stanford 3D scanning repository
format and resolves them into an ordered chain of (pose, scan file) records.
A calibration file looks like:

    camera -0.0172 -0.0936 1.0 -0.0165 0.1 0.0 0.9949
    bmesh bun000.ply 0 0 0 0 0 0 1
    bmesh bun045.ply -0.0520 -0.0003 -0.0617 0.0003 0.3831 -0.0029 0.9237
    ...

Only ``bmesh`` lines with exactly nine tokens are records:

    [0]: keyword, must be bmesh
    [1]: scan filename, relative to the calibration file's directory
    [2-4]: translation (tx, ty, tz)
    [5-8]: quaternion (qx, qy, qz, qw), scalar part last

Every other line is skipped. The chain order is the acquisition order.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Sequence, Union

import numpy as np

from ..utils.logging import setup_logger
from ..utils.transforms import RigidTransform

logger = setup_logger(__name__)

RECORD_KEYWORD = "bmesh"
RECORD_TOKEN_COUNT = 9


@dataclass(frozen=True)
class PoseChainRecord:
    """One scan of the chain and its calibrated pose."""
    transform: RigidTransform
    file_path: Path


@dataclass
class PoseChain:
    """Append-only ordered sequence of pose records.

    ``transforms`` and ``files`` are views of the same records and therefore
    always have equal length.
    """
    records: List[PoseChainRecord] = field(default_factory=list)

    @classmethod
    def from_lists(cls, transforms: Sequence[RigidTransform], files: Sequence[Union[str, Path]]) -> "PoseChain":
        """Zip parallel transform/file lists into a chain.

        Raises:
            ValueError: If the two lists differ in length
        """
        if len(transforms) != len(files):
            raise ValueError(
                f"Transform/file count mismatch: {len(transforms)} transforms for {len(files)} files"
            )
        return cls([PoseChainRecord(t, Path(f)) for t, f in zip(transforms, files)])

    def append(self, record: PoseChainRecord) -> None:
        self.records.append(record)

    def extend(self, records: Iterable[PoseChainRecord]) -> None:
        for record in records:
            self.append(record)

    @property
    def transforms(self) -> List[RigidTransform]:
        return [r.transform for r in self.records]

    @property
    def files(self) -> List[Path]:
        return [r.file_path for r in self.records]

    def pairs(self) -> Iterator[tuple]:
        """Consecutive (previous, current) record pairs in chain order."""
        for i in range(1, len(self.records)):
            yield self.records[i - 1], self.records[i]

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[PoseChainRecord]:
        return iter(self.records)

    def __getitem__(self, index: int) -> PoseChainRecord:
        return self.records[index]


class PoseChainParser:
    """
    Parser for Stanford-style calibration files.

    Malformed lines are not errors: anything that is not a well-formed
    ``bmesh`` record is skipped. Missing files are errors: the calibration
    file itself and every scan it names must exist.
    """

    def __init__(self, *, keyword: str = RECORD_KEYWORD):
        self.keyword = keyword

    def parse(self, conf_file_path: Union[str, Path]) -> PoseChain:
        """
        Parse one calibration file.

        Args:
            conf_file_path: Path to the calibration file

        Returns:
            PoseChain with one record per valid ``bmesh`` line, in file order

        Raises:
            FileNotFoundError: If the calibration file or a referenced scan is missing
            OSError: If the calibration file cannot be read
        """
        conf_path = Path(conf_file_path)
        if not conf_path.exists() or not conf_path.is_file():
            raise FileNotFoundError(f"Calibration file not found: {conf_path}")

        # Scan filenames are relative to the calibration file
        working_dir = conf_path.parent
        if not working_dir.exists():
            raise FileNotFoundError(f"Calibration directory not found: {working_dir}")

        chain = PoseChain()
        skipped = 0
        with conf_path.open("r", encoding="utf-8", errors="replace") as f:
            for line_no, line in enumerate(f, start=1):
                record = self.parse_line(line, working_dir, line_no=line_no)
                if record is None:
                    if line.strip():
                        skipped += 1
                    continue
                chain.append(record)

        logger.info(
            f"Parsed {len(chain)} scan poses from {conf_path}"
            + (f" ({skipped} non-record lines skipped)" if skipped else "")
        )
        return chain

    def parse_line(self, line: str, working_dir: Path, *, line_no: Optional[int] = None) -> Optional[PoseChainRecord]:
        """Turn one calibration line into a record, or None if it is not one."""
        tokens = line.split()
        if len(tokens) != RECORD_TOKEN_COUNT or tokens[0] != self.keyword:
            return None

        try:
            translation = [float(v) for v in tokens[2:5]]
            quaternion = [float(v) for v in tokens[5:9]]
        except ValueError:
            logger.debug(f"Skipping line {line_no}: non-numeric pose fields: {line.strip()!r}")
            return None
        if not np.all(np.isfinite(translation + quaternion)):
            logger.debug(f"Skipping line {line_no}: non-finite pose fields: {line.strip()!r}")
            return None

        scan_path = working_dir / tokens[1]
        if not scan_path.exists() or not scan_path.is_file():
            raise FileNotFoundError(f"Scan file not found: {scan_path} (line {line_no})")

        if not any(quaternion):
            # A zero quaternion expands to the identity rotation
            logger.debug(f"Line {line_no}: zero quaternion, using identity rotation")
            transform = RigidTransform.from_rotation_translation(np.eye(3), translation)
        else:
            transform = RigidTransform.from_translation_quaternion(translation, quaternion)

        return PoseChainRecord(transform=transform, file_path=scan_path)


def parse_pose_chain(conf_file_path: Union[str, Path]) -> PoseChain:
    """Parse a single calibration file into a pose chain."""
    return PoseChainParser().parse(conf_file_path)


def parse_pose_chains(conf_file_paths: Iterable[Union[str, Path]]) -> PoseChain:
    """Parse several calibration files and concatenate them in the given order."""
    parser = PoseChainParser()
    chain = PoseChain()
    for conf_path in conf_file_paths:
        chain.extend(parser.parse(conf_path))
    return chain
