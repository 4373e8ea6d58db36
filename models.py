"""Data models shared by the resolver, the security checks and the log store."""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple


class Quality(str, Enum):
    LOW = "Low"
    SD = "SD"
    HD = "HD"
    FULL_HD = "FullHD"


class Severity(str, Enum):
    NONE = "None"
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class Network(str, Enum):
    INSTAGRAM = "instagram"
    X = "x"


QUALITY_RANK = {Quality.LOW: 0, Quality.SD: 1, Quality.HD: 2, Quality.FULL_HD: 3}
SEVERITY_RANK = {Severity.NONE: 0, Severity.LOW: 1, Severity.MEDIUM: 2, Severity.HIGH: 3}

# (minimum bitrate, quality, nominal resolution), highest first
BITRATE_THRESHOLDS = (
    (2_000_000, Quality.FULL_HD, "1080p"),
    (1_000_000, Quality.HD, "720p"),
    (500_000, Quality.SD, "480p"),
)


def classify_bitrate(bitrate: int) -> Tuple[Quality, str]:
    """Map a raw bitrate (bits per second) to a quality label and nominal resolution."""
    for minimum, quality, resolution in BITRATE_THRESHOLDS:
        if bitrate >= minimum:
            return quality, resolution
    return Quality.LOW, "360p"


def classify_frame(width: int, height: int) -> Tuple[Quality, str]:
    """Classify by the short side of the frame, so portrait and landscape agree."""
    short = min(width, height)
    if short >= 1080:
        quality = Quality.FULL_HD
    elif short >= 720:
        quality = Quality.HD
    elif short >= 480:
        quality = Quality.SD
    else:
        quality = Quality.LOW
    return quality, f"{short}p"


@dataclass(frozen=True)
class VideoVariant:
    url: str
    quality: Quality
    resolution: Optional[str] = None
    bitrate: Optional[int] = None
    content_type: str = "video/mp4"
    file_size: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "quality": self.quality.value,
            "resolution": self.resolution,
            "bitrate": self.bitrate,
            "contentType": self.content_type,
            "fileSize": self.file_size,
        }


def sort_variants(variants: Iterable[VideoVariant]) -> List[VideoVariant]:
    """Drop duplicate URLs and order best first (bitrate, then quality label)."""
    unique = {}
    for variant in variants:
        if variant.url and variant.url not in unique:
            unique[variant.url] = variant
    return sorted(
        unique.values(),
        key=lambda v: (v.bitrate or 0, QUALITY_RANK[v.quality]),
        reverse=True,
    )


@dataclass
class VideoInfo:
    id: str
    title: str
    network: Network
    variants: List[VideoVariant] = field(default_factory=list)
    thumbnail: Optional[str] = None
    author: Optional[str] = None
    duration: Optional[float] = None
    source: Optional[str] = None

    @property
    def mp4_url(self) -> Optional[str]:
        return self.variants[0].url if self.variants else None

    @property
    def size_approx(self) -> int:
        if not self.variants:
            return 0
        return self.variants[0].file_size or 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "thumbnail": self.thumbnail,
            "variants": [v.to_dict() for v in self.variants],
            "author": self.author,
            "duration": self.duration,
            # kept for older clients that only read a single URL
            "mp4Url": self.mp4_url,
            "sizeApprox": self.size_approx,
            "source": self.source,
        }


@dataclass(frozen=True)
class Finding:
    id: str
    issue: str
    severity: Severity
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "issue": self.issue,
            "severity": self.severity.value,
            "description": self.description,
        }


def highest_severity(severities: Iterable[Severity]) -> Severity:
    highest = Severity.NONE
    for severity in severities:
        if SEVERITY_RANK[severity] > SEVERITY_RANK[highest]:
            highest = severity
    return highest


def max_severity(findings: Iterable[Finding]) -> Severity:
    return highest_severity(f.severity for f in findings)


def serialize_findings(findings) -> str:
    """Stable JSON text for the findings column. Accepts Finding objects or plain dicts."""
    if isinstance(findings, str):
        return findings
    items = [f.to_dict() if isinstance(f, Finding) else f for f in findings]
    return json.dumps(items, ensure_ascii=False, sort_keys=True)


@dataclass
class AnalysisLogEntry:
    original_url: str
    final_url: str
    network: Network
    max_severity: Severity
    findings: str
    title: Optional[str] = None
    thumbnail: Optional[str] = None
    size_approx: Optional[int] = None
    timestamp: Optional[int] = None
    id: Optional[int] = None

    @classmethod
    def from_analysis(cls, original_url: str, video: VideoInfo, findings: List[Finding]) -> "AnalysisLogEntry":
        return cls(
            original_url=original_url,
            final_url=video.mp4_url,
            network=video.network,
            max_severity=max_severity(findings),
            findings=serialize_findings(findings),
            title=video.title,
            thumbnail=video.thumbnail,
            size_approx=video.size_approx,
        )

    @classmethod
    def from_row(cls, row) -> "AnalysisLogEntry":
        return cls(
            id=row["id"],
            original_url=row["original_url"],
            final_url=row["final_url"],
            timestamp=row["timestamp"],
            network=Network(row["network"]),
            max_severity=Severity(row["max_severity"]),
            findings=row["findings"],
            title=row["title"],
            thumbnail=row["thumbnail"],
            size_approx=row["size_approx"],
        )

    def to_dict(self) -> Dict[str, Any]:
        try:
            findings = json.loads(self.findings)
        except (TypeError, ValueError):
            findings = self.findings
        return {
            "id": self.id,
            "originalUrl": self.original_url,
            "finalUrl": self.final_url,
            "timestamp": self.timestamp,
            "network": self.network.value,
            "maxSeverity": self.max_severity.value,
            "findings": findings,
            "title": self.title,
            "thumbnail": self.thumbnail,
            "sizeApprox": self.size_approx,
        }
