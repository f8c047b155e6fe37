# threatlens/services/brand_registry.py
import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Any, Iterable, Optional, Tuple, FrozenSet

logger = logging.getLogger(__name__)

DEFAULT_BRAND_FILE = Path(__file__).resolve().parent.parent / "data" / "brand_patterns.json"


@dataclass(frozen=True)
class BrandEntry:
    """Static registry record for one impersonation target"""
    name: str
    legitimate_domains: FrozenSet[str]
    suspicious_patterns: FrozenSet[str]
    keywords: FrozenSet[str]


class BrandRegistry:
    """
    Read-only brand registry.
    Built once at process start and handed to the similarity matcher.
    """

    def __init__(self, entries: Iterable[BrandEntry], version: str = "unknown"):
        self._entries: Tuple[BrandEntry, ...] = tuple(entries)
        self.version = version

        # Fast lookups
        self._legitimate_domains: FrozenSet[str] = frozenset(
            domain for entry in self._entries for domain in entry.legitimate_domains
        )

    @property
    def entries(self) -> Tuple[BrandEntry, ...]:
        return self._entries

    @property
    def legitimate_domains(self) -> FrozenSet[str]:
        return self._legitimate_domains

    def is_legitimate(self, domain: str) -> bool:
        """True for a legitimate brand domain or any of its subdomains"""
        if domain in self._legitimate_domains:
            return True
        return any(domain.endswith('.' + legit) for legit in self._legitimate_domains)

    def get(self, name: str) -> Optional[BrandEntry]:
        for entry in self._entries:
            if entry.name == name:
                return entry
        return None

    def __len__(self) -> int:
        return len(self._entries)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BrandRegistry":
        entries = []
        for name, patterns in data.get('brands', {}).items():
            entries.append(BrandEntry(
                name=name.lower(),
                legitimate_domains=frozenset(d.lower() for d in patterns.get('legitimate', [])),
                suspicious_patterns=frozenset(p.lower() for p in patterns.get('suspicious', [])),
                keywords=frozenset(k.lower() for k in patterns.get('keywords', [])),
            ))
        return cls(entries, version=data.get('version', 'unknown'))

    @classmethod
    def load(cls, path: Optional[str] = None) -> "BrandRegistry":
        """Load the registry from JSON (packaged file by default)"""
        file_path = Path(path) if path else DEFAULT_BRAND_FILE
        start_time = time.time()

        if not file_path.exists():
            logger.warning(f"Brand patterns file not found: {file_path}")
            return cls([])

        with open(file_path, 'r', encoding='utf-8') as f:
            data = json.load(f)

        registry = cls.from_dict(data)
        load_time = (time.time() - start_time) * 1000
        logger.info(f"Loaded {len(registry)} brands "
                    f"({len(registry.legitimate_domains)} legitimate domains) in {load_time:.1f}ms")
        return registry
