# threatlens/services/domain_normalizer.py
import re
import logging
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urlparse

import idna

from ..errors import InvalidInputError

logger = logging.getLogger(__name__)

# Digits commonly used as letter substitutes
DIGIT_SUBSTITUTIONS = {
    '0': 'o', '1': 'l', '3': 'e', '4': 'a', '5': 's', '7': 't', '9': 'g',
}

# Cyrillic characters that render like Latin ones
HOMOGLYPHS = {
    'а': 'a', 'е': 'e', 'о': 'o', 'р': 'p', 'с': 'c', 'у': 'y', 'х': 'x',
    'і': 'i', 'ѕ': 's', 'ј': 'j',
}

FOLD_TABLE = str.maketrans({**DIGIT_SUBSTITUTIONS, **HOMOGLYPHS})

MULTI_PART_TLDS = {
    'co.uk', 'com.au', 'co.jp', 'co.nz', 'com.br', 'co.za',
    'com.mx', 'co.in', 'com.sg', 'co.kr', 'com.tw', 'co.th',
    'com.ar', 'com.co', 'com.pe', 'com.ve', 'com.ec', 'com.uy',
    'com.py', 'com.bo', 'com.cl', 'co.il', 'co.ke', 'co.tz',
    'co.bw', 'co.zm', 'co.zw', 'ac.uk', 'org.uk', 'net.uk',
    'gov.uk', 'sch.uk', 'police.uk', 'mod.uk', 'nhs.uk',
}

_LABEL = r'[^\W_](?:[\w-]{0,61}[^\W_])?'
HOST_PATTERN = re.compile(rf'^(?:{_LABEL}\.)+{_LABEL}$')
IPV4_PATTERN = re.compile(r'^\d{1,3}(?:\.\d{1,3}){3}$')
SCHEME_PATTERN = re.compile(r'^[a-z][a-z0-9+.-]*://', re.IGNORECASE)

# Free-text extraction: explicit URLs first, then bare domains (not e-mail hosts)
URL_IN_TEXT = re.compile(r'https?://[^\s<>"\']+', re.IGNORECASE)
DOMAIN_IN_TEXT = re.compile(r'(?<![@\w.-])((?:[^\W_](?:[\w-]*[^\W_])?\.)+[^\W\d_]{2,})')


def fold(text: str) -> str:
    """Map digit substitutes and Cyrillic homoglyphs onto Latin letters"""
    return text.translate(FOLD_TABLE)


@dataclass(frozen=True)
class NormalizedDomain:
    """Canonical host plus its confusable-folded form"""
    canonical: str
    raw: str = field(default='', compare=False)
    folded_form: str = field(init=False)

    def __post_init__(self):
        object.__setattr__(self, 'folded_form', fold(self.canonical))

    @property
    def is_ip_address(self) -> bool:
        return bool(IPV4_PATTERN.match(self.canonical))

    @property
    def ascii_host(self) -> str:
        """Punycode form of the host, for external services"""
        if self.is_ip_address:
            return self.canonical
        try:
            return idna.encode(self.canonical, uts46=True).decode('ascii')
        except (idna.IDNAError, UnicodeError):
            return self.canonical

    @property
    def registrable_domain(self) -> str:
        """eTLD+1 using a fixed list of multi-part public suffixes"""
        if self.is_ip_address:
            return self.canonical

        parts = self.canonical.split('.')
        if len(parts) < 2:
            return self.canonical

        # 3-part suffixes first, then 2-part
        for tld_parts in [3, 2]:
            if len(parts) >= tld_parts + 1:
                potential_tld = '.'.join(parts[-tld_parts:])
                if potential_tld in MULTI_PART_TLDS:
                    return '.'.join(parts[-(tld_parts + 1):])

        return '.'.join(parts[-2:])

    @property
    def label(self) -> str:
        return self.registrable_domain.split('.')[0]

    @property
    def tld(self) -> str:
        return '.'.join(self.registrable_domain.split('.')[1:])


class DomainNormalizer:
    """
    Turns a raw domain, URL or free-text message into a NormalizedDomain.
    Pure string processing: no DNS, no disk.
    """

    def normalize(self, raw: str) -> NormalizedDomain:
        if raw is None or not str(raw).strip():
            raise InvalidInputError("Input is empty")

        text = str(raw).strip()

        if is_message(text):
            candidate = self._extract_candidate(text)
            if candidate is None:
                raise InvalidInputError(f"No domain or URL found in message: {text[:80]!r}")
        else:
            candidate = text

        host = self._extract_host(candidate)
        if not host:
            raise InvalidInputError(f"No host component in input: {text[:80]!r}")

        return NormalizedDomain(canonical=host, raw=str(raw))

    def _extract_candidate(self, text: str) -> Optional[str]:
        """Pick the first URL, else the first bare domain, out of a message"""
        url_match = URL_IN_TEXT.search(text)
        if url_match:
            return url_match.group(0)

        domain_match = DOMAIN_IN_TEXT.search(text)
        if domain_match:
            return domain_match.group(1)

        return None

    def _extract_host(self, candidate: str) -> Optional[str]:
        url = candidate if SCHEME_PATTERN.match(candidate) else f"http://{candidate}"

        try:
            hostname = urlparse(url).hostname
        except ValueError as e:
            logger.warning(f"Could not parse {candidate!r}: {e}")
            return None

        if not hostname:
            return None

        hostname = hostname.lower().rstrip('.')
        while hostname.startswith('www.'):
            hostname = hostname[4:]

        hostname = '.'.join(self._decode_label(label) for label in hostname.split('.'))

        if IPV4_PATTERN.match(hostname) or HOST_PATTERN.match(hostname):
            return hostname

        return None

    def _decode_label(self, label: str) -> str:
        """Decode a punycode label so homoglyphs become visible"""
        if not label.startswith('xn--'):
            return label
        try:
            return idna.decode(label).lower()
        except (idna.IDNAError, UnicodeError):
            # Keep the ASCII form if decoding fails
            return label


def is_message(text: str) -> bool:
    """Free text rather than a single URL or domain: it contains whitespace"""
    return any(ch.isspace() for ch in text.strip())


_default_normalizer = DomainNormalizer()


def normalize(raw: str) -> NormalizedDomain:
    return _default_normalizer.normalize(raw)
