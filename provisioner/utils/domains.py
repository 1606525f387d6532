"""Domain list normalisation and validation.

An entry is a domain, optionally followed by `|` and an AdSense publisher
id (`example.com|1234567890123456`). The id may carry its `pub-` or
`ca-pub-` prefix; only the digits are kept.
"""

import re
from dataclasses import dataclass, field
from typing import Iterable, Optional

MAX_DOMAINS_PER_JOB = 1000

DOMAIN_PATTERN = re.compile(
    r"^(?:[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,}$"
)

ADSENSE_ID_PATTERN = re.compile(r"^(?:ca-)?(?:pub-)?(\d{10,20})$")


@dataclass
class DomainValidation:
    """Result of validating a submitted domain list.

    `valid` keeps submission order. `invalid` and `duplicates` hold the raw
    entries as they were submitted. `meta` maps a valid domain to the extra
    fields parsed from its entry.
    """

    valid: list[str] = field(default_factory=list)
    invalid: list[str] = field(default_factory=list)
    duplicates: list[str] = field(default_factory=list)
    meta: dict[str, dict[str, str]] = field(default_factory=dict)

    @property
    def has_rejections(self) -> bool:
        return bool(self.invalid or self.duplicates)

    @property
    def has_adsense_ids(self) -> bool:
        return any("adsense_id" in m for m in self.meta.values())


def normalize_domain(domain: str) -> str:
    """Lower-case, trimmed, without scheme, path or trailing dot."""
    value = domain.strip().lower()
    value = re.sub(r"^[a-z][a-z0-9+.-]*://", "", value)
    value = value.split("/", 1)[0]
    return value.rstrip(".")


def is_valid_domain(domain: str) -> bool:
    return len(domain) <= 253 and bool(DOMAIN_PATTERN.match(domain))


def parse_adsense_id(value: str) -> Optional[str]:
    """Digits of an AdSense publisher id, or None if it is malformed."""
    match = ADSENSE_ID_PATTERN.match(value.strip().lower())
    return match.group(1) if match else None


def validate_domains(domains: Iterable[str]) -> DomainValidation:
    """Split submitted entries into valid, invalid and duplicate ones.

    Blank entries are ignored. Duplicates are detected after normalisation,
    so `Example.com` and `example.com ` count as the same domain. An entry
    whose publisher id is malformed is invalid as a whole.
    """
    result = DomainValidation()
    seen: set[str] = set()

    for raw in domains:
        if not raw or not raw.strip():
            continue
        domain_part, _, extra = raw.partition("|")
        domain = normalize_domain(domain_part)
        if domain in seen:
            result.duplicates.append(raw)
            continue
        seen.add(domain)

        adsense_id = parse_adsense_id(extra) if extra.strip() else None
        if not is_valid_domain(domain) or (extra.strip() and adsense_id is None):
            result.invalid.append(raw)
            continue

        result.valid.append(domain)
        if adsense_id is not None:
            result.meta[domain] = {"adsense_id": adsense_id}

    return result
