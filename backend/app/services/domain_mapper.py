"""
Domain Mapper

Resolves free-text e-mail fields to accounts through the operator-maintained
domain mapping table. Lookup is a case-insensitive exact match on the domain;
there is no fuzzy matching and no TLD normalization.
"""

import re
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from app.config import settings
from app.models import DomainMapping

logger = logging.getLogger(__name__)

# Angle-bracket address, or a bare token containing "@"
ADDRESS_PATTERN = re.compile(r'<([^>]+@[^>]+)>|([^\s<>"]+@[^\s<>",]+)')
DOMAIN_PATTERN = re.compile(r'@([a-zA-Z0-9.-]+)')


@dataclass(frozen=True)
class AccountMatch:
    account_id: str
    account_name: Optional[str]
    domain: str


def extract_domains(text: Optional[str]) -> List[str]:
    """
    All domains found in a free-text address field, in order of appearance.

    Handles display names, angle brackets and comma separated lists:
    '"Jane" <jane@x.com>, bob@y.com' -> ['x.com', 'y.com']
    """
    if not text:
        return []

    domains = []
    for match in ADDRESS_PATTERN.finditer(str(text)):
        address = match.group(1) or match.group(2)
        domain_match = DOMAIN_PATTERN.search(address)
        if not domain_match:
            continue
        domain = domain_match.group(1).strip(".").lower()
        if domain and domain not in domains:
            domains.append(domain)
    return domains


def extract_domain(text: Optional[str]) -> Optional[str]:
    """First domain in a free-text address field, or None."""
    domains = extract_domains(text)
    return domains[0] if domains else None


class DomainMapper:
    """
    Domain -> account dictionary with internal-domain exclusion.

    Candidate addresses are tried in the caller's priority order and the
    first resolved match wins.
    """

    def __init__(self, mappings: Iterable[DomainMapping], internal_domain: Optional[str] = None):
        self.internal_domain = (internal_domain if internal_domain is not None else settings.INTERNAL_DOMAIN or "").lower()
        self._lookup: Dict[str, AccountMatch] = {}

        for mapping in mappings:
            if not mapping.account_id:
                continue
            for domain in mapping.domain_list():
                if domain in self._lookup:
                    # Keep the first mapping; a domain must resolve deterministically
                    logger.warning(
                        f"Domain {domain} mapped to both {self._lookup[domain].account_id} "
                        f"and {mapping.account_id}, keeping the first"
                    )
                    continue
                self._lookup[domain] = AccountMatch(
                    account_id=mapping.account_id,
                    account_name=mapping.account_name,
                    domain=domain
                )

        logger.debug(f"Domain mapper loaded {len(self._lookup)} domains")

    @classmethod
    def from_db(cls, db: Session, internal_domain: Optional[str] = None) -> "DomainMapper":
        return cls(db.query(DomainMapping).all(), internal_domain=internal_domain)

    def __len__(self):
        return len(self._lookup)

    def is_internal(self, domain: Optional[str]) -> bool:
        """True for the internal domain and its subdomains."""
        if not domain or not self.internal_domain:
            return False
        domain = domain.lower()
        return domain == self.internal_domain or domain.endswith("." + self.internal_domain)

    def external_domains(self, text: Optional[str]) -> List[str]:
        return [d for d in extract_domains(text) if not self.is_internal(d)]

    def resolve_account(self, address: Optional[str]) -> Optional[AccountMatch]:
        """
        Resolve one address field to an account.

        When the field holds several addresses, the first one whose domain
        is mapped wins. Internal addresses are never looked up.
        """
        for domain in self.external_domains(address):
            match = self._lookup.get(domain)
            if match:
                return match
        return None

    def resolve_first(self, *candidate_groups) -> Optional[AccountMatch]:
        """
        Try candidate address groups in priority order (e.g. From, To, Cc).

        Each group may be a string or a list of strings.
        """
        for group in candidate_groups:
            if not group:
                continue
            candidates = [group] if isinstance(group, str) else group
            for candidate in candidates:
                match = self.resolve_account(candidate)
                if match:
                    return match
        return None

    def unmapped_domains(self, addresses: Iterable[str]) -> List[str]:
        """External domains appearing in the addresses with no mapping, sorted."""
        missing = set()
        for address in addresses:
            for domain in self.external_domains(address):
                if domain not in self._lookup:
                    missing.add(domain)
        return sorted(missing)
