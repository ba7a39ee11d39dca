"""
Feed loader for the account registry exports.

Header-named CSV rows are resolved once into typed columns here; nothing
downstream looks columns up by header name. Accounts are upserted, the other
feeds are replaced wholesale inside one transaction.
"""

import csv
import io
import logging
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from app.errors import ConfigurationError
from app.models import Account, Opportunity, RenewalRecord, DomainMapping
from app.services.normalization import normalization_service as norm

logger = logging.getLogger(__name__)


# Feed header -> model attribute, per feed
FEED_COLUMNS = {
    "accounts": {
        "required": {"Id": "id", "Name": "name", "next_renewal_opportunity_id": "next_renewal_opportunity_id"},
        "optional": {"Auto_Renewal__c": "auto_renewal"},
    },
    "opportunities": {
        "required": {"Id": "id", "Name": "name"},
        "optional": {"AccountId": "account_id"},
    },
    "renewals": {
        "required": {"Link to SF Opportunity": "link"},
        "optional": {
            "Renewal Date": "renewal_date",
            "Renewable": "renewable",
            "Forcast": "forecast_category",
            "Status": "status",
            "Stage": "stage",
            "Amount (gross)": "amount_gross",
            "Login Score": "login_score",
            "Audit Usage": "audit_usage",
            "Journey Usage": "journey_usage",
            "Forecast": "forecast",
            "CSM": "csm",
            "AE": "ae",
            "Support Type": "support_type",
        },
    },
    "domain-mappings": {
        "required": {"Account ID": "account_id", "Email Domains": "domains"},
        "optional": {"Account Name": "account_name"},
    },
}


@dataclass
class FeedImportResult:
    feed: str
    created: int = 0
    updated: int = 0
    skipped: int = 0
    unresolved: int = 0
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def parse_csv_file(file_content: bytes) -> Tuple[List[str], List[Dict[str, Any]]]:
    """Parse CSV file and return headers and rows."""
    try:
        text_content = file_content.decode('utf-8-sig')
    except UnicodeDecodeError:
        text_content = file_content.decode('latin-1')

    csv_reader = csv.DictReader(io.StringIO(text_content))
    headers = [h.strip() for h in (csv_reader.fieldnames or [])]
    rows = [
        {(k or "").strip(): v for k, v in row.items()}
        for row in csv_reader
    ]
    return headers, rows


def map_rows(feed: str, headers: Optional[List[str]], rows: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    """
    Resolve header-named rows to attribute dicts for a feed.

    Raises:
        ConfigurationError: unknown feed or a required column is absent
    """
    if feed not in FEED_COLUMNS:
        raise ConfigurationError(f"Unknown feed '{feed}'")

    columns = FEED_COLUMNS[feed]
    if headers is None:
        headers = list(rows[0].keys()) if rows else list(columns["required"].keys())

    missing = [h for h in columns["required"] if h not in headers]
    if missing:
        raise ConfigurationError(f"Feed '{feed}' is missing required column(s): {', '.join(missing)}")

    all_columns = {**columns["required"], **columns["optional"]}
    mapped = []
    for row in rows:
        mapped.append({
            attr: norm.clean_text(row.get(header))
            for header, attr in all_columns.items()
            if header in headers
        })
    return mapped


class FeedLoader:
    """Imports registry feeds into the entity store."""

    def __init__(self, db: Session):
        self.db = db

    def load(self, feed: str, rows: List[Dict[str, Any]], headers: Optional[List[str]] = None) -> FeedImportResult:
        loaders = {
            "accounts": self.load_accounts,
            "opportunities": self.load_opportunities,
            "renewals": self.load_renewals,
            "domain-mappings": self.load_domain_mappings,
        }
        if feed not in loaders:
            raise ConfigurationError(f"Unknown feed '{feed}'")
        return loaders[feed](rows, headers)

    # ========================================================================
    # ACCOUNTS (upsert, never delete)
    # ========================================================================

    def load_accounts(self, rows, headers=None) -> FeedImportResult:
        result = FeedImportResult(feed="accounts")
        records = map_rows("accounts", headers, rows)
        existing = {a.id: a for a in self.db.query(Account).all()}

        try:
            for record in records:
                account_id = record.get("id")
                if not account_id:
                    result.skipped += 1
                    continue

                account = existing.get(account_id)
                if account is None:
                    account = Account(id=account_id, is_active=False)
                    self.db.add(account)
                    existing[account_id] = account
                    result.created += 1
                else:
                    result.updated += 1

                account.name = record.get("name") or account.name or account_id
                account.next_renewal_opportunity_id = record.get("next_renewal_opportunity_id") or None
                if "auto_renewal" in record:
                    account.auto_renewal = record["auto_renewal"] or None

            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Accounts feed: {result.created} created, {result.updated} updated, {result.skipped} skipped")
        return result

    # ========================================================================
    # OPPORTUNITIES (replace)
    # ========================================================================

    def load_opportunities(self, rows, headers=None) -> FeedImportResult:
        result = FeedImportResult(feed="opportunities")
        records = map_rows("opportunities", headers, rows)

        try:
            self.db.query(Opportunity).delete()
            seen = set()
            for record in records:
                opp_id = record.get("id")
                if not opp_id or opp_id in seen:
                    result.skipped += 1
                    continue
                seen.add(opp_id)
                self.db.add(Opportunity(
                    id=opp_id,
                    name=record.get("name", ""),
                    account_id=record.get("account_id") or None
                ))
                result.created += 1

            self.db.flush()
            # Renewal rows carry the surrogate id; refresh it against the new table
            result.unresolved = self._normalize_renewals()
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Opportunities feed: {result.created} loaded, {result.skipped} skipped")
        return result

    # ========================================================================
    # RENEWALS (replace, display name -> opportunity id)
    # ========================================================================

    def load_renewals(self, rows, headers=None) -> FeedImportResult:
        result = FeedImportResult(feed="renewals")
        records = map_rows("renewals", headers, rows)
        name_to_id = self._opportunity_ids_by_name()

        try:
            self.db.query(RenewalRecord).delete()
            seen = set()
            for record in records:
                cell = record.pop("link", "")
                name = norm.extract_link_name(cell)
                if not name:
                    result.skipped += 1
                    continue
                if name in seen:
                    result.skipped += 1
                    result.warnings.append(f"Duplicate renewal row for '{name}'")
                    continue
                seen.add(name)

                opportunity_id = name_to_id.get(name)
                if opportunity_id is None:
                    result.unresolved += 1
                    logger.warning(f"Renewal '{name}' has no matching opportunity")

                renewal_date = record.pop("renewal_date", None)
                self.db.add(RenewalRecord(
                    opportunity_name=name,
                    opportunity_id=opportunity_id,
                    link=norm.extract_link_url(cell),
                    renewal_date=norm.parse_datetime(renewal_date),
                    **{k: (v or None) for k, v in record.items()}
                ))
                result.created += 1

            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"Renewal feed: {result.created} loaded, {result.unresolved} unresolved, "
            f"{result.skipped} skipped"
        )
        return result

    # ========================================================================
    # DOMAIN MAPPINGS (replace)
    # ========================================================================

    def load_domain_mappings(self, rows, headers=None) -> FeedImportResult:
        result = FeedImportResult(feed="domain-mappings")
        records = map_rows("domain-mappings", headers, rows)

        try:
            self.db.query(DomainMapping).delete()
            seen = set()
            for record in records:
                account_id = record.get("account_id")
                if not account_id or account_id in seen:
                    result.skipped += 1
                    continue
                seen.add(account_id)
                domains = ",".join(
                    d.strip().lower() for d in record.get("domains", "").split(",") if d.strip()
                )
                self.db.add(DomainMapping(
                    account_id=account_id,
                    account_name=record.get("account_name") or None,
                    domains=domains
                ))
                result.created += 1

            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Domain mappings: {result.created} loaded, {result.skipped} skipped")
        return result

    # ========================================================================
    # HELPERS
    # ========================================================================

    def _opportunity_ids_by_name(self) -> Dict[str, str]:
        lookup = {}
        for opp in self.db.query(Opportunity).order_by(Opportunity.id).all():
            lookup.setdefault(opp.name, opp.id)
        return lookup

    def _normalize_renewals(self) -> int:
        """Re-resolve renewal opportunity ids. Returns the number left unresolved."""
        name_to_id = self._opportunity_ids_by_name()
        unresolved = 0
        for renewal in self.db.query(RenewalRecord).all():
            renewal.opportunity_id = name_to_id.get(renewal.opportunity_name)
            if renewal.opportunity_id is None:
                unresolved += 1
        return unresolved
