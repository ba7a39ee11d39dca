# tests/services/test_feed_loader.py
"""
Tests for the registry feed loader

Coverage:
- CSV parsing (BOM, header trimming)
- Column mapping and missing required columns
- Accounts upsert, opportunities/renewals/mappings replace
- Renewal link name -> opportunity id resolution
"""

import pytest
from datetime import datetime

from app.errors import ConfigurationError
from app.models import Account, Opportunity, RenewalRecord, DomainMapping
from app.services.feed_loader import FeedLoader, parse_csv_file, map_rows


# ============================================================================
# TEST: Parsing and mapping
# ============================================================================

class TestParsing:

    def test_bom_and_header_whitespace(self):
        content = "\ufeffId , Name\nA1,Acme\n".encode("utf-8")
        headers, rows = parse_csv_file(content)
        assert headers == ["Id", "Name"]
        assert rows == [{"Id": "A1", "Name": "Acme"}]

    def test_latin1_fallback(self):
        content = "Id,Name\nA1,Soci\xe9t\xe9\n".encode("latin-1")
        _, rows = parse_csv_file(content)
        assert rows[0]["Name"] == "Soci\xe9t\xe9"

    def test_missing_required_column(self):
        with pytest.raises(ConfigurationError) as exc:
            map_rows("accounts", ["Id", "Name"], [])
        assert "next_renewal_opportunity_id" in str(exc.value)

    def test_unknown_feed(self):
        with pytest.raises(ConfigurationError):
            map_rows("contacts", ["Id"], [])

    def test_optional_columns_only_when_present(self):
        rows = [{"Id": " O1 ", "Name": "Renewal"}]
        assert map_rows("opportunities", ["Id", "Name"], rows) == [{"id": "O1", "name": "Renewal"}]


# ============================================================================
# TEST: Loading
# ============================================================================

class TestLoadAccounts:

    def test_upsert_keeps_existing_rows(self, acme_registry):
        loader = FeedLoader(acme_registry)
        rows = [
            {"Id": "ACC1", "Name": "Acme Corporation", "next_renewal_opportunity_id": "OPP9"},
            {"Id": "ACC2", "Name": "Globex", "next_renewal_opportunity_id": ""},
            {"Id": "", "Name": "No id", "next_renewal_opportunity_id": ""},
        ]

        result = loader.load("accounts", rows)

        assert (result.created, result.updated, result.skipped) == (1, 1, 1)
        acme = acme_registry.get(Account, "ACC1")
        assert acme.name == "Acme Corporation"
        assert acme.next_renewal_opportunity_id == "OPP9"
        assert acme_registry.get(Account, "ACC2").next_renewal_opportunity_id is None

    def test_missing_column_leaves_table_untouched(self, acme_registry):
        with pytest.raises(ConfigurationError):
            FeedLoader(acme_registry).load("accounts", [{"Id": "X"}], headers=["Id"])
        assert acme_registry.query(Account).count() == 1


class TestLoadRenewals:

    def test_hyperlink_resolves_to_opportunity(self, acme_registry):
        rows = [
            {
                "Link to SF Opportunity": '=HYPERLINK("https://crm.test/OPP1","2026 - REN - Acme")',
                "Renewal Date": "2026-04-01",
                "Stage": "Closed Won",
                "CSM": "Casey",
            },
            {"Link to SF Opportunity": "Unknown renewal", "Renewal Date": ""},
        ]

        result = FeedLoader(acme_registry).load("renewals", rows)

        assert result.created == 2
        assert result.unresolved == 1
        acme = acme_registry.query(RenewalRecord).filter_by(opportunity_name="2026 - REN - Acme").one()
        assert acme.opportunity_id == "OPP1"
        assert acme.link == "https://crm.test/OPP1"
        assert acme.renewal_date == datetime(2026, 4, 1)
        assert acme.stage == "Closed Won"
        other = acme_registry.query(RenewalRecord).filter_by(opportunity_name="Unknown renewal").one()
        assert other.opportunity_id is None

    def test_feed_is_replaced(self, acme_registry):
        FeedLoader(acme_registry).load("renewals", [{"Link to SF Opportunity": "Other"}])
        names = [r.opportunity_name for r in acme_registry.query(RenewalRecord).all()]
        assert names == ["Other"]

    def test_duplicate_rows_skipped(self, acme_registry):
        rows = [{"Link to SF Opportunity": "Dup"}, {"Link to SF Opportunity": "Dup"}]
        result = FeedLoader(acme_registry).load("renewals", rows)
        assert result.created == 1
        assert result.skipped == 1
        assert result.warnings


class TestLoadOpportunities:

    def test_reload_re_resolves_renewals(self, acme_registry):
        rows = [{"Id": "OPP7", "Name": "2026 - REN - Acme"}]

        result = FeedLoader(acme_registry).load("opportunities", rows)

        assert result.created == 1
        assert acme_registry.get(Opportunity, "OPP1") is None
        renewal = acme_registry.query(RenewalRecord).one()
        assert renewal.opportunity_id == "OPP7"


class TestLoadDomainMappings:

    def test_domains_lowercased(self, acme_registry):
        rows = [{"Account ID": "ACC1", "Account Name": "Acme Corp", "Email Domains": "ACME.com, Acme.IO ,"}]

        FeedLoader(acme_registry).load("domain-mappings", rows)

        mapping = acme_registry.get(DomainMapping, "ACC1")
        assert mapping.domains == "acme.com,acme.io"
        assert mapping.domain_list() == ["acme.com", "acme.io"]
