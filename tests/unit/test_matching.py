#!/usr/bin/env python3
"""
Unit tests for payer identity resolution and roster matching.
"""

from teambot.services.matching import (
    MatchPolicy,
    RosterSnapshot,
    locate,
    match,
    normalize,
    repair_resent_account,
    resolve,
)

HOSTS = "hosté"


class TestNormalize:
    def test_strips_diacritics_and_case(self):
        assert normalize("Jiří Dvořák") == "jiri dvorak"

    def test_collapses_whitespace(self):
        assert normalize("  Petr   Novák ") == "petr novak"


class TestRepairResentAccount:
    def test_extracts_account_from_message(self):
        assert repair_resent_account("TO 123456789/0800 rest of text") == "123456789/0800"

    def test_ten_digit_account(self):
        assert repair_resent_account("TO 1234567890/0300") == "1234567890/0300"

    def test_ignores_plain_messages(self):
        assert repair_resent_account("hokej 2.5.") is None
        assert repair_resent_account("") is None

    def test_pattern_must_start_the_message(self):
        assert repair_resent_account("sent TO 123456789/0800") is None


class TestMatch:
    """Test the pure roster matcher."""

    def test_exact_first_match_wins(self):
        assert match("Bob", ["Alice", "Bob", "Bob"]) == 1

    def test_exact_no_match(self):
        assert match("Carol", ["Alice", "Bob"]) is None

    def test_exact_is_case_sensitive(self):
        assert match("alice", ["Alice"]) is None

    def test_similarity_tolerates_diacritics_and_typos(self):
        assert match("Jiri Dvorak", ["Petr Novák", "Jiří Dvořák"], threshold=0.75) == 1
        assert match("Jiří Dvorák", ["Petr Novák", "Jiri Dvorak"], threshold=0.75) == 1

    def test_similarity_below_threshold(self):
        assert match("Karel", ["Petr Novák", "Jiří Dvořák"], threshold=0.75) is None

    def test_similarity_picks_highest_score(self):
        assert match("Jan Novak", ["Jana Novakova", "Jan Novák"], threshold=0.5) == 1

    def test_similarity_tie_goes_to_first_column(self):
        assert match("Jan Novak", ["Jan Novák", "Jan Nôvak"], threshold=0.5) == 0


class TestLocate:
    def test_known_name(self):
        assert locate("Bob", ["Alice", "Bob", HOSTS], HOSTS) == ("Bob", 1, False)

    def test_unknown_name_goes_to_hosts(self):
        assert locate(None, ["Alice", HOSTS], HOSTS) == (HOSTS, 1, True)

    def test_name_without_column_goes_to_hosts(self):
        assert locate("Carol", ["Alice", HOSTS], HOSTS) == (HOSTS, 1, True)

    def test_no_hosts_column(self):
        assert locate(None, ["Alice"], HOSTS) == (HOSTS, None, True)

    def test_hosts_fallback_disabled(self):
        policy = MatchPolicy(hosts_fallback=False)
        assert locate("Carol", ["Alice", HOSTS], HOSTS, policy) == ("Carol", None, True)


class TestResolve:
    def setup_method(self):
        self.roster = RosterSnapshot(
            names=["Alice", "Bob", HOSTS],
            accounts={"1/100": "Alice", "123456789/0800": "Bob"},
        )

    def test_known_account(self):
        r = resolve("1/100", "", self.roster, HOSTS)
        assert (r.account, r.name, r.column, r.resent, r.unattributed) == ("1/100", "Alice", 0, False, False)

    def test_resent_repair_overrides_account(self):
        r = resolve("1/100", "TO 123456789/0800 rest of text", self.roster, HOSTS)
        assert r.account == "123456789/0800"
        assert r.name == "Bob"
        assert r.resent is True

    def test_resent_repair_disabled(self):
        r = resolve("1/100", "TO 123456789/0800", self.roster, HOSTS, MatchPolicy(resent_repair=False))
        assert r.account == "1/100"
        assert r.name == "Alice"
        assert r.resent is False

    def test_unknown_account_falls_back_to_hosts(self):
        r = resolve("9/999", "", self.roster, HOSTS)
        assert r.name == HOSTS
        assert r.column == 2
        assert r.unattributed is True

    def test_resent_to_unknown_account_is_unattributed(self):
        r = resolve("1/100", "TO 555555555/0100", self.roster, HOSTS)
        assert r.account == "555555555/0100"
        assert r.resent is True
        assert r.unattributed is True
        assert r.name == HOSTS
