"""
Tests for status derivation and grant display status.
"""

import itertools

import pytest

from credential_engine.engine.derivation import count_grants, derive_status, grant_display_status
from credential_engine.models import Grant, GrantDisplayStatus, IdentityStatus


def make_grant(confirmed=False, problematic=False, inactive=False):
    return Grant(
        identity_id="identity-1",
        credential_type_id="type-1",
        confirmed=confirmed,
        problematic=problematic,
        inactive=inactive,
    )


FLAG_COMBINATIONS = list(itertools.product([False, True], repeat=3))


class TestDeriveStatus:
    """Test cases for derive_status."""

    def test_no_grants_is_pending(self):
        assert derive_status([]) == IdentityStatus.PENDING

    def test_all_inactive_is_offboarded(self):
        grants = [make_grant(inactive=True), make_grant(confirmed=True, inactive=True)]
        assert derive_status(grants) == IdentityStatus.OFFBOARDED

    def test_some_inactive_is_offboarding(self):
        grants = [make_grant(confirmed=True), make_grant(inactive=True)]
        assert derive_status(grants) == IdentityStatus.OFFBOARDING_IN_PROGRESS

    def test_all_confirmed_is_onboarded(self):
        grants = [make_grant(confirmed=True), make_grant(confirmed=True)]
        assert derive_status(grants) == IdentityStatus.ONBOARDED

    def test_partially_confirmed_is_pending(self):
        grants = [make_grant(confirmed=True), make_grant()]
        assert derive_status(grants) == IdentityStatus.PENDING

    def test_problematic_flag_is_ignored(self):
        """A reported problem does not move a fully confirmed identity off Onboarded."""
        grants = [make_grant(confirmed=True, problematic=True), make_grant(confirmed=True)]
        assert derive_status(grants) == IdentityStatus.ONBOARDED

        grants = [make_grant(problematic=True)]
        assert derive_status(grants) == IdentityStatus.PENDING

    @pytest.mark.parametrize("flags", FLAG_COMBINATIONS)
    def test_total_over_single_grant(self, flags):
        """Every flag combination derives a defined status."""
        confirmed, problematic, inactive = flags
        status = derive_status([make_grant(confirmed, problematic, inactive)])
        assert status in set(IdentityStatus)
        if inactive:
            assert status == IdentityStatus.OFFBOARDED
        elif confirmed:
            assert status == IdentityStatus.ONBOARDED
        else:
            assert status == IdentityStatus.PENDING

    def test_order_independent(self):
        grants = [make_grant(confirmed=True), make_grant(inactive=True), make_grant()]
        for permutation in itertools.permutations(grants):
            assert derive_status(permutation) == IdentityStatus.OFFBOARDING_IN_PROGRESS

    def test_counts_exclude_inactive_from_confirmed(self):
        counts = count_grants([
            make_grant(confirmed=True, inactive=True),
            make_grant(confirmed=True, problematic=True),
            make_grant(),
        ])
        assert counts.total == 3
        assert counts.inactive == 1
        assert counts.confirmed == 1
        assert counts.problematic == 1


class TestGrantDisplayStatus:
    """Test cases for grant_display_status."""

    def test_pending(self):
        assert grant_display_status(make_grant()) == GrantDisplayStatus.PENDING

    def test_inactive_wins_over_everything(self):
        grant = make_grant(confirmed=True, problematic=True, inactive=True)
        assert grant_display_status(grant) == GrantDisplayStatus.INACTIVE

    def test_confirmed_wins_over_problematic(self):
        grant = make_grant(confirmed=True, problematic=True)
        assert grant_display_status(grant) == GrantDisplayStatus.CONFIRMED

    def test_problematic(self):
        assert grant_display_status(make_grant(problematic=True)) == GrantDisplayStatus.PROBLEMATIC

    @pytest.mark.parametrize("flags", FLAG_COMBINATIONS)
    def test_exactly_one_label(self, flags):
        assert grant_display_status(make_grant(*flags)) in set(GrantDisplayStatus)
