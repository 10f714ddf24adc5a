"""
Status Derivation for the Credential Lifecycle Engine.

Pure functions mapping a set of grants to an identity lifecycle status and
a single grant to its display label.
"""

from typing import Iterable, NamedTuple

from ..models import Grant, GrantDisplayStatus, IdentityStatus


class GrantCounts(NamedTuple):
    """Aggregate flag counts over one identity's grants."""
    total: int
    inactive: int
    confirmed: int
    problematic: int


def count_grants(grants: Iterable[Grant]) -> GrantCounts:
    """
    Count grant flags.

    ``confirmed`` only counts grants that are not inactive, so a revoked grant
    never contributes to an Onboarded result.
    """
    total = inactive = confirmed = problematic = 0
    for grant in grants:
        total += 1
        if grant.inactive:
            inactive += 1
        elif grant.confirmed:
            confirmed += 1
        if grant.problematic:
            problematic += 1
    return GrantCounts(total, inactive, confirmed, problematic)


def derive_status(grants: Iterable[Grant]) -> IdentityStatus:
    """
    Derive the lifecycle status of an identity from all of its grants.

    Args:
        grants: Every grant currently held by the identity

    Returns:
        Offboarded when all grants are inactive, OffboardingInProgress when
        some are, Onboarded when all are confirmed, Pending otherwise
        (including when there are no grants). The problematic flag is ignored.
    """
    counts = count_grants(grants)

    if counts.total > 0 and counts.inactive == counts.total:
        return IdentityStatus.OFFBOARDED
    if counts.inactive > 0:
        return IdentityStatus.OFFBOARDING_IN_PROGRESS
    if counts.total > 0 and counts.confirmed == counts.total:
        return IdentityStatus.ONBOARDED
    return IdentityStatus.PENDING


def grant_display_status(grant: Grant) -> GrantDisplayStatus:
    """
    Display label for a single grant: inactive > confirmed > problematic > pending.

    A grant that is both confirmed and problematic displays as Confirmed even
    when the problem was reported after confirmation. Both flags stay stored,
    and the audit log keeps the report, so the problem is only hidden from
    this label. Whether reporting should clear ``confirmed`` is unresolved.
    """
    if grant.inactive:
        return GrantDisplayStatus.INACTIVE
    if grant.confirmed:
        return GrantDisplayStatus.CONFIRMED
    if grant.problematic:
        return GrantDisplayStatus.PROBLEMATIC
    return GrantDisplayStatus.PENDING
