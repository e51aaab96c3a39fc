from typing import Dict, Iterable, List

from claims_batching.models import Claim, InsurerConfig


def group_by_provider(claims: Iterable[Claim]) -> Dict[str, List[Claim]]:
    """Group claims by provider, keeping providers in order of first appearance."""
    groups: Dict[str, List[Claim]] = {}
    for claim in claims:
        groups.setdefault(claim.provider_name, []).append(claim)
    return groups


def sort_key(claim: Claim, insurer: InsurerConfig):
    # cheap specialties first, then urgent, then oldest by the insurer's date field
    return (
        insurer.specialty_cost(claim.specialty),
        -claim.priority_level,
        claim.preferred_date(insurer.date_preference),
        claim.id,
    )


def sort_claims(claims: Iterable[Claim], insurer: InsurerConfig) -> Dict[str, List[Claim]]:
    """Provider groups, each ordered so the best processing slots go to cheap, urgent, early claims."""
    return {
        provider: sorted(group, key=lambda claim: sort_key(claim, insurer))
        for provider, group in group_by_provider(claims).items()
    }
