from typing import List

from claims_batching.models import DraftBatch, InsurerConfig


def optimize_bucket(batches: List[DraftBatch], insurer: InsurerConfig) -> List[DraftBatch]:
    """Repack a bucket so batches stay under the insurer's value threshold.

    Claims at or above the threshold are isolated in singleton batches since
    pairing them cannot avoid the surcharge. The rest are packed first-fit
    decreasing: largest value first, a new batch whenever the next claim would
    push the running total over the threshold or the batch is full. Insurers
    without a surcharge above the threshold get their bucket back unchanged.
    """
    if not insurer.penalizes_value_threshold:
        return batches

    threshold = insurer.claim_value_threshold
    claims = [claim for batch in batches for claim in batch.claims]

    packed = [DraftBatch(claims=[claim], isolated=True) for claim in claims if claim.total_amount >= threshold]

    normal = sorted(
        (claim for claim in claims if claim.total_amount < threshold),
        key=lambda claim: (-claim.total_amount, claim.id),
    )
    current = DraftBatch()
    for claim in normal:
        fits = current.total_value + claim.total_amount <= threshold
        if current.claims and (not fits or len(current) >= insurer.max_batch_size):
            packed.append(current)
            current = DraftBatch()
        current.claims.append(claim)
    if current.claims:
        packed.append(current)
    return packed
