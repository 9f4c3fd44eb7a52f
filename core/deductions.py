"""
Price deduction rules applied after a device inspection.

These are pure functions of the inspection results and the accepted bid so
they can be used for previews as well as for persisting Deduction rows.

Rules, each a percentage of the bid amount:
- declared condition differs from the inspected condition: 10%
- each functional issue: 5%
- each cosmetic issue: 3%
- fewer than two of {box, charger} included: 5%
- battery health below the threshold (80%): 8%
"""

from collections import namedtuple
from decimal import Decimal, ROUND_HALF_UP

from .conf import marketplace_setting


CONDITION_MISMATCH_RATE = Decimal('0.10')
FUNCTIONAL_ISSUE_RATE = Decimal('0.05')
COSMETIC_ISSUE_RATE = Decimal('0.03')
MISSING_ACCESSORY_RATE = Decimal('0.05')
LOW_BATTERY_RATE = Decimal('0.08')

REQUIRED_ACCESSORIES = ('box', 'charger')

CENT = Decimal('0.01')


DeductionLine = namedtuple('DeductionLine', ['category', 'description', 'rate', 'amount', 'severity'])

DeductionResult = namedtuple('DeductionResult', ['lines', 'total', 'final_offer'])


def quantize_amount(value):
    """Round a Decimal amount half-up to whole paise."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def _planned_lines(declared_condition, actual_condition, battery_health,
                   functional_issues, cosmetic_issues, accessories_included):
    """Yield (category, description, rate, severity) for each rule that applies."""
    if actual_condition and actual_condition != declared_condition:
        yield (
            'condition_mismatch',
            f'Declared {declared_condition}, inspected {actual_condition}',
            CONDITION_MISMATCH_RATE,
            'moderate',
        )

    for issue in functional_issues or []:
        yield ('functional', f'Functional issue: {issue}', FUNCTIONAL_ISSUE_RATE, 'major')

    for issue in cosmetic_issues or []:
        yield ('cosmetic', f'Cosmetic damage: {issue}', COSMETIC_ISSUE_RATE, 'minor')

    included = {str(item).strip().lower() for item in accessories_included or []}
    present = [item for item in REQUIRED_ACCESSORIES if item in included]
    if len(present) < len(REQUIRED_ACCESSORIES):
        missing = ', '.join(item for item in REQUIRED_ACCESSORIES if item not in included)
        yield ('missing_accessory', f'Missing accessories: {missing}', MISSING_ACCESSORY_RATE, 'moderate')

    threshold = marketplace_setting('BATTERY_HEALTH_THRESHOLD')
    if battery_health is not None and battery_health < threshold:
        yield (
            'functional',
            f'Battery health {battery_health}% is below {threshold}%',
            LOW_BATTERY_RATE,
            'major',
        )


def calculate(bid_amount, declared_condition, actual_condition='', battery_health=None,
              functional_issues=None, cosmetic_issues=None, accessories_included=None):
    """
    Calculate deductions for an inspected device.

    Each line is rounded half-up to 0.01 and capped at what is left of the
    bid, so the total never exceeds the bid and the final offer is never
    negative. Lines that round to zero are dropped.

    Args:
        bid_amount: Accepted bid amount (Decimal or numeric string)
        declared_condition: Condition the client listed
        actual_condition: Condition recorded by the agent
        battery_health: Battery health percentage, or None if not measured
        functional_issues: List of functional issue descriptions
        cosmetic_issues: List of cosmetic issue descriptions
        accessories_included: Names of accessories handed over

    Returns:
        DeductionResult: (lines, total, final_offer)
    """
    bid_amount = quantize_amount(bid_amount)
    remaining = bid_amount
    lines = []

    for category, description, rate, severity in _planned_lines(
        declared_condition,
        actual_condition,
        battery_health,
        functional_issues,
        cosmetic_issues,
        accessories_included,
    ):
        amount = min(quantize_amount(bid_amount * rate), remaining)
        if amount <= 0:
            continue
        remaining -= amount
        lines.append(DeductionLine(category, description, rate, amount, severity))

    total = sum((line.amount for line in lines), Decimal('0.00'))
    final_offer = max(Decimal('0.00'), bid_amount - total)
    return DeductionResult(lines, total, final_offer)
