"""Step order of the customer checkout flow.

Collection orders have no address step. Moving past either end stays put.
"""
from enum import Enum
from typing import List

from ..models.order import FulfilmentType

class CheckoutStep(str, Enum):
    DETAIL = "detail"
    ADDRESS = "address"
    TIMESLOT = "timeslot"
    REVIEW = "review"
    CONFIRMATION = "confirmation"

def steps_for(fulfilment_type: FulfilmentType) -> List[CheckoutStep]:
    steps = list(CheckoutStep)
    if FulfilmentType(fulfilment_type) == FulfilmentType.COLLECTION:
        steps.remove(CheckoutStep.ADDRESS)
    return steps

def _move(step: CheckoutStep, fulfilment_type: FulfilmentType, offset: int) -> CheckoutStep:
    step = CheckoutStep(step)
    steps = steps_for(fulfilment_type)
    if step not in steps:
        # Switched to collection while on the address step
        return CheckoutStep.TIMESLOT if offset > 0 else CheckoutStep.DETAIL
    index = min(max(steps.index(step) + offset, 0), len(steps) - 1)
    return steps[index]

def next_step(step: CheckoutStep, fulfilment_type: FulfilmentType) -> CheckoutStep:
    return _move(step, fulfilment_type, 1)

def previous_step(step: CheckoutStep, fulfilment_type: FulfilmentType) -> CheckoutStep:
    return _move(step, fulfilment_type, -1)
