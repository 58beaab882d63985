"""Tests for checkout step navigation."""
import pytest

from freshlocal.models.order import FulfilmentType
from freshlocal.services.checkout import CheckoutStep, next_step, previous_step, steps_for

DELIVERY_FLOW = [
    CheckoutStep.DETAIL,
    CheckoutStep.ADDRESS,
    CheckoutStep.TIMESLOT,
    CheckoutStep.REVIEW,
    CheckoutStep.CONFIRMATION,
]
COLLECTION_FLOW = [s for s in DELIVERY_FLOW if s != CheckoutStep.ADDRESS]


class TestSteps:

    def test_delivery_includes_address(self):
        assert steps_for(FulfilmentType.DELIVERY) == DELIVERY_FLOW

    def test_collection_skips_address(self):
        assert steps_for(FulfilmentType.COLLECTION) == COLLECTION_FLOW

    @pytest.mark.parametrize("fulfilment,flow", [
        (FulfilmentType.DELIVERY, DELIVERY_FLOW),
        (FulfilmentType.COLLECTION, COLLECTION_FLOW),
    ])
    def test_walk_forward_and_back(self, fulfilment, flow):
        for current, following in zip(flow, flow[1:]):
            assert next_step(current, fulfilment) == following
            assert previous_step(following, fulfilment) == current

    @pytest.mark.parametrize("fulfilment", list(FulfilmentType))
    def test_ends_stay_put(self, fulfilment):
        assert next_step(CheckoutStep.CONFIRMATION, fulfilment) == CheckoutStep.CONFIRMATION
        assert previous_step(CheckoutStep.DETAIL, fulfilment) == CheckoutStep.DETAIL

    def test_address_step_after_switching_to_collection(self):
        assert next_step(CheckoutStep.ADDRESS, FulfilmentType.COLLECTION) == CheckoutStep.TIMESLOT
        assert previous_step(CheckoutStep.ADDRESS, FulfilmentType.COLLECTION) == CheckoutStep.DETAIL

    def test_accepts_plain_values(self):
        assert next_step("detail", "collection") == CheckoutStep.TIMESLOT
