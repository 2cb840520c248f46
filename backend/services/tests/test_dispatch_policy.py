import uuid
from datetime import timedelta
from decimal import Decimal

from django.test import SimpleTestCase, override_settings

from common.utils import calculate_distance, is_valid_coordinate
from services.dispatch import DispatchConfig
from services.dispatch.eligibility import (
    is_eligible,
    rank_eligible_operators,
    rank_requests_for_operator,
)
from services.dispatch.expansion import (
    elapsed_seconds,
    expansion_round,
    has_timed_out,
    pool_size,
    should_notify,
)
from services.dispatch.types import Coordinates

from .fakes import T0, WARSAW, make_operator, make_request

# ~5 km and ~30 km north of the request origin
FIVE_KM = 5 / 111.195
THIRTY_KM = 30 / 111.195


class DistanceTests(SimpleTestCase):

    def test_zero_for_same_point(self):
        self.assertEqual(calculate_distance(52.23, 21.01, 52.23, 21.01), 0.0)

    def test_symmetric(self):
        there = calculate_distance(52.23, 21.01, 50.06, 19.94)
        back = calculate_distance(50.06, 19.94, 52.23, 21.01)
        self.assertAlmostEqual(there, back, places=9)

    def test_warsaw_to_krakow(self):
        # Roughly 252 km as the crow flies
        self.assertAlmostEqual(calculate_distance(52.23, 21.01, 50.06, 19.94), 252, delta=3)

    def test_one_degree_of_latitude(self):
        self.assertAlmostEqual(calculate_distance(0, 0, 1, 0), 111.19, delta=0.05)

    def test_antipodal_points_do_not_overflow(self):
        self.assertAlmostEqual(calculate_distance(0, 0, 0, 180), 20015.1, delta=1)

    def test_coordinate_validation(self):
        self.assertTrue(is_valid_coordinate(52.23, 21.01))
        self.assertTrue(is_valid_coordinate(-90, 180))
        self.assertFalse(is_valid_coordinate(90.5, 0))
        self.assertFalse(is_valid_coordinate(0, -180.1))
        self.assertFalse(is_valid_coordinate("north", 0))
        self.assertFalse(is_valid_coordinate(None, 0))


class ExpansionTests(SimpleTestCase):

    def setUp(self):
        self.config = DispatchConfig()

    def test_round_is_integer_division_of_elapsed_time(self):
        self.assertEqual(expansion_round(0, self.config), 0)
        self.assertEqual(expansion_round(29.9, self.config), 0)
        self.assertEqual(expansion_round(30, self.config), 1)
        self.assertEqual(expansion_round(95, self.config), 3)
        self.assertEqual(expansion_round(120, self.config), 4)

    def test_pool_grows_by_ten_each_round(self):
        self.assertEqual(
            [pool_size(r, self.config) for r in range(4)],
            [15, 25, 35, 45],
        )

    def test_times_out_only_after_the_last_round(self):
        self.assertFalse(has_timed_out(3, self.config))
        self.assertTrue(has_timed_out(4, self.config))

    def test_clock_skew_counts_as_zero_elapsed(self):
        self.assertEqual(elapsed_seconds(T0, T0 - timedelta(seconds=10)), 0.0)
        self.assertEqual(expansion_round(elapsed_seconds(T0, T0 - timedelta(seconds=10)), self.config), 0)

    def test_should_notify_only_on_new_rounds(self):
        self.assertTrue(should_notify(0, None))
        self.assertFalse(should_notify(0, 0))
        self.assertTrue(should_notify(1, 0))
        self.assertFalse(should_notify(1, 2))

    def test_custom_config(self):
        config = DispatchConfig(round_duration_seconds=10, initial_pool_size=2, expansion_increment=1, max_rounds=1)
        self.assertEqual(expansion_round(25, config), 2)
        self.assertEqual(pool_size(2, config), 4)
        self.assertTrue(has_timed_out(2, config))

    def test_rejects_invalid_config(self):
        with self.assertRaises(ValueError):
            DispatchConfig(round_duration_seconds=0)
        with self.assertRaises(ValueError):
            DispatchConfig(tick_interval_seconds=-1)
        with self.assertRaises(ValueError):
            DispatchConfig(max_rounds=-1)

    @override_settings(
        DISPATCH_ROUND_DURATION_SECONDS=12,
        DISPATCH_INITIAL_POOL_SIZE=3,
        OFFER_MAX_PRICE="500",
    )
    def test_config_from_settings(self):
        config = DispatchConfig.from_settings()
        self.assertEqual(config.round_duration_seconds, 12)
        self.assertEqual(config.initial_pool_size, 3)
        self.assertEqual(config.max_offer_price, Decimal("500"))
        self.assertEqual(config.max_rounds, 3)


class EligibilityTests(SimpleTestCase):

    def test_radius_is_the_operators_own(self):
        request = make_request()
        near = make_operator("Near", offset_lat=FIVE_KM, service_radius_km=20)
        far = make_operator("Far", offset_lat=THIRTY_KM, service_radius_km=20)

        self.assertTrue(is_eligible(request, near))
        self.assertFalse(is_eligible(request, far))

    def test_wide_radius_operator_reaches_far_request(self):
        request = make_request()
        far = make_operator("Far", offset_lat=THIRTY_KM, service_radius_km=50)
        self.assertTrue(is_eligible(request, far))

    def test_unavailable_or_unlocated_operators_are_not_eligible(self):
        request = make_request()
        self.assertFalse(is_eligible(request, make_operator(is_available=False)))
        self.assertFalse(is_eligible(request, make_operator(location=None)))

    def test_required_equipment_must_be_carried(self):
        winch = uuid.uuid4()
        request = make_request(required_equipment_id=winch)

        self.assertFalse(is_eligible(request, make_operator(equipment_ids=frozenset())))
        self.assertTrue(is_eligible(request, make_operator(equipment_ids=frozenset({winch}))))

    def test_request_without_equipment_ignores_operator_equipment(self):
        request = make_request()
        self.assertTrue(is_eligible(request, make_operator(equipment_ids=frozenset({uuid.uuid4()}))))

    def test_ranking_is_nearest_first_and_limited(self):
        request = make_request()
        operators = [
            make_operator("C", offset_lat=0.09),
            make_operator("A", offset_lat=0.01),
            make_operator("B", offset_lat=0.05),
            make_operator("Out", offset_lat=THIRTY_KM),
        ]

        ranked = rank_eligible_operators(request, operators)
        self.assertEqual([op.name for op, _ in ranked], ["A", "B", "C"])
        self.assertEqual(len(rank_eligible_operators(request, operators, limit=2)), 2)
        self.assertEqual(rank_eligible_operators(request, operators, limit=0), [])

    def test_ranking_ties_are_stable_by_operator_id(self):
        request = make_request()
        first = make_operator("X", id=uuid.UUID(int=1), offset_lat=0.01)
        second = make_operator("Y", id=uuid.UUID(int=2), offset_lat=0.01)

        ranked = rank_eligible_operators(request, [second, first])
        self.assertEqual([op.id for op, _ in ranked], [first.id, second.id])

    def test_requests_for_operator_uses_same_predicate(self):
        operator = make_operator(location=WARSAW)
        close = make_request(origin=Coordinates(WARSAW.latitude + FIVE_KM, WARSAW.longitude))
        closer = make_request(origin=Coordinates(WARSAW.latitude + 0.01, WARSAW.longitude))
        too_far = make_request(origin=Coordinates(WARSAW.latitude + THIRTY_KM, WARSAW.longitude))

        matches = rank_requests_for_operator(operator, [close, too_far, closer])

        self.assertEqual([request.id for request, _ in matches], [closer.id, close.id])
        self.assertAlmostEqual(matches[1][1], 5.0, delta=0.05)
