import json
import unittest

from marshmallow import ValidationError

from tumble_engine.exceptions import ValidationException
from tumble_engine.schemas import (
    BonusBuyRequestSchema,
    BonusRoundResultSchema,
    SimulationRequestSchema,
    SimulationResultSchema,
    SpinRequestSchema,
    SpinResultSchema,
    load_request,
)
from tumble_engine.utils.rng import SeededRandomSource
from tumble_engine.utils.slot_tester import SlotTester
from tumble_engine.utils.spin_handler import SpinOrchestrator
from tumble_engine.tests.helpers import load_catalog

PROFILES = ['LOW', 'MID', 'DEGEN']


class TestRequestSchemas(unittest.TestCase):

    def test_spin_request_defaults(self):
        data = SpinRequestSchema(volatility_choices=PROFILES).load({'bet': 2, 'volatility': ' mid '})
        self.assertEqual(data, {'bet': 2.0, 'mode': 'base', 'volatility': 'MID'})

    def test_spin_request_rejects_bad_values(self):
        schema = SpinRequestSchema(volatility_choices=PROFILES)
        with self.assertRaises(ValidationError) as ctx:
            schema.load({'bet': 0, 'mode': 'turbo', 'volatility': 'extreme'})
        self.assertEqual(set(ctx.exception.messages), {'bet', 'mode', 'volatility'})

    def test_bet_steps(self):
        schema = SpinRequestSchema(bet_steps=load_catalog().bet_steps)
        self.assertEqual(schema.load({'bet': 0.4})['bet'], 0.4)
        with self.assertRaises(ValidationError):
            schema.load({'bet': 3})

    def test_bonus_buy_bet_steps(self):
        schema = BonusBuyRequestSchema(bet_steps=load_catalog().bet_steps)
        self.assertEqual(schema.load({'bet': 5})['bet'], 5.0)
        with self.assertRaises(ValidationError) as ctx:
            schema.load({'bet': 3})
        self.assertIn('bet', ctx.exception.messages)

    def test_load_request_wraps_errors(self):
        with self.assertRaises(ValidationException) as ctx:
            load_request(BonusBuyRequestSchema(), {'bet': -5})
        self.assertEqual(ctx.exception.status_code, 422)
        self.assertIn('bet', ctx.exception.details)

    def test_simulation_request(self):
        data = SimulationRequestSchema().load({'spins': 1000})
        self.assertEqual(data['bet'], 1.0)
        self.assertEqual(data['workers'], 1)
        self.assertIsNone(data['seed'])
        self.assertIsNone(data['volatility'])
        with self.assertRaises(ValidationError):
            SimulationRequestSchema().load({'spins': 0})
        with self.assertRaises(ValidationError):
            SimulationRequestSchema().load({'spins': 10, 'seed': -1})


class TestResultSchemas(unittest.TestCase):

    def setUp(self):
        self.catalog = load_catalog()

    def test_spin_result_dump(self):
        orchestrator = SpinOrchestrator(self.catalog, rng=SeededRandomSource(4))
        for _ in range(30):
            result = orchestrator.spin(2.0)
            data = SpinResultSchema().dump(result)
            json.dumps(data)
            self.assertEqual(data['mode'], 'base')
            self.assertEqual(len(data['initial_grid']), 5)
            self.assertEqual(len(data['initial_grid'][0]), 6)
            self.assertEqual(data['cascade_count'], len(data['steps']))
            self.assertEqual(data['total_win'], result.total_win)
            for step in data['steps']:
                self.assertTrue(step['winning_cells'])
                self.assertEqual(len(step['cascade_result']['spawned_cells']), len(step['winning_cells']))

    def test_brief_spin_dump(self):
        result = SpinOrchestrator(self.catalog, rng=SeededRandomSource(4)).spin(1.0)
        data = SpinResultSchema(exclude=("initial_grid", "final_grid", "steps")).dump(result)
        self.assertNotIn('steps', data)
        self.assertIn('total_payout', data)

    def test_bonus_round_dump(self):
        result = SpinOrchestrator(self.catalog, rng=SeededRandomSource(6)).buy_bonus(1.0)
        data = BonusRoundResultSchema().dump(result)
        json.dumps(data)
        self.assertEqual(data['trigger'], 'buy')
        self.assertEqual(data['cost'], 100)
        self.assertEqual(len(data['spins']), data['state']['spins_played'])
        self.assertNotIn('bonus_round', data['spins'][0])
        self.assertEqual(data['spins'][0]['mode'], 'bonus')
        self.assertEqual(data['state']['effective_multiplier'], result.state.effective_multiplier)

    def test_simulation_result_dump(self):
        result = SlotTester(self.catalog, num_spins=100, seed=2).run_simulation()
        data = SimulationResultSchema().dump(result)
        json.dumps(data)
        self.assertEqual(data['spins_completed'], 100)
        self.assertEqual(sum(data['win_distribution'].values()), 100)
        self.assertEqual(data['bonus_stats']['triggered'], result.bonus_triggered)
        self.assertTrue(data['rtp_over_time'])


if __name__ == '__main__':
    unittest.main()
