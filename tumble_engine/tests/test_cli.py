import json
import logging
import os
import tempfile
import unittest

from click.testing import CliRunner

from tumble_engine.cli import cli

QUIET = ['--game', 'high_kitchen', '--log-level', 'ERROR']


def json_payload(output):
    """Parse the JSON document printed after any progress output."""
    return json.loads(output[output.index('{'):])


class TestCli(unittest.TestCase):

    def setUp(self):
        self.runner = CliRunner()
        root = logging.getLogger()
        self._root_state = (root.handlers[:], root.level)

    def tearDown(self):
        # the cli installs a handler on the runner's captured stderr
        root = logging.getLogger()
        handlers, level = self._root_state
        root.handlers = handlers
        root.setLevel(level)

    def invoke(self, *args):
        return self.runner.invoke(cli, QUIET + list(args))

    def test_paytable(self):
        result = self.invoke('paytable')
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Pluffy: High Kitchen", result.output)
        self.assertIn("CHEF", result.output)
        self.assertIn("Bonus buy: 100x bet for 10 spins", result.output)
        self.assertIn("*MID", result.output)
        self.assertIn("pays x1.322", result.output)

    def test_seeded_spin_is_reproducible(self):
        first = self.invoke('spin', '--bet', '2', '--seed', '7', '--brief')
        second = self.invoke('spin', '--bet', '2', '--seed', '7', '--brief')
        self.assertEqual(first.exit_code, 0, first.output)
        data = json_payload(first.output)
        self.assertEqual(data['bet'], 2.0)
        self.assertNotIn('steps', data)
        self.assertEqual(data, json_payload(second.output))

    def test_bonus_buy_mode(self):
        result = self.invoke('buy-bonus', '--bet', '1', '--seed', '3', '--brief')
        self.assertEqual(result.exit_code, 0, result.output)
        data = json_payload(result.output)
        self.assertEqual(data['cost'], 100)
        self.assertNotIn('spins', data)

    def test_invalid_bet_reports_error(self):
        result = self.invoke('spin', '--bet', '0')
        self.assertEqual(result.exit_code, 1)
        self.assertIn("VALIDATION_ERROR", result.output)

    def test_bet_off_the_ladder_is_rejected(self):
        for command in ('spin', 'buy-bonus'):
            result = self.invoke(command, '--bet', '3', '--seed', '1')
            self.assertEqual(result.exit_code, 1, command)
            self.assertIn("VALIDATION_ERROR", result.output)
            self.assertIn("configured bet steps", result.output)

    def test_unknown_volatility(self):
        result = self.invoke('spin', '--volatility', 'turbo', '--seed', '1')
        self.assertEqual(result.exit_code, 1)
        self.assertIn("Unknown volatility profile", result.output)

    def test_unknown_game(self):
        result = self.runner.invoke(cli, ['--game', 'no_such_slot', '--log-level', 'ERROR', 'paytable'])
        self.assertNotEqual(result.exit_code, 0)
        self.assertIn("Configuration file not found", result.output)

    def test_simulate_json(self):
        result = self.invoke('simulate', '--spins', '200', '--seed', '5', '--json')
        self.assertEqual(result.exit_code, 0, result.output)
        data = json_payload(result.output)
        self.assertEqual(data['spins_completed'], 200)
        self.assertEqual(data['seed'], 5)

    def test_simulate_summary_and_graphs(self):
        with tempfile.TemporaryDirectory() as tmp:
            result = self.invoke('simulate', '--spins', '100', '--seed', '5', '--graphs', tmp)
            self.assertEqual(result.exit_code, 0, result.output)
            self.assertIn("--- Simulation Summary ---", result.output)
            self.assertTrue(os.path.isfile(os.path.join(tmp, 'simulation_win_distribution.png')))


if __name__ == '__main__':
    unittest.main()
