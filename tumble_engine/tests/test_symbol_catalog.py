import copy
import json
import os
import tempfile
import unittest

from tumble_engine.exceptions import ConfigurationException, ValidationException
from tumble_engine.utils.symbol_catalog import (
    GameMode,
    SymbolCatalog,
    SymbolId,
    load_game_config,
    resolve_config_path,
)
from tumble_engine.tests.helpers import load_catalog


def raw_config():
    with open(resolve_config_path('high_kitchen')) as f:
        return json.load(f)


def symbol_entry(config, symbol_id):
    return next(s for s in config['game']['symbols'] if s['id'] == symbol_id)


class TestReferenceCatalog(unittest.TestCase):

    def setUp(self):
        self.catalog = load_catalog()

    def test_layout_and_symbols(self):
        self.assertEqual(self.catalog.rows, 5)
        self.assertEqual(self.catalog.columns, 6)
        self.assertEqual(self.catalog.min_match, 8)
        self.assertEqual(len(self.catalog.paying_symbols), 8)
        self.assertNotIn(SymbolId.SCATTER, self.catalog.paying_symbols)
        self.assertNotIn(SymbolId.MULTIPLIER, self.catalog.paying_symbols)
        self.assertEqual(self.catalog.paying_symbols[0], SymbolId.CHEF)

    def test_weight_tables_per_mode(self):
        base = dict(self.catalog.weight_table(GameMode.BASE))
        bonus = dict(self.catalog.weight_table('bonus'))
        self.assertEqual(base[SymbolId.MULTIPLIER], 0)
        self.assertGreater(bonus[SymbolId.MULTIPLIER], 0)
        self.assertEqual(base[SymbolId.SCATTER], 0.02)
        self.assertEqual(bonus[SymbolId.SCATTER], 0.015)

    def test_rolling_pin_tiers(self):
        payout = self.catalog.get_payout_multiplier
        self.assertEqual(payout(SymbolId.ROLLING, 7), 0)
        self.assertEqual(payout(SymbolId.ROLLING, 8), 0.75)
        self.assertEqual(payout(SymbolId.ROLLING, 9), 0.75)
        self.assertEqual(payout(SymbolId.ROLLING, 10), 1)
        self.assertEqual(payout(SymbolId.ROLLING, 12), 2.5)
        self.assertEqual(payout(SymbolId.ROLLING, 30), 2.5)

    def test_payout_monotonic_in_count(self):
        for symbol_id in self.catalog.paying_symbols:
            previous = 0
            for count in range(0, self.catalog.cell_count + 1):
                current = self.catalog.get_payout_multiplier(symbol_id, count)
                self.assertGreaterEqual(current, previous, f"{symbol_id} payout dropped at {count}")
                previous = current

    def test_non_paying_lookup_raises(self):
        with self.assertRaises(ConfigurationException):
            self.catalog.get_payout_multiplier(SymbolId.SCATTER, 8)
        with self.assertRaises(ConfigurationException):
            self.catalog.get_payout_multiplier(SymbolId.MULTIPLIER, 8)

    def test_scatter_awards(self):
        self.assertEqual(self.catalog.trigger_threshold, 4)
        self.assertEqual(self.catalog.scatter_award(3), 0)
        self.assertEqual(self.catalog.scatter_award(4), 10)
        self.assertEqual(self.catalog.scatter_award(5), 15)
        self.assertEqual(self.catalog.scatter_award(6), 20)
        self.assertEqual(self.catalog.scatter_award(7), 20)

    def test_profiles(self):
        self.assertEqual(self.catalog.profile().name, 'MID')
        self.assertEqual(self.catalog.profile('low').hit_frequency, 0.40)
        self.assertEqual(self.catalog.profile('DEGEN').bonus_frequency, 0.0025)
        with self.assertRaises(ValidationException):
            self.catalog.profile('ULTRA')

    def test_profile_payout_scales(self):
        self.assertEqual(self.catalog.profile('MID').payout_scale, 1.0)
        self.assertLess(self.catalog.profile('LOW').payout_scale, 1.0)
        self.assertGreater(self.catalog.profile('DEGEN').payout_scale, 1.0)

    def test_scatter_control_enabled_by_game(self):
        self.assertTrue(self.catalog.scatter_control)

    def test_bonus_constants(self):
        self.assertEqual(self.catalog.bonus_buy_cost_x, 100)
        self.assertEqual(self.catalog.bonus_buy_spins, 10)
        self.assertEqual(self.catalog.retrigger_count, 3)
        self.assertEqual(self.catalog.retrigger_spins, 5)
        self.assertEqual(self.catalog.max_win_per_spin_x, 5000)
        self.assertEqual(self.catalog.max_cascades, 50)
        self.assertEqual(self.catalog.default_bet, 2)

    def test_win_categories(self):
        self.assertIsNone(self.catalog.win_category(0.5))
        self.assertEqual(self.catalog.win_category(1).name, 'NICE')
        self.assertEqual(self.catalog.win_category(10).name, 'BIG')
        self.assertEqual(self.catalog.win_category(99.9).name, 'MEGA')
        self.assertEqual(self.catalog.win_category(100).name, 'INSANE')


class TestConfigValidation(unittest.TestCase):

    def assertRejected(self, config):
        with self.assertRaises(ConfigurationException) as ctx:
            SymbolCatalog.from_config(config)
        self.assertIn("Config validation error", str(ctx.exception))

    def test_reference_config_is_valid(self):
        catalog = SymbolCatalog.from_config(raw_config())
        self.assertEqual(catalog.short_name, 'high_kitchen')

    def test_unknown_symbol_id(self):
        config = raw_config()
        symbol_entry(config, 'CHEF')['id'] = 'SOUS_CHEF'
        self.assertRejected(config)

    def test_missing_symbol_definition(self):
        config = raw_config()
        config['game']['symbols'] = [s for s in config['game']['symbols'] if s['id'] != 'PIZZA']
        config['game']['forced_win']['symbol_weights'].pop('PIZZA')
        self.assertRejected(config)

    def test_paying_symbol_without_tiers(self):
        config = raw_config()
        symbol_entry(config, 'MUFFIN')['cluster_payouts'] = {}
        self.assertRejected(config)

    def test_tier_below_min_match(self):
        config = raw_config()
        symbol_entry(config, 'MUFFIN')['cluster_payouts']['6'] = 0.5
        self.assertRejected(config)

    def test_decreasing_tiers(self):
        config = raw_config()
        symbol_entry(config, 'CHEF')['cluster_payouts']['12'] = 3.5
        self.assertRejected(config)

    def test_zero_weight_mode(self):
        config = raw_config()
        for sym in config['game']['symbols']:
            sym['bonus_weight'] = 0
        self.assertRejected(config)

    def test_negative_weight(self):
        config = raw_config()
        symbol_entry(config, 'COOKIE')['weight'] = -0.1
        self.assertRejected(config)

    def test_scatter_flag_on_wrong_symbol(self):
        config = raw_config()
        symbol_entry(config, 'CHEF')['is_scatter'] = True
        self.assertRejected(config)

    def test_default_volatility_must_exist(self):
        config = raw_config()
        config['game']['default_volatility'] = 'TURBO'
        self.assertRejected(config)

    def test_payout_scale_must_be_positive(self):
        config = raw_config()
        config['game']['volatility_profiles']['LOW']['payout_scale'] = 0
        self.assertRejected(config)

    def test_missing_payout_scale_defaults_to_one(self):
        config = raw_config()
        config['game']['volatility_profiles']['LOW'].pop('payout_scale')
        catalog = SymbolCatalog.from_config(config)
        self.assertEqual(catalog.profile('LOW').payout_scale, 1.0)

    def test_scatter_control_must_be_boolean(self):
        config = raw_config()
        config['game']['bonus_features']['free_spins']['scatter_control'] = 'yes'
        self.assertRejected(config)

    def test_multiplier_distribution_lengths(self):
        config = raw_config()
        config['game']['multiplier_weights'] = config['game']['multiplier_weights'][:-1]
        self.assertRejected(config)

    def test_config_is_not_mutated_by_catalog(self):
        config = raw_config()
        snapshot = copy.deepcopy(config)
        SymbolCatalog.from_config(config)
        self.assertEqual(config, snapshot)


class TestLoadGameConfig(unittest.TestCase):

    def test_missing_slot(self):
        with self.assertRaises(FileNotFoundError):
            load_game_config('no_such_slot')

    def test_requires_a_source(self):
        with self.assertRaises(ConfigurationException):
            load_game_config()

    def test_malformed_json(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, 'gameConfig.json')
            with open(path, 'w') as f:
                f.write('{"game": {')
            with self.assertRaises(ConfigurationException) as ctx:
                load_game_config(config_path=path)
            self.assertIn("Invalid JSON", str(ctx.exception))

    def test_explicit_path(self):
        with tempfile.TemporaryDirectory() as tmp:
            config = raw_config()
            config['game']['name'] = 'Test Kitchen'
            path = os.path.join(tmp, 'gameConfig.json')
            with open(path, 'w') as f:
                json.dump(config, f)
            catalog = SymbolCatalog.load(config_path=path)
            self.assertEqual(catalog.name, 'Test Kitchen')


if __name__ == '__main__':
    unittest.main()
