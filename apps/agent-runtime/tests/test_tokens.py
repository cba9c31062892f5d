import pathlib
import sys
import unittest

RUNTIME_ROOT = pathlib.Path("apps/agent-runtime").resolve()
if str(RUNTIME_ROOT) not in sys.path:
    sys.path.insert(0, str(RUNTIME_ROOT))

from shll_runner import config, tokens  # noqa: E402
from shll_runner.errors import InvalidAmountError, UnknownTokenError  # noqa: E402


class MinorUnitTests(unittest.TestCase):
    def test_decimal_amounts_scale_by_decimals(self) -> None:
        self.assertEqual(tokens.to_minor_units("0.5", 18), 5 * 10**17)
        self.assertEqual(tokens.to_minor_units("12", 6), 12_000_000)
        self.assertEqual(tokens.to_minor_units(".25", 2), 25)
        self.assertEqual(tokens.to_minor_units("3.", 2), 300)

    def test_excess_fraction_is_truncated(self) -> None:
        self.assertEqual(tokens.to_minor_units("1.239", 2), 123)
        self.assertEqual(tokens.to_minor_units("0.0000001", 6), 0)

    def test_long_digit_string_is_taken_as_raw_units(self) -> None:
        self.assertEqual(tokens.to_minor_units("10000000000", 18), 10_000_000_000)
        self.assertEqual(tokens.to_minor_units("9999999999", 0), 9_999_999_999)
        self.assertEqual(tokens.to_minor_units("9999999999", 2), 999_999_999_900)
        self.assertEqual(tokens.to_minor_units("12345678901.0", 2), 1_234_567_890_100)

    def test_malformed_amounts_are_rejected(self) -> None:
        for raw in ("", "abc", "-1", "1e18", "1.2.3", ".", "0x10"):
            with self.subTest(raw=raw):
                with self.assertRaises(InvalidAmountError):
                    tokens.to_minor_units(raw, 18)

    def test_format_minor_units(self) -> None:
        self.assertEqual(tokens.format_minor_units(5 * 10**17, 18), "0.5")
        self.assertEqual(tokens.format_minor_units(10**18, 18), "1")
        self.assertEqual(tokens.format_minor_units(1, 6), "0.000001")
        self.assertEqual(tokens.format_minor_units(0, 18), "0")
        self.assertEqual(tokens.format_minor_units(42, 0), "42")

    def test_round_trip_for_short_amounts(self) -> None:
        for human in ("0.5", "1.000001", "250", "0.000000000000000001"):
            with self.subTest(human=human):
                units = tokens.to_minor_units(human, 18)
                self.assertEqual(tokens.to_minor_units(tokens.format_minor_units(units, 18), 18), units)


class TokenRegistryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.chain = config.load_chain_config("bsc")
        self.registry = tokens.TokenRegistry(self.chain)

    def test_symbols_are_case_insensitive(self) -> None:
        usdt = self.registry.resolve("usdt")
        self.assertEqual(usdt.symbol, "USDT")
        self.assertEqual(usdt.address, "0x55d398326f99059fF775485246999027B3197955")
        self.assertEqual(usdt.decimals, 18)

    def test_native_token_has_no_address(self) -> None:
        bnb = self.registry.resolve("BNB")
        self.assertTrue(bnb.is_native)
        self.assertIsNone(bnb.address)
        self.assertEqual(self.registry.native_token(), bnb)
        self.assertEqual(self.registry.routing_address(bnb), self.chain.wrapped_native)

    def test_raw_address_resolves_with_default_decimals(self) -> None:
        addr = "0x1111111111111111111111111111111111111111"
        token = self.registry.resolve(addr)
        self.assertEqual(token.address, addr)
        self.assertEqual(token.decimals, 18)
        self.assertEqual(token.symbol, "0x1111...1111")

    def test_zero_address_resolves_to_native(self) -> None:
        for text in ("0x" + "0" * 40, " 0X" + "0" * 40 + " "):
            with self.subTest(text=text):
                token = self.registry.resolve(text)
                self.assertTrue(token.is_native)
                self.assertEqual(token, self.registry.native_token())

    def test_unknown_symbol_raises(self) -> None:
        with self.assertRaises(UnknownTokenError):
            self.registry.resolve("NOPE")

    def test_lending_market_lookup(self) -> None:
        token, market = self.registry.lending_market("usdt")
        self.assertEqual(token.symbol, "USDT")
        self.assertEqual(market, self.chain.lending_markets["USDT"])
        with self.assertRaises(UnknownTokenError):
            self.registry.lending_market("CAKE")


if __name__ == "__main__":
    unittest.main()
