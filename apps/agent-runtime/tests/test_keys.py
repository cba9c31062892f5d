import pathlib
import sys
import unittest

RUNTIME_ROOT = pathlib.Path("apps/agent-runtime").resolve()
if str(RUNTIME_ROOT) not in sys.path:
    sys.path.insert(0, str(RUNTIME_ROOT))

from shll_runner import keys  # noqa: E402
from shll_runner.errors import ConfigError  # noqa: E402


class KeyTests(unittest.TestCase):
    def test_derive_address_for_known_key(self) -> None:
        address = keys.derive_address("0x" + "00" * 31 + "01")
        self.assertEqual(address, "0x7E5F4552091A69125d5DfCb7b8C2659029395Bdf".lower())

    def test_normalize_accepts_optional_prefix(self) -> None:
        raw = "AB" * 32
        self.assertEqual(keys.normalize_private_key_hex(raw), "ab" * 32)
        self.assertEqual(keys.normalize_private_key_hex("0x" + raw), "ab" * 32)
        self.assertIsNone(keys.normalize_private_key_hex("0x1234"))

    def test_out_of_range_key_is_rejected(self) -> None:
        with self.assertRaises(ConfigError):
            keys.derive_address("0x" + "00" * 32)
        with self.assertRaises(ConfigError):
            keys.derive_address("not-a-key")

    def test_keccak_of_empty_string(self) -> None:
        self.assertEqual(
            keys.keccak256_text(""),
            "0xc5d2460186f7233c927e7db2dcc703c0e500b653ca82273b7bfad8045d85a470",
        )


if __name__ == "__main__":
    unittest.main()
