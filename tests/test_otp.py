"""
Tests for otpwallet_core.otp — authenticator codes and time indexing.

Covers:
  - RFC 4226 HOTP test vectors
  - Agreement with pyotp's TOTP at RFC 6238 times
  - base32 seed encoding roundtrip
  - gen_otps batch generation and progress reporting
  - time_to_index window boundaries
"""

from __future__ import annotations

import unittest

import pyotp

from conftest import DURATION, EFFECTIVE_TIME, INTERVAL, SEED
from otpwallet_core.errors import OutOfRangeError
from otpwallet_core.otp import (
    base32_to_seed,
    gen_otp,
    gen_otps,
    otp_bytes,
    seed_to_base32,
    time_to_counter,
    time_to_index,
)

RFC4226_CODES = [
    755224, 287082, 359152, 969429, 338314,
    254676, 287922, 162583, 399871, 520489,
]


# ═══════════════════════════════════════════════════════════════════
#  Code generation
# ═══════════════════════════════════════════════════════════════════

class TestGenOtp(unittest.TestCase):

    def test_rfc4226_vectors(self):
        for counter, expected in enumerate(RFC4226_CODES):
            self.assertEqual(gen_otp(SEED, counter), expected)

    def test_matches_totp_at_rfc6238_times(self):
        totp = pyotp.TOTP(seed_to_base32(SEED))
        for t in (59, 1111111109, 1111111111, 1234567890, 2000000000):
            code = gen_otp(SEED, time_to_counter(t * 1000))
            self.assertEqual(code, int(totp.at(t)))

    def test_codes_fit_six_digits(self):
        for counter in range(50):
            self.assertLess(gen_otp(SEED, counter), 1_000_000)

    def test_gen_otps_matches_single_codes(self):
        self.assertEqual(gen_otps(SEED, 0, 10), RFC4226_CODES)
        self.assertEqual(gen_otps(SEED, 3, 2), RFC4226_CODES[3:5])

    def test_gen_otps_reports_progress(self):
        seen = []
        gen_otps(SEED, 0, 10, lambda c, t, s: seen.append((c, t, s)), report_interval=4)
        self.assertEqual(seen, [(0, 10, 0), (4, 10, 0), (8, 10, 0)])

    def test_otp_bytes_big_endian(self):
        self.assertEqual(otp_bytes(755224), (755224).to_bytes(4, "big"))


class TestBase32(unittest.TestCase):

    def test_roundtrip(self):
        self.assertEqual(base32_to_seed(seed_to_base32(SEED)), SEED)

    def test_unpadded_16_byte_seed(self):
        seed = bytes(range(16))
        text = seed_to_base32(seed)
        self.assertNotIn("=", text)
        self.assertEqual(base32_to_seed(text), seed)

    def test_lowercase_and_spaces_accepted(self):
        text = seed_to_base32(SEED).lower()
        spaced = " ".join(text[i:i + 4] for i in range(0, len(text), 4))
        self.assertEqual(base32_to_seed(spaced), SEED)


# ═══════════════════════════════════════════════════════════════════
#  Time indexing
# ═══════════════════════════════════════════════════════════════════

class TestTimeToIndex(unittest.TestCase):

    lifespan = DURATION // INTERVAL

    def test_effective_time_is_index_zero(self):
        self.assertEqual(time_to_index(EFFECTIVE_TIME, EFFECTIVE_TIME, INTERVAL, self.lifespan), 0)

    def test_one_interval_before_fails(self):
        with self.assertRaises(OutOfRangeError):
            time_to_index(EFFECTIVE_TIME, EFFECTIVE_TIME - INTERVAL, INTERVAL, self.lifespan)

    def test_last_millisecond_is_last_index(self):
        index = time_to_index(
            EFFECTIVE_TIME, EFFECTIVE_TIME + DURATION - 1, INTERVAL, self.lifespan,
        )
        self.assertEqual(index, self.lifespan - 1)

    def test_end_of_lifetime_fails(self):
        with self.assertRaises(OutOfRangeError):
            time_to_index(EFFECTIVE_TIME, EFFECTIVE_TIME + DURATION, INTERVAL, self.lifespan)

    def test_no_lifespan_means_no_upper_bound(self):
        self.assertEqual(time_to_index(0, 100 * INTERVAL, INTERVAL), 100)

    def test_out_of_range_is_index_error(self):
        with self.assertRaises(IndexError):
            time_to_index(EFFECTIVE_TIME, 0, INTERVAL)

    def test_counter(self):
        self.assertEqual(time_to_counter(59_999), 1)
        self.assertEqual(time_to_counter(60_000), 2)
