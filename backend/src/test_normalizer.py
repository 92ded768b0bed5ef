"""Tests for the medicine name normalizer.

The same key is computed for catalog names and for transcribed query
tokens, so every rule here applies to both sides of a match.
"""
import unittest

import polars as pl

from app.services.normalizer import (
    normalize_dataframe_column,
    normalize_medicine_name,
    normalize_series,
    normalize_tokens,
    split_query,
)


class NormalizeMedicineNameTests(unittest.TestCase):
    # ------------------------------------------------------------------
    # Basic transformations
    # ------------------------------------------------------------------
    def test_trim_and_lowercase_cyrillic(self):
        self.assertEqual(normalize_medicine_name("  Парацетамол "), "парацетамол")

    def test_mixed_case_brand(self):
        self.assertEqual(normalize_medicine_name("ТайлолХот"), "тайлолхот")

    def test_internal_whitespace_collapsed(self):
        self.assertEqual(normalize_medicine_name("Тайлол    \t Хот"), "тайлол хот")

    def test_punctuation_stripped(self):
        self.assertEqual(normalize_medicine_name("Но-шпа!"), "но шпа")
        self.assertEqual(normalize_medicine_name("«Цитрамон»."), "цитрамон")

    def test_diacritics_stripped(self):
        self.assertEqual(normalize_medicine_name("Ёд"), "ед")
        self.assertEqual(normalize_medicine_name("Paracétamol"), "paracetamol")

    def test_short_i_is_a_letter_not_a_diacritic(self):
        self.assertEqual(normalize_medicine_name("Йод"), "йод")
        self.assertEqual(normalize_medicine_name("ТАЙЛОЛ"), "тайлол")

    def test_digit_letter_boundary_inserted(self):
        self.assertEqual(normalize_medicine_name("Ибупрофен400мг"), "ибупрофен 400 мг")

    # ------------------------------------------------------------------
    # Edge cases
    # ------------------------------------------------------------------
    def test_empty_string_returns_empty(self):
        self.assertEqual(normalize_medicine_name(""), "")

    def test_none_returns_empty(self):
        self.assertEqual(normalize_medicine_name(None), "")

    def test_only_punctuation_returns_empty(self):
        self.assertEqual(normalize_medicine_name("  ,.!?  "), "")

    def test_compatibility_characters_are_folded(self):
        self.assertEqual(normalize_medicine_name("ℌ"), "h")
        self.assertEqual(normalize_medicine_name("Витамин Ⅻ"), "витамин xii")
        self.assertEqual(normalize_medicine_name("ǅ"), "dz")
        self.assertEqual(normalize_medicine_name("Ｐａｒａ"), "para")

    def test_idempotent(self):
        samples = [
            "  Парацетамол ",
            "ТайлолХот",
            "Тайлол-Хот 500МГ",
            "Ёлка, ёж",
            "Paracétamol®  (Bayer)",
            "ﬁlm ½",
            "ℌ",
            "Ⅻ",
            "ǅ",
            "Ｐａｒａ",
            "",
        ]
        for sample in samples:
            once = normalize_medicine_name(sample)
            self.assertEqual(normalize_medicine_name(once), once, sample)


class QueryTokenTests(unittest.TestCase):
    def test_split_query_on_commas(self):
        self.assertEqual(
            split_query("Парацетамол, ТайлолХот,  Тримол"),
            ["Парацетамол", "ТайлолХот", "Тримол"],
        )

    def test_split_query_drops_empty_parts(self):
        self.assertEqual(split_query("Парацетамол,, ;\n"), ["Парацетамол"])
        self.assertEqual(split_query(""), [])

    def test_normalize_tokens_discards_empty_keys(self):
        pairs = normalize_tokens(["Парацетамол", "...", "   ", "ТайлолХот"])
        self.assertEqual(
            pairs,
            [("Парацетамол", "парацетамол"), ("ТайлолХот", "тайлолхот")],
        )


class PolarsNormalizationTests(unittest.TestCase):
    def test_normalize_series_returns_utf8_and_handles_none(self):
        series = pl.Series(["Парацетамол", "Но-шпа", None])
        result = normalize_series(series)
        self.assertIsInstance(result, pl.Series)
        self.assertEqual(result.dtype, pl.Utf8)
        self.assertEqual(result.to_list(), ["парацетамол", "но шпа", ""])

    def test_normalize_dataframe_column_adds_normalized_col(self):
        df = pl.DataFrame({"name": ["ТайлолХот", "Тримол"]})
        result_df = normalize_dataframe_column(df, "name")
        self.assertIn("name_normalized", result_df.columns)
        self.assertEqual(result_df["name_normalized"].to_list(), ["тайлолхот", "тримол"])


if __name__ == "__main__":
    unittest.main()
