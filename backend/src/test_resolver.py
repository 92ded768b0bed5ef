import unittest
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

from sqlalchemy.dialects import postgresql

from app.services.resolver import (
    MedicineCandidate,
    Resolution,
    TokenMatch,
    build_candidate_statement,
    build_length_window_statement,
    build_trigram_floor_statement,
    collect_candidates,
    length_window,
    merge_candidates,
    pick_best,
    resolve_medicines,
    resolve_tokens,
    similarity,
    validate_threshold,
)

PARACETAMOL = MedicineCandidate(id=uuid4(), name="Парацетамол", keys=("парацетамол", "панадол"))
TYLOL_HOT = MedicineCandidate(id=uuid4(), name="ТайлолХот", keys=("тайлолхот", "тайлол хот"))
TRIMOL = MedicineCandidate(id=uuid4(), name="Тримол", keys=("тримол",))
CATALOG = [PARACETAMOL, TYLOL_HOT, TRIMOL]


def _compile(statement) -> str:
    return str(statement.compile(dialect=postgresql.dialect()))


def _result(rows):
    result = MagicMock()
    result.all.return_value = rows
    return result


class SimilarityTests(unittest.TestCase):
    def test_identical_keys_score_one(self):
        self.assertEqual(similarity("парацетамол", "парацетамол"), 1.0)

    def test_single_substitution(self):
        self.assertAlmostEqual(similarity("парацетомол", "парацетамол"), 1 - 1 / 11, places=6)

    def test_validate_threshold_bounds(self):
        self.assertEqual(validate_threshold(1.0), 1.0)
        for bad in (0.0, -0.1, 1.01):
            with self.assertRaises(ValueError):
                validate_threshold(bad)


class PickBestTests(unittest.TestCase):
    def test_exact_key_resolves_even_with_strict_threshold(self):
        best, score = pick_best("тримол", CATALOG, threshold=0.99)
        self.assertIs(best, TRIMOL)
        self.assertEqual(score, 1.0)

    def test_transcription_typo_resolves(self):
        best, score = pick_best("парацетомол", CATALOG, threshold=0.8)
        self.assertIs(best, PARACETAMOL)
        self.assertGreaterEqual(score, 0.8)

    def test_alias_key_resolves_to_canonical(self):
        best, score = pick_best("панадол", CATALOG, threshold=0.8)
        self.assertIs(best, PARACETAMOL)
        self.assertEqual(score, 1.0)

    def test_below_threshold_returns_none_with_best_score(self):
        best, score = pick_best("несуществующее", CATALOG, threshold=0.8)
        self.assertIsNone(best)
        self.assertLess(score, 0.8)

    def test_no_candidates(self):
        self.assertEqual(pick_best("тримол", [], threshold=0.8), (None, 0.0))

    def test_tie_prefers_shorter_canonical_name(self):
        long_name = MedicineCandidate(id=uuid4(), name="Очень Длинное Имя", keys=("абвгд",))
        short_name = MedicineCandidate(id=uuid4(), name="Кор", keys=("абвгж",))
        for pool in ([long_name, short_name], [short_name, long_name]):
            best, score = pick_best("абвгз", pool, threshold=0.7)
            self.assertIs(best, short_name)
            self.assertAlmostEqual(score, 0.8)

    def test_tie_on_length_prefers_name_then_id(self):
        first = MedicineCandidate(id=uuid4(), name="Абвг", keys=("абвг",))
        second = MedicineCandidate(id=uuid4(), name="Абвд", keys=("абвд",))
        for pool in ([first, second], [second, first]):
            best, _ = pick_best("абве", pool, threshold=0.7)
            self.assertIs(best, first)


class ResolveTokensTests(unittest.TestCase):
    def test_mixed_query(self):
        resolution = resolve_tokens(
            [("Парацетомол", "парацетомол"), ("ТайлолХот", "тайлолхот"), ("несуществующее", "несуществующее")],
            CATALOG,
            threshold=0.8,
        )

        self.assertEqual(resolution.medicine_ids, [PARACETAMOL.id, TYLOL_HOT.id])
        self.assertEqual(resolution.unresolved, ["несуществующее"])
        self.assertEqual(
            resolution.by_token(),
            {"Парацетомол": PARACETAMOL.id, "ТайлолХот": TYLOL_HOT.id, "несуществующее": None},
        )
        self.assertEqual(resolution.matches[0].medicine_name, "Парацетамол")

    def test_duplicate_tokens_yield_one_id(self):
        resolution = resolve_tokens(
            [("Парацетамол", "парацетамол"), ("парацетамол.", "парацетамол"), ("Панадол", "панадол")],
            CATALOG,
            threshold=0.8,
        )
        self.assertEqual(resolution.medicine_ids, [PARACETAMOL.id])
        self.assertEqual(len(resolution.matches), 3)

    def test_invalid_threshold_rejected(self):
        with self.assertRaises(ValueError):
            resolve_tokens([("Тримол", "тримол")], CATALOG, threshold=0)

    def test_empty_resolution(self):
        resolution = Resolution()
        self.assertEqual(resolution.medicine_ids, [])
        self.assertEqual(resolution.unresolved, [])
        self.assertFalse(TokenMatch(raw="x", normalized="x").resolved)


class CandidateSqlTests(unittest.TestCase):
    def test_candidate_statement_uses_trigram_similarity(self):
        sql = _compile(build_candidate_statement("парацетомол", limit=5))

        self.assertIn("LEFT OUTER JOIN medicine_aliases", sql)
        self.assertIn("similarity(medicines.name_normalized", sql)
        self.assertIn("similarity(medicine_aliases.alias_normalized", sql)
        self.assertIn("greatest(", sql)
        self.assertIn("LIMIT", sql)

    def test_floor_statement_is_transaction_local(self):
        statement = build_trigram_floor_statement(0.3)
        sql = _compile(statement)
        self.assertIn("set_config", sql)
        params = statement.compile(dialect=postgresql.dialect()).params
        self.assertIn("pg_trgm.similarity_threshold", params.values())
        self.assertIn("0.3", params.values())

    def test_collect_candidates_folds_alias_rows(self):
        medicine_id = uuid4()
        rows = [
            SimpleNamespace(id=medicine_id, name="Парацетамол", name_normalized="парацетамол", alias_normalized="панадол"),
            SimpleNamespace(id=medicine_id, name="Парацетамол", name_normalized="парацетамол", alias_normalized="paracetamol"),
            SimpleNamespace(id=medicine_id, name="Парацетамол", name_normalized="парацетамол", alias_normalized="панадол"),
            SimpleNamespace(id=TRIMOL.id, name="Тримол", name_normalized="тримол", alias_normalized=None),
        ]

        candidates = collect_candidates(rows)

        self.assertEqual(len(candidates), 2)
        self.assertEqual(candidates[0].keys, ("парацетамол", "панадол", "paracetamol"))
        self.assertEqual(candidates[1].keys, ("тримол",))


class LengthWindowTests(unittest.TestCase):
    def test_window_bounds_follow_threshold(self):
        self.assertEqual(length_window(10, 0.8), (8, 13))
        self.assertEqual(length_window(10, 1.0), (10, 10))

    def test_window_contains_every_key_that_can_reach_threshold(self):
        key = "аноксикдав"
        low, high = length_window(len(key), 0.8)
        for candidate in ("амоксиклав", "амоксиклав1", "амоксикла"):
            if similarity(key, candidate) >= 0.8:
                self.assertTrue(low <= len(candidate) <= high, candidate)

    def test_window_statement_covers_names_and_aliases_without_limit(self):
        statement = build_length_window_statement(["тримол", "аноксикдав"], 0.8)
        sql = _compile(statement)

        self.assertIn("LEFT OUTER JOIN medicine_aliases", sql)
        self.assertIn("char_length(medicines.name_normalized) BETWEEN", sql)
        self.assertIn("char_length(medicine_aliases.alias_normalized) BETWEEN", sql)
        self.assertNotIn("LIMIT", sql)
        params = statement.compile(dialect=postgresql.dialect()).params
        # union of the windows for lengths 6 and 10
        self.assertIn(4, params.values())
        self.assertIn(13, params.values())

    def test_merge_candidates_combines_keys_by_id(self):
        extra = MedicineCandidate(id=PARACETAMOL.id, name="Парацетамол", keys=("парацетамол", "paracetamol"))

        merged = merge_candidates([PARACETAMOL], [extra, TRIMOL])

        self.assertEqual([candidate.id for candidate in merged], [PARACETAMOL.id, TRIMOL.id])
        self.assertEqual(merged[0].keys, ("парацетамол", "панадол", "paracetamol"))


class ResolveMedicinesTests(unittest.IsolatedAsyncioTestCase):
    async def test_queries_floor_then_each_distinct_key(self):
        rows = [
            SimpleNamespace(id=PARACETAMOL.id, name="Парацетамол", name_normalized="парацетамол", alias_normalized=None),
        ]
        session = MagicMock()
        session.exec = AsyncMock(side_effect=[_result([]), _result(rows), _result(rows)])

        resolution = await resolve_medicines(
            session,
            [("Парацетомол", "парацетомол"), ("парацетомол", "парацетомол")],
            threshold=0.8,
        )

        # floor, one trigram lookup for the distinct key, one length-window scan
        self.assertEqual(session.exec.await_count, 3)
        self.assertEqual(resolution.medicine_ids, [PARACETAMOL.id])

    async def test_exact_keys_skip_length_window(self):
        rows = [
            SimpleNamespace(id=TRIMOL.id, name="Тримол", name_normalized="тримол", alias_normalized=None),
        ]
        session = MagicMock()
        session.exec = AsyncMock(side_effect=[_result([]), _result(rows)])

        resolution = await resolve_medicines(session, [("Тримол", "тримол")], threshold=0.8)

        self.assertEqual(session.exec.await_count, 2)
        self.assertEqual(resolution.medicine_ids, [TRIMOL.id])

    async def test_two_substitutions_below_trigram_floor_still_resolve(self):
        # Levenshtein 0.8 against "амоксиклав", but trigram similarity ≈ 0.29
        amoxiclav_id = uuid4()
        window_rows = [
            SimpleNamespace(id=amoxiclav_id, name="Амоксиклав", name_normalized="амоксиклав", alias_normalized=None),
            SimpleNamespace(id=TRIMOL.id, name="Тримол", name_normalized="тримол", alias_normalized=None),
        ]
        session = MagicMock()
        session.exec = AsyncMock(side_effect=[_result([]), _result([]), _result(window_rows)])

        resolution = await resolve_medicines(session, [("аноксикдав", "аноксикдав")], threshold=0.8)

        self.assertEqual(resolution.medicine_ids, [amoxiclav_id])
        self.assertAlmostEqual(resolution.matches[0].score, 0.8)
        window_sql = _compile(session.exec.await_args_list[2].args[0])
        self.assertIn("char_length(medicines.name_normalized)", window_sql)
        self.assertNotIn("LIMIT", window_sql)

    async def test_empty_pairs_skip_database(self):
        session = MagicMock()
        session.exec = AsyncMock()

        resolution = await resolve_medicines(session, [], threshold=0.8)

        self.assertEqual(resolution.matches, [])
        session.exec.assert_not_awaited()


if __name__ == "__main__":
    unittest.main()
