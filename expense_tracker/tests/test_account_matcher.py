import unittest
from decimal import Decimal

from expense_tracker.account_matcher import extract_hint_digits, resolve_account
from expense_tracker.tests.support import DatabaseTestCase


class ExtractHintDigitsTests(unittest.TestCase):
    def test_finds_four_digit_run(self) -> None:
        self.assertEqual(extract_hint_digits("card ending 4321"), "4321")

    def test_finds_three_digit_run(self) -> None:
        self.assertEqual(extract_hint_digits("HDFC xx123"), "123")

    def test_longer_run_yields_first_four_digits(self) -> None:
        self.assertEqual(extract_hint_digits("ending 12345"), "1234")

    def test_leftmost_run_wins(self) -> None:
        self.assertEqual(extract_hint_digits("a/c 987 card 6543"), "987")

    def test_short_runs_are_ignored(self) -> None:
        self.assertIsNone(extract_hint_digits("ending 12 or 7"))

    def test_empty_and_missing_hints(self) -> None:
        self.assertIsNone(extract_hint_digits(""))
        self.assertIsNone(extract_hint_digits(None))


class ResolveAccountTests(DatabaseTestCase):
    def test_matches_account_by_last4(self) -> None:
        auth = self.create_user()
        self.create_account(auth, name="Savings", last4="1111")
        card_id = self.create_account(auth, name="Card", last4="4321")

        with self.engine.begin() as conn:
            account = resolve_account(conn, auth.user_id, "card ending 4321")

        self.assertEqual(account["id"], card_id)

    def test_hint_without_digits_falls_back_to_only_account(self) -> None:
        auth = self.create_user()
        only_id = self.create_account(auth, last4="9999")

        with self.engine.begin() as conn:
            account = resolve_account(conn, auth.user_id, "no digits here")

        self.assertEqual(account["id"], only_id)

    def test_unmatched_digits_fall_back_to_an_owned_account(self) -> None:
        auth = self.create_user()
        owned = {
            self.create_account(auth, last4="1111"),
            self.create_account(auth, last4="2222"),
        }

        with self.engine.begin() as conn:
            account = resolve_account(conn, auth.user_id, "ending 5555")

        self.assertIn(account["id"], owned)

    def test_user_without_accounts_resolves_to_none(self) -> None:
        auth = self.create_user()

        with self.engine.begin() as conn:
            for hint in ("card ending 4321", "no digits here", "", None):
                self.assertIsNone(resolve_account(conn, auth.user_id, hint))

    def test_never_matches_another_users_account(self) -> None:
        owner = self.create_user("owner@example.com")
        other = self.create_user("other@example.com")
        self.create_account(other, last4="4321", balance=Decimal("10"))
        own_id = self.create_account(owner, last4="0000")

        with self.engine.begin() as conn:
            account = resolve_account(conn, owner.user_id, "ending 4321")

        self.assertEqual(account["id"], own_id)


if __name__ == "__main__":
    unittest.main()
