import unittest
from datetime import date, datetime, timezone
from unittest.mock import patch

from payments.timeutil import (
    LONDON,
    entitlement_deadline,
    member_end_wire,
    membership_year,
    now_local,
    parse_member_end,
)


class MembershipYearTests(unittest.TestCase):
    def test_last_moment_of_september_sells_current_year(self) -> None:
        moment = datetime(2024, 9, 30, 23, 59, 59, 999999, tzinfo=LONDON)
        self.assertEqual(membership_year(moment), 2024)

    def test_first_of_october_sells_next_year(self) -> None:
        self.assertEqual(membership_year(datetime(2024, 10, 1, tzinfo=LONDON)), 2025)

    def test_early_in_year_sells_current_year(self) -> None:
        self.assertEqual(membership_year(datetime(2024, 2, 14, 12, 0, tzinfo=LONDON)), 2024)

    def test_utc_input_is_converted_to_london(self) -> None:
        # 23:30 UTC on 30 September is 00:30 BST on 1 October
        moment = datetime(2024, 9, 30, 23, 30, tzinfo=timezone.utc)
        self.assertEqual(membership_year(moment), 2025)

    def test_naive_input_is_treated_as_london(self) -> None:
        self.assertEqual(membership_year(datetime(2024, 10, 1, 0, 0)), 2025)

    def test_now_local_uses_the_clock(self) -> None:
        fixed = datetime(2024, 6, 1, 11, 0, tzinfo=timezone.utc)
        with patch("payments.timeutil._utcnow", return_value=fixed):
            local = now_local()
        self.assertEqual(local.hour, 12)
        self.assertEqual(membership_year(local), 2024)


class MemberEndTests(unittest.TestCase):
    def test_wire_form(self) -> None:
        self.assertEqual(member_end_wire(2025), "2025-12-31 23:59:59 999999 +00")

    def test_entitlement_deadline_is_end_of_march(self) -> None:
        deadline = entitlement_deadline(2025)
        self.assertEqual((deadline.month, deadline.day, deadline.microsecond), (3, 31, 999999))
        self.assertEqual(deadline.tzinfo, LONDON)

    def test_parse_wire_form(self) -> None:
        parsed = parse_member_end(member_end_wire(2025))
        self.assertEqual(parsed, datetime(2025, 12, 31, 23, 59, 59, 999999, tzinfo=timezone.utc))

    def test_parse_date_only_is_end_of_day(self) -> None:
        parsed = parse_member_end("2025-03-31")
        self.assertEqual(parsed, entitlement_deadline(2025))

    def test_parse_date_and_empty(self) -> None:
        self.assertEqual(parse_member_end(date(2025, 3, 31)), entitlement_deadline(2025))
        self.assertIsNone(parse_member_end(""))
        self.assertIsNone(parse_member_end(None))

    def test_december_end_satisfies_march_deadline(self) -> None:
        self.assertGreater(parse_member_end(member_end_wire(2025)), entitlement_deadline(2025))


if __name__ == "__main__":
    unittest.main()
