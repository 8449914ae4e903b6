import unittest

from sympcheck.conversation.ledger import ConversationLedger


class ConversationLedgerTests(unittest.TestCase):
    def test_asked_questions_are_never_stored_twice(self) -> None:
        ledger = ConversationLedger()
        for question in ["Q1?", "Q2?", "Q1?", "Q3?", "Q2?", "Q1?"]:
            ledger.record_asked_question(question)

        self.assertEqual(ledger.get_asked_questions(), ["Q1?", "Q2?", "Q3?"])

    def test_has_been_asked_covers_asked_and_skipped_only(self) -> None:
        ledger = ConversationLedger()
        ledger.record_asked_question("Duration?")
        ledger.record_skipped_question("Any fever?")

        self.assertTrue(ledger.has_been_asked("Duration?"))
        self.assertTrue(ledger.has_been_asked("Any fever?"))
        self.assertFalse(ledger.has_been_asked("Severity?"))

    def test_membership_is_case_sensitive(self) -> None:
        ledger = ConversationLedger()
        ledger.record_asked_question("Duration?")

        self.assertFalse(ledger.has_been_asked("duration?"))

    def test_skips_are_idempotent_and_answers_append(self) -> None:
        ledger = ConversationLedger()
        ledger.record_skipped_question("Q1?")
        ledger.record_skipped_question("Q1?")
        ledger.record_answer("Q2?", "Yes")
        ledger.record_answer("Q2?", "Still yes")

        self.assertEqual(ledger.get_skipped_questions(), ["Q1?"])
        self.assertEqual([a.answer for a in ledger.get_answers()], ["Yes", "Still yes"])
        self.assertEqual(ledger.get_total_interactions(), 3)

    def test_getters_return_copies(self) -> None:
        ledger = ConversationLedger()
        ledger.record_asked_question("Q1?")
        ledger.record_answer("Q1?", "Yes")

        ledger.get_asked_questions().append("tampered")
        ledger.get_answers()[0].answer = "tampered"

        self.assertEqual(ledger.get_asked_questions(), ["Q1?"])
        self.assertEqual(ledger.get_answers()[0].answer, "Yes")

    def test_last_asked_question_and_reset(self) -> None:
        ledger = ConversationLedger()
        self.assertIsNone(ledger.last_asked_question)
        ledger.record_asked_question("Q1?")
        ledger.record_asked_question("Q2?")
        self.assertEqual(ledger.last_asked_question, "Q2?")

        ledger.reset()

        self.assertEqual(ledger.get_asked_questions(), [])
        self.assertEqual(ledger.get_skipped_questions(), [])
        self.assertEqual(ledger.get_answers(), [])
        self.assertIsNone(ledger.last_asked_question)


if __name__ == "__main__":
    unittest.main()
