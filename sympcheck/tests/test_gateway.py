import asyncio
import unittest
from unittest.mock import AsyncMock, patch

from sympcheck.config import settings
from sympcheck.llm.client import GatewayError, RateLimitExceeded
from sympcheck.llm.gateway import (
    build_forbidden_questions,
    build_interactive_prompt,
    classify_interactive_payload,
    diagnose_symptoms,
    get_condition_details,
    get_interactive_response,
    map_condition,
)
from sympcheck.models import (
    DiagnosisRequest,
    ErrorResponse,
    FollowUpAnswer,
    InteractiveRequest,
    QuestionResponse,
    SummaryResponse,
)


def _request(**overrides) -> InteractiveRequest:
    values = {
        "symptom": "headache",
        "answers": [FollowUpAnswer(question="Duration?", answer="2 days")],
        "skipped_questions": ["Any nausea?"],
    }
    values.update(overrides)
    return InteractiveRequest(**values)


def _patch_llm(responses):
    return patch("sympcheck.llm.gateway.chat_completion", new=AsyncMock(side_effect=responses))


def _patch_sleep():
    return patch("sympcheck.llm.gateway.asyncio.sleep", new=AsyncMock())


class PromptBuildingTests(unittest.TestCase):
    def test_forbidden_list_merges_answered_and_skipped_case_insensitively(self) -> None:
        request = _request(
            answers=[
                FollowUpAnswer(question="Duration?", answer="2 days"),
                FollowUpAnswer(question="Any nausea?", answer="No"),
            ],
            skipped_questions=["ANY NAUSEA?", "Fever?", "  "],
        )

        self.assertEqual(
            build_forbidden_questions(request),
            ["Duration?", "Any nausea?", "Fever?"],
        )

    def test_prompt_lists_forbidden_questions_and_budget(self) -> None:
        prompt = build_interactive_prompt(_request(requested_additional_questions=3))

        self.assertIn('1. "Duration?"', prompt)
        self.assertIn('2. "Any nausea?"', prompt)
        self.assertIn("requestedAdditionalQuestions: 3", prompt)
        self.assertIn("summaryOnly: false", prompt)
        self.assertIn("User reported symptom: headache", prompt)

    def test_prompt_marks_empty_forbidden_list_and_summary_mode(self) -> None:
        prompt = build_interactive_prompt(
            InteractiveRequest(symptom="cough", summary_only=True)
        )

        self.assertIn("(none)", prompt)
        self.assertIn("summaryOnly: true", prompt)
        self.assertIn("requestedAdditionalQuestions: none", prompt)
        self.assertIn("summary object", prompt)

    def test_skipped_answers_are_not_sent_as_answers(self) -> None:
        prompt = build_interactive_prompt(
            _request(answers=[FollowUpAnswer(question="Onset?", answer="Skipped")])
        )

        self.assertIn('1. "Onset?"', prompt)
        self.assertNotIn('"answer": "Skipped"', prompt)


class ClassificationTests(unittest.TestCase):
    def test_type_discriminator_selects_variant(self) -> None:
        result = classify_interactive_payload(
            {"type": "Question", "question": "Fever?", "options": ["Yes", "No"], "multiple": True}
        )

        self.assertIsInstance(result, QuestionResponse)
        self.assertEqual(result.options, ["Yes", "No"])
        self.assertTrue(result.multiple)

    def test_shape_selects_variant_without_type(self) -> None:
        summary = classify_interactive_payload(
            {"symptom": "headache", "summaryText": "Two days.", "answers": [{"question": "Q", "answer": "A"}]}
        )
        error = classify_interactive_payload({"errorCode": "invalid_symptom", "message": "No."})

        self.assertIsInstance(summary, SummaryResponse)
        self.assertEqual(summary.summary_text, "Two days.")
        self.assertEqual(summary.answers[0].question, "Q")
        self.assertIsInstance(error, ErrorResponse)
        self.assertEqual(error.error_code, "invalid_symptom")

    def test_unknown_shape_degrades_to_error(self) -> None:
        result = classify_interactive_payload({"foo": "bar"})

        self.assertIsInstance(result, ErrorResponse)
        self.assertEqual(result.error_code, "unknown_shape")


class InteractiveResponseTests(unittest.TestCase):
    def test_parses_fenced_question(self) -> None:
        raw = '```json\n{"type": "question", "question": "Fever?", "options": ["Yes", "No"]}\n```'
        with _patch_llm([raw]) as llm_mock, _patch_sleep() as sleep_mock:
            result = asyncio.run(get_interactive_response(_request()))

        self.assertEqual(result, QuestionResponse(question="Fever?", options=["Yes", "No"]))
        self.assertEqual(llm_mock.await_count, 1)
        self.assertEqual(llm_mock.await_args.kwargs["call_type"], "interactive_question")
        sleep_mock.assert_not_awaited()

    def test_repairs_unterminated_value(self) -> None:
        raw = '{"question": "Duration?, "options": ["A","B"]}'
        with _patch_llm([raw]), _patch_sleep():
            result = asyncio.run(get_interactive_response(_request()))

        self.assertEqual(result, QuestionResponse(question="Duration?", options=["A", "B"]))

    def test_array_root_uses_first_element(self) -> None:
        raw = '[{"type": "summary", "symptom": "headache", "summaryText": "Done"}, {"type": "question"}]'
        with _patch_llm([raw]), _patch_sleep():
            result = asyncio.run(get_interactive_response(_request(summary_only=True)))

        self.assertIsInstance(result, SummaryResponse)
        self.assertEqual(result.summary_text, "Done")

    def test_retries_with_same_prompt_and_linear_backoff(self) -> None:
        with (
            patch.object(settings, "gateway_retry_backoff_seconds", 0.3),
            _patch_llm(["", "not json at all", '{"question": "Fever?"}']) as llm_mock,
            _patch_sleep() as sleep_mock,
        ):
            result = asyncio.run(get_interactive_response(_request()))

        self.assertIsInstance(result, QuestionResponse)
        self.assertEqual(llm_mock.await_count, 3)
        prompts = {call.kwargs["user_prompt"] for call in llm_mock.await_args_list}
        self.assertEqual(len(prompts), 1)
        self.assertEqual([c.args[0] for c in sleep_mock.await_args_list], [0.3, 0.6])

    def test_empty_content_exhaustion_returns_error_variant(self) -> None:
        with _patch_llm(["", "  ", ""]) as llm_mock, _patch_sleep():
            result = asyncio.run(get_interactive_response(_request()))

        self.assertIsInstance(result, ErrorResponse)
        self.assertEqual(result.error_code, "empty_response")
        self.assertEqual(llm_mock.await_count, 3)

    def test_invalid_json_exhaustion_returns_error_variant(self) -> None:
        with _patch_llm(["nope", "still nope", "{broken"]), _patch_sleep():
            result = asyncio.run(get_interactive_response(_request()))

        self.assertEqual(result.error_code, "invalid_json")

    def test_empty_array_exhaustion_returns_error_variant(self) -> None:
        with _patch_llm(["[]", "[]", "[]"]), _patch_sleep():
            result = asyncio.run(get_interactive_response(_request()))

        self.assertEqual(result.error_code, "empty_array")

    def test_non_object_element_exhaustion_returns_error_variant(self) -> None:
        with _patch_llm(['["a"]', "[1]", "[[]]"]), _patch_sleep():
            result = asyncio.run(get_interactive_response(_request()))

        self.assertEqual(result.error_code, "unexpected_json")

    def test_unknown_shape_is_not_retried(self) -> None:
        with _patch_llm(['{"foo": 1}', '{"question": "never"}']) as llm_mock, _patch_sleep():
            result = asyncio.run(get_interactive_response(_request()))

        self.assertEqual(result.error_code, "unknown_shape")
        self.assertEqual(llm_mock.await_count, 1)

    def test_question_without_text_is_retried(self) -> None:
        with (
            _patch_llm(['{"type": "question"}', '{"question": "   "}', '{"question": "Fever?"}']) as llm_mock,
            _patch_sleep(),
        ):
            result = asyncio.run(get_interactive_response(_request()))

        self.assertEqual(result, QuestionResponse(question="Fever?"))
        self.assertEqual(llm_mock.await_count, 3)

    def test_question_without_text_exhaustion_returns_error_variant(self) -> None:
        with _patch_llm(['{"type": "question", "options": ["Yes"]}'] * 3), _patch_sleep():
            result = asyncio.run(get_interactive_response(_request()))

        self.assertIsInstance(result, ErrorResponse)
        self.assertEqual(result.error_code, "empty_question")

    def test_rate_limit_propagates_without_retry(self) -> None:
        with _patch_llm([RateLimitExceeded("Rate limit exceeded")]) as llm_mock, _patch_sleep():
            with self.assertRaises(RateLimitExceeded):
                asyncio.run(get_interactive_response(_request()))

        self.assertEqual(llm_mock.await_count, 1)

    def test_blank_symptom_is_rejected(self) -> None:
        with _patch_llm([]) as llm_mock:
            with self.assertRaises(ValueError):
                asyncio.run(get_interactive_response(InteractiveRequest(symptom="   ")))

        llm_mock.assert_not_awaited()


class DiagnosisTests(unittest.TestCase):
    def test_maps_tolerant_keys_and_percent_scores(self) -> None:
        condition = map_condition(
            {
                "Name": "Migraine",
                "SCORE": "65%",
                "ICD": "G43",
                "Details": "Recurrent headache",
                "Emergency": "true",
            }
        )

        self.assertEqual(condition.label, "Migraine")
        self.assertAlmostEqual(condition.score, 0.65)
        self.assertEqual(condition.icd, "G43")
        self.assertTrue(condition.is_emergency)

    def test_empty_records_are_dropped(self) -> None:
        self.assertIsNone(map_condition({}))
        self.assertIsNone(map_condition({"Label": "", "Score": 0}))
        self.assertIsNone(map_condition("Migraine"))

    def test_wrapped_object_uses_first_array_property(self) -> None:
        raw = (
            '{"note": "ranked", "conditions": [{"Label": "Tension headache", "Score": 0.7},'
            ' {}, {"Label": "Migraine", "Score": 0.5, "IsEmergency": false}]}'
        )
        with _patch_llm([raw]) as llm_mock, _patch_sleep():
            conditions = asyncio.run(diagnose_symptoms(DiagnosisRequest(symptom="headache", age=34)))

        self.assertEqual([c.label for c in conditions], ["Tension headache", "Migraine"])
        self.assertIn("Age: 34", llm_mock.await_args.kwargs["user_prompt"])
        self.assertIn("Gender: not provided", llm_mock.await_args.kwargs["user_prompt"])

    def test_single_object_root_is_one_condition(self) -> None:
        with _patch_llm(['{"Label": "Sinusitis", "Score": 0.4}']), _patch_sleep():
            conditions = asyncio.run(diagnose_symptoms(DiagnosisRequest(symptom="headache")))

        self.assertEqual(len(conditions), 1)
        self.assertEqual(conditions[0].label, "Sinusitis")

    def test_empty_list_is_retried(self) -> None:
        with (
            patch.object(settings, "diagnosis_retry_backoff_seconds", 0.5),
            _patch_llm(["[]", '[{"Label": "Migraine", "Score": 0.5}]']) as llm_mock,
            _patch_sleep() as sleep_mock,
        ):
            conditions = asyncio.run(diagnose_symptoms(DiagnosisRequest(symptom="headache")))

        self.assertEqual(len(conditions), 1)
        self.assertEqual(llm_mock.await_count, 2)
        sleep_mock.assert_awaited_once_with(0.5)

    def test_exhaustion_raises_gateway_error(self) -> None:
        with _patch_llm(["[]", "", "garbage"]), _patch_sleep():
            with self.assertRaises(GatewayError):
                asyncio.run(diagnose_symptoms(DiagnosisRequest(symptom="headache")))


class ConditionDetailsTests(unittest.TestCase):
    def test_maps_condition_details(self) -> None:
        raw = (
            '{"Id": "G43", "Name": "Migraine", "Specialties": ["Neurology"],'
            ' "Description": "Recurrent headaches.", "CommonCauses": ["Stress"],'
            ' "RedFlags": ["Sudden severe onset"], "Investigations": "MRI",'
            ' "Disclaimer": "Not medical advice."}'
        )
        with _patch_llm([raw]) as llm_mock:
            detail = asyncio.run(get_condition_details("G43"))

        self.assertEqual(detail.name, "Migraine")
        self.assertEqual(detail.specialties, ["Neurology"])
        self.assertEqual(detail.red_flags, ["Sudden severe onset"])
        self.assertEqual(detail.investigations, ["MRI"])
        self.assertIn('"G43"', llm_mock.await_args.kwargs["user_prompt"])

    def test_empty_content_returns_none(self) -> None:
        with _patch_llm([""]):
            self.assertIsNone(asyncio.run(get_condition_details("G43")))

    def test_unparseable_content_raises(self) -> None:
        with _patch_llm(["no details available"]):
            with self.assertRaises(GatewayError):
                asyncio.run(get_condition_details("G43"))


if __name__ == "__main__":
    unittest.main()
