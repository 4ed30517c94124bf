"""Progress document merge rules and serialization."""

from datetime import datetime

from quizmarket.backend.services.progress import AttemptProgress, normalize_answers


def test_merge_overwrites_existing_keys_and_keeps_others():
    progress = AttemptProgress(total_questions=4, answers={"5": 1, "7": 0})

    progress.merge_answers({"5": 2})

    assert progress.answers == {"5": 2, "7": 0}
    assert progress.answered_questions == 2
    assert progress.completion_percentage == 50.0


def test_merge_normalizes_integer_keys():
    progress = AttemptProgress(total_questions=2)

    progress.merge_answers({5: 1, " 7 ": True})

    assert progress.answers == {"5": 1, "7": True}


def test_blank_answers_are_not_counted_as_answered():
    progress = AttemptProgress(total_questions=3, answers={"1": 0, "2": None, "3": ""})
    assert progress.answered_questions == 1


def test_completion_percentage_without_questions_is_zero():
    progress = AttemptProgress(total_questions=0, answers={"1": 1})
    assert progress.completion_percentage == 0.0


def test_completion_percentage_is_rounded():
    progress = AttemptProgress(total_questions=3, answers={"1": 0})
    assert progress.completion_percentage == 33.33


def test_time_spent_never_moves_backwards():
    progress = AttemptProgress(time_spent=120)

    progress.record_time(90)
    assert progress.time_spent == 120

    progress.record_time(150)
    assert progress.time_spent == 150

    progress.record_time(None)
    assert progress.time_spent == 150


def test_serialized_document_uses_client_keys():
    progress = AttemptProgress(total_questions=2, answers={"1": 0}, current_question_index=1, time_spent=42)
    progress.touch(datetime(2024, 5, 1, 12, 30))

    data = progress.to_dict()

    assert data == {
        "answers": {"1": 0},
        "answeredQuestions": 1,
        "timeSpent": 42,
        "completionPercentage": 50.0,
        "lastActivityAt": "2024-05-01T12:30:00",
        "currentQuestionIndex": 1,
        "totalQuestions": 2,
    }

    restored = AttemptProgress.from_dict(data)
    assert restored == progress


def test_from_dict_tolerates_missing_document():
    progress = AttemptProgress.from_dict(None, total_questions=5)

    assert progress.total_questions == 5
    assert progress.answers == {}
    assert progress.last_activity_at is None


def test_normalize_answers_handles_empty_input():
    assert normalize_answers(None) == {}
    assert normalize_answers({}) == {}
