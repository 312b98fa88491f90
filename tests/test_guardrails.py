"""Tests for the confirmation gate and reply classifiers."""

from langchain_core.messages import AIMessage, HumanMessage

from src.guardrails import (
    DELETE,
    RESCHEDULE,
    claims_success,
    confirmation_granted,
    is_progress_message,
    is_success_result,
    message_text,
)


class TestConfirmationGranted:
    def test_explicit_request_in_current_message(self):
        messages = [HumanMessage(content="Delete my 3pm meeting tomorrow")]
        assert confirmation_granted(DELETE, messages)

    def test_plain_yes_after_assistant_raised_the_action(self):
        messages = [
            HumanMessage(content="I can't make the dentist at 3"),
            AIMessage(content="Would you like me to reschedule it to 4pm?"),
            HumanMessage(content="yes"),
        ]
        assert confirmation_granted(RESCHEDULE, messages)

    def test_bare_yes_with_nothing_pending(self):
        assert not confirmation_granted(RESCHEDULE, [HumanMessage(content="yes")])
        assert not confirmation_granted(DELETE, [HumanMessage(content="yes")])

    def test_yes_about_something_else(self):
        messages = [
            HumanMessage(content="What's the weather tomorrow?"),
            AIMessage(content="Sunny. Want me to add a reminder?"),
            HumanMessage(content="yes please"),
        ]
        assert not confirmation_granted(DELETE, messages)

    def test_pick_from_pending_proposal(self):
        messages = [
            HumanMessage(content="Create a meeting at 3pm"),
            AIMessage(content="That conflicts. Options: 2 PM, 4 PM or 5 PM."),
            HumanMessage(content="the second one"),
        ]
        assert confirmation_granted(RESCHEDULE, messages, proposal_pending=True)
        assert not confirmation_granted(RESCHEDULE, messages, proposal_pending=False)

    def test_refusal_is_never_consent(self):
        messages = [
            AIMessage(content="Shall I cancel your 3pm?"),
            HumanMessage(content="no, leave it"),
        ]
        assert not confirmation_granted(DELETE, messages, proposal_pending=True)

    def test_pending_alternatives_do_not_unlock_delete(self):
        messages = [
            HumanMessage(content="Create 'Sync' on Wednesday at 3pm"),
            AIMessage(content="That clashes with your board meeting. Options: 2 PM, 4 PM or 5 PM."),
            HumanMessage(content="yes"),
        ]
        assert confirmation_granted(RESCHEDULE, messages, proposal_pending=True)
        assert not confirmation_granted(DELETE, messages, proposal_pending=True)

    def test_pick_is_not_delete_consent(self):
        messages = [
            AIMessage(content="That clashes. Options: 2 PM, 4 PM or 5 PM."),
            HumanMessage(content="the first one"),
        ]
        assert not confirmation_granted(DELETE, messages, proposal_pending=True)

    def test_yes_to_a_delete_question_with_proposal_pending(self):
        messages = [
            HumanMessage(content="Create 'Sync' at 3pm"),
            AIMessage(content="That clashes with the board meeting. Should I delete the board meeting instead?"),
            HumanMessage(content="yes"),
        ]
        assert confirmation_granted(DELETE, messages, proposal_pending=True)


class TestClaimsSuccess:
    def test_change_and_done_language(self):
        assert claims_success("Your meeting has been rescheduled to 4 PM.")
        assert claims_success("Done! I moved the standup.")

    def test_informational_reply(self):
        assert not claims_success("You have three meetings tomorrow.")

    def test_change_verb_alone_is_not_a_claim(self):
        assert not claims_success("Should I know who created this event?")


class TestIsProgressMessage:
    def test_interim_updates(self):
        assert is_progress_message("Let me check your calendar.")
        assert is_progress_message("One moment while I look")
        assert is_progress_message("Searching your calendar...")
        assert is_progress_message("   ")

    def test_real_answers(self):
        assert not is_progress_message("You're free all afternoon tomorrow.")


class TestIsSuccessResult:
    def test_plain_result_counts(self):
        assert is_success_result({"events": []})
        assert is_success_result({"success": True})

    def test_flagged_results(self):
        assert not is_success_result({"error": True, "message": "boom"})
        assert not is_success_result({"skipped": True})
        assert not is_success_result({"conflict": True})
        assert not is_success_result({"success": False})


def test_message_text_joins_content_blocks():
    message = AIMessage(content=[{"type": "text", "text": "Hello"}, {"type": "text", "text": "there"}])
    assert message_text(message) == "Hello there"
