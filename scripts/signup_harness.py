"""
Scripted signup harness.

Replays a full interview through the pure reducer (no network, no audio) and
asserts the ordering rules: one prompt per step, answers only after the card is
revealed, and a weak-password rejection returning to the password step.

Usage:
  python scripts/signup_harness.py
"""

from __future__ import annotations

import os
import sys
from datetime import date

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from src.signup.accounts import AccountCreationResult, FailureReason
from src.signup.orchestrator import (
    AccountCreated,
    BeginPressed,
    CaptureEnded,
    CaptureStarted,
    ConfirmPressed,
    CreateAccount,
    OrchestratorEnv,
    Schedule,
    SignalCompletion,
    SignupState,
    Speak,
    SpeechFinished,
    SpeechPurpose,
    TermsSubmitted,
    TermsToggled,
    TranscriptReceived,
    TransportReady,
    TypedSubmitted,
    reduce,
)
from src.signup.steps import StepId, step_index


def main() -> None:
    env = OrchestratorEnv(choose=lambda options: options[0], today=date(2024, 1, 1))
    state = SignupState()
    spoken: list[Speak] = []
    created: list[CreateAccount] = []
    completed: list[SignalCompletion] = []

    def send(message) -> None:
        """Deliver a message, then play out every effect it produced."""
        nonlocal state
        pending = [message]
        while pending:
            transition = reduce(state, pending.pop(0), env)
            state = transition.state
            for effect in transition.effects:
                if isinstance(effect, Speak):
                    spoken.append(effect)
                    pending.append(SpeechFinished(effect.kind))
                elif isinstance(effect, Schedule):
                    pending.append(effect.message)
                elif isinstance(effect, CreateAccount):
                    created.append(effect)
                elif isinstance(effect, SignalCompletion):
                    completed.append(effect)

    def say(text: str) -> None:
        send(CaptureStarted())
        send(CaptureEnded(True))
        send(TranscriptReceived(text))
        send(ConfirmPressed())

    def at(step_id: StepId) -> None:
        assert state.step.id == step_id, f"expected {step_id.value}, at {state.step.id.value}"
        assert state.revealed, f"{step_id.value} card not revealed"

    # 1) Greeting waits for the channel, then Begin unlocks the first question
    send(BeginPressed())
    assert state.step.id == StepId.GREETING
    send(TransportReady())
    assert state.begin_available
    send(BeginPressed())

    # 2) Voice steps
    at(StepId.NAME)
    say("my name is sara ali")
    at(StepId.USERNAME)
    say("my username is sara ali")
    at(StepId.EMAIL)
    say("sara at example dot com")

    # 3) Typed steps
    at(StepId.PASSWORD)
    send(TypedSubmitted("abc"))
    assert state.field_error, "short password accepted"
    send(TypedSubmitted("s3cret!"))
    at(StepId.CONFIRM_PASSWORD)
    send(TypedSubmitted("s3cret!"))

    at(StepId.DATE_OF_BIRTH)
    say("I was born on March 5th, 1990")
    at(StepId.COUNTRY)
    say("I'm from Qatar")
    at(StepId.CITY)
    say("Doha")

    # 4) Terms gate creation
    at(StepId.TERMS)
    send(TermsSubmitted())
    assert not created
    send(TermsToggled(True))
    send(TermsSubmitted())
    assert len(created) == 1

    # 5) Weak password goes back to the password step and straight to creation after confirming
    weak = AccountCreationResult.failed(FailureReason.WEAK_PASSWORD, "Password is known to be weak")
    send(AccountCreated(weak))
    at(StepId.PASSWORD)
    send(TypedSubmitted("n3w-Passw0rd"))
    send(TypedSubmitted("n3w-Passw0rd"))
    assert state.step.id == StepId.CREATING
    assert len(created) == 2
    assert created[-1].form.password == "n3w-Passw0rd"
    assert created[-1].form.country_code == "QA"

    # 6) Welcome, then completion
    send(AccountCreated(AccountCreationResult.created(needs_email_confirmation=True)))
    assert completed and completed[0].needs_email_confirmation
    assert state.completed

    # Every step asked once in order; recovery re-asks only the password pair
    prompts = [speech.step_index for speech in spoken if speech.purpose == SpeechPurpose.PROMPT]
    password = step_index(StepId.PASSWORD)
    assert prompts == list(range(1, step_index(StepId.CREATING))) + [password, password + 1], prompts

    print("OK")


if __name__ == "__main__":
    main()
