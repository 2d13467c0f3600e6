"""Tests for user interaction module."""

import io

import pytest
from rich.console import Console

from pg_deployer.interaction import (
    AutoResponseHandler,
    CLIInteractionHandler,
    InteractionRequest,
    InteractionResponse,
    confirm,
)


def scripted_input(monkeypatch, *answers):
    replies = iter(answers)

    def fake_input(*args):
        reply = next(replies)
        if isinstance(reply, BaseException):
            raise reply
        return reply

    monkeypatch.setattr("builtins.input", fake_input)


class TestInteractionRequest:
    """Tests for InteractionRequest dataclass."""

    def test_format_prompt(self):
        request = InteractionRequest(
            question="Promote db-standby-1 to primary?",
            context="This cannot be undone",
            default="n",
        )

        prompt = request.format_prompt()
        assert "⚠️" in prompt
        assert "Promote db-standby-1 to primary?" in prompt
        assert "This cannot be undone" in prompt
        assert "[y/n] (default: n)" in prompt

    def test_format_prompt_without_default(self):
        prompt = InteractionRequest(question="Proceed?").format_prompt()
        assert prompt.endswith("[y/n]")


class TestInteractionResponse:
    @pytest.mark.parametrize("value, expected", [("yes", True), ("Y", True), ("no", False), ("", False)])
    def test_affirmative(self, value, expected):
        assert InteractionResponse(value=value).affirmative is expected

    def test_cancelled_is_never_affirmative(self):
        response = InteractionResponse.cancelled_response()
        assert response.cancelled
        assert not response.affirmative


class TestAutoResponseHandler:
    def test_confirm_answers(self):
        assert confirm(AutoResponseHandler(always_confirm=True), "Proceed?")
        assert not confirm(AutoResponseHandler(always_confirm=False), "Proceed?")

    def test_records_requests_and_notifications(self):
        handler = AutoResponseHandler()
        confirm(handler, "Proceed?", context="3 hosts will change")
        handler.notify("Deployment complete", "success")
        assert handler.requests[0].question == "Proceed?"
        assert handler.requests[0].context == "3 hosts will change"
        assert handler.notifications == [("success", "Deployment complete")]


class TestCLIInteractionHandler:
    def make_handler(self):
        output = io.StringIO()
        return CLIInteractionHandler(console=Console(file=output, width=120)), output

    def test_confirm_reprompts_until_valid(self, monkeypatch):
        scripted_input(monkeypatch, "maybe", "y")
        handler, output = self.make_handler()
        assert confirm(handler, "Do you want to proceed?")
        assert "Please answer y or n" in output.getvalue()

    def test_empty_answer_uses_default(self, monkeypatch):
        scripted_input(monkeypatch, "")
        handler, _ = self.make_handler()
        assert not confirm(handler, "Do you want to proceed?", default="n")

    def test_interrupt_cancels(self, monkeypatch):
        scripted_input(monkeypatch, KeyboardInterrupt())
        handler, output = self.make_handler()
        assert not confirm(handler, "Do you want to proceed?")
        assert "(cancelled)" in output.getvalue()

    def test_end_of_input_cancels(self, monkeypatch):
        scripted_input(monkeypatch, EOFError())
        handler, _ = self.make_handler()
        assert not confirm(handler, "Do you want to proceed?", default="y")

    def test_notify_prints_message(self):
        handler, output = self.make_handler()
        handler.notify("[not markup] done", "success")
        assert "[not markup] done" in output.getvalue()
