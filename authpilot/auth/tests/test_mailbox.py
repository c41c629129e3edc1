"""Tests for the in-memory mailbox."""

from __future__ import annotations

import asyncio

import pytest

from authpilot.auth.mailbox import EmailCollaborator, IncomingEmail, InMemoryMailbox


def _mail(to="bot@agent-mail.xyz", body="", html=None, sender="noreply@github.com"):
    return IncomingEmail(to=to, sender=sender, subject="Verify", body=body, html=html)


class TestAddresses:
    def test_address_is_derived_from_name(self):
        mailbox = InMemoryMailbox("agent-mail.xyz")
        assert mailbox.get_email_address("My Agent_01") == "my-agent-01@agent-mail.xyz"

    def test_satisfies_protocol(self):
        assert isinstance(InMemoryMailbox(), EmailCollaborator)


class TestMessages:
    def test_lookup_is_case_insensitive(self):
        mailbox = InMemoryMailbox()
        email = mailbox.add_email(_mail(to="Bot@Agent-Mail.xyz"))
        assert mailbox.get_emails("BOT@agent-mail.xyz") == [email]
        assert mailbox.get_email(email.id) is email

    def test_sender_filter(self):
        mailbox = InMemoryMailbox()
        mailbox.add_email(_mail(sender="a@github.com"))
        mailbox.add_email(_mail(sender="b@gitlab.com"))
        assert len(mailbox.get_emails("bot@agent-mail.xyz", sender="gitlab")) == 1

    def test_clear(self):
        mailbox = InMemoryMailbox()
        mailbox.add_email(_mail())
        mailbox.clear("bot@agent-mail.xyz")
        assert mailbox.get_emails("bot@agent-mail.xyz") == []


class TestWaitForEmail:
    @pytest.mark.asyncio
    async def test_returns_existing(self):
        mailbox = InMemoryMailbox()
        mailbox.add_email(_mail(body="first"))
        newest = mailbox.add_email(_mail(body="second"))
        assert await mailbox.wait_for_email("bot@agent-mail.xyz", timeout=1) is newest

    @pytest.mark.asyncio
    async def test_waits_for_arrival(self):
        mailbox = InMemoryMailbox()

        async def deliver():
            await asyncio.sleep(0.1)
            mailbox.add_email(_mail(body="late"))

        task = asyncio.create_task(deliver())
        email = await mailbox.wait_for_email("bot@agent-mail.xyz", timeout=2)
        await task
        assert email is not None
        assert email.body == "late"

    @pytest.mark.asyncio
    async def test_timeout_returns_none(self):
        mailbox = InMemoryMailbox()
        assert await mailbox.wait_for_email("bot@agent-mail.xyz", timeout=0.05) is None


class TestExtraction:
    def test_link_from_html_href(self):
        mailbox = InMemoryMailbox()
        email = mailbox.add_email(
            _mail(
                body="Welcome",
                html='<a href="https://example.com/home">Home</a>'
                '<a href="https://example.com/verify?token=abc&amp;u=1">Verify</a>',
            )
        )
        link = mailbox.extract_verification_link(email.id)
        assert link == "https://example.com/verify?token=abc&u=1"

    def test_link_from_text(self):
        mailbox = InMemoryMailbox()
        email = mailbox.add_email(
            _mail(body="Visit https://example.com/about or https://example.com/confirm/xyz now")
        )
        assert mailbox.extract_verification_link(email.id) == "https://example.com/confirm/xyz"

    def test_falls_back_to_any_url(self):
        mailbox = InMemoryMailbox()
        email = mailbox.add_email(_mail(body="Go to https://example.com/welcome"))
        assert mailbox.extract_verification_link(email.id) == "https://example.com/welcome"

    def test_no_link(self):
        mailbox = InMemoryMailbox()
        email = mailbox.add_email(_mail(body="no links here"))
        assert mailbox.extract_verification_link(email.id) is None
        assert mailbox.extract_verification_link("missing") is None

    def test_otp_code(self):
        mailbox = InMemoryMailbox()
        email = mailbox.add_email(_mail(body="Order 12 shipped. Your code is: 482913"))
        assert mailbox.extract_otp_code(email.id) == "482913"
