"""Email service tests."""

import logging
from unittest.mock import AsyncMock, MagicMock, patch

import aiosmtplib
import httpx
import pytest

from gtovantage.services.email import (
    RESEND_API_URL,
    SUBJECT,
    ConsoleEmailBackend,
    EmailService,
    ResendEmailBackend,
    SMTPEmailBackend,
    VerificationEmail,
    get_email_backend,
    render_verification_email,
)

LINK = "http://localhost:3000/verify-email?token=abc123"


@pytest.fixture
def message() -> VerificationEmail:
    return render_verification_email("test@example.com", LINK, "Alice")


def make_smtp_backend() -> SMTPEmailBackend:
    return SMTPEmailBackend(
        host="smtp.example.com",
        port=587,
        from_address="noreply@gtovantage.com",
        username="user",
        password="pass",
    )


class TestRenderVerificationEmail:
    """Tests for the confirmation message body."""

    def test_contains_link_and_greeting(self):
        message = render_verification_email("alice@example.com", LINK, "Alice", ttl_hours=24)

        assert message.to == "alice@example.com"
        assert message.subject == SUBJECT
        assert message.link == LINK
        assert LINK in message.text
        assert "Hi Alice," in message.text
        assert "24 hours" in message.text
        assert "token=abc123" in message.html

    def test_greeting_without_name(self):
        message = render_verification_email("bob@example.com", LINK)
        assert message.text.startswith("Hi,")

    def test_html_escapes_name_and_link(self):
        message = render_verification_email(
            "mallory@example.com",
            'http://x.test/verify?token=a"><b>',
            "<script>alert(1)</script>",
        )

        assert "<script>" not in message.html
        assert "&lt;script&gt;" in message.html
        assert '"><b>' not in message.html


class TestConsoleEmailBackend:
    """Tests for console email backend."""

    @pytest.mark.asyncio
    async def test_logs_link(self, message, caplog):
        """Test the console backend logs the recipient and the link."""
        with caplog.at_level(logging.INFO):
            result = await ConsoleEmailBackend().deliver(message)

        assert result is True
        assert "test@example.com" in caplog.text
        assert SUBJECT in caplog.text
        assert LINK in caplog.text


class TestSMTPEmailBackend:
    """Tests for SMTP email backend."""

    def test_build_message(self, message):
        """Test the MIME message carries both parts and our headers."""
        mime = make_smtp_backend().build_message(message)

        assert mime["To"] == "test@example.com"
        assert mime["From"] == "noreply@gtovantage.com"
        assert mime["Subject"] == SUBJECT
        assert mime["Message-ID"].endswith("@gtovantage.com>")
        assert mime.get_content_type() == "multipart/alternative"
        assert LINK in mime.get_body(preferencelist=("plain",)).get_content()
        assert "token=abc123" in mime.get_body(preferencelist=("html",)).get_content()

    @pytest.mark.asyncio
    async def test_send_success(self, message):
        with patch("gtovantage.services.email.aiosmtplib.send", new_callable=AsyncMock) as mock_send:
            result = await make_smtp_backend().deliver(message)

        assert result is True
        mock_send.assert_called_once()
        assert mock_send.call_args.kwargs["hostname"] == "smtp.example.com"
        assert mock_send.call_args.kwargs["start_tls"] is True

    @pytest.mark.asyncio
    async def test_send_rejected(self, message):
        """Test an SMTP protocol error is reported as not sent."""
        with patch(
            "gtovantage.services.email.aiosmtplib.send",
            new_callable=AsyncMock,
            side_effect=aiosmtplib.SMTPConnectError("Connection failed"),
        ):
            assert await make_smtp_backend().deliver(message) is False

    @pytest.mark.asyncio
    async def test_send_unreachable(self, message):
        with patch(
            "gtovantage.services.email.aiosmtplib.send",
            new_callable=AsyncMock,
            side_effect=ConnectionRefusedError(),
        ):
            assert await make_smtp_backend().deliver(message) is False

    @pytest.mark.asyncio
    async def test_anonymous_relay(self, message):
        """Test empty credentials are not sent to the relay."""
        backend = SMTPEmailBackend(host="relay.local", port=25, from_address="noreply@gtovantage.com", use_tls=False)

        with patch("gtovantage.services.email.aiosmtplib.send", new_callable=AsyncMock) as mock_send:
            await backend.deliver(message)

        assert mock_send.call_args.kwargs["username"] is None
        assert mock_send.call_args.kwargs["password"] is None


class TestResendEmailBackend:
    """Tests for Resend email backend."""

    @pytest.mark.asyncio
    async def test_send_success(self, message):
        """Test successful Resend send."""
        backend = ResendEmailBackend(api_key="re_test_key", from_address="noreply@example.com")

        mock_response = MagicMock()
        mock_response.raise_for_status = MagicMock()

        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = mock_response

            result = await backend.deliver(message)

            assert result is True
            mock_post.assert_called_once()
            call_kwargs = mock_post.call_args[1]
            assert call_kwargs["json"]["to"] == ["test@example.com"]
            assert call_kwargs["json"]["subject"] == SUBJECT
            assert call_kwargs["json"]["text"] == message.text

    @pytest.mark.asyncio
    async def test_send_http_error(self, message):
        """Test Resend HTTP error handling."""
        backend = ResendEmailBackend(api_key="re_test_key", from_address="noreply@example.com")

        mock_response = MagicMock()
        mock_response.status_code = 401
        mock_response.text = "Unauthorized"
        mock_response.raise_for_status.side_effect = httpx.HTTPStatusError(
            "Unauthorized",
            request=MagicMock(),
            response=mock_response,
        )

        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = mock_response

            assert await backend.deliver(message) is False

    @pytest.mark.asyncio
    async def test_send_transport_error_gives_up(self, message):
        """Test Resend stops after its last attempt on connection errors."""
        backend = ResendEmailBackend(
            api_key="re_test_key",
            from_address="noreply@example.com",
            max_attempts=1,
        )

        with patch(
            "httpx.AsyncClient.post",
            new_callable=AsyncMock,
            side_effect=httpx.ConnectError("Connection refused"),
        ) as mock_post:
            result = await backend.deliver(message)

            assert result is False
            mock_post.assert_called_once()
            assert mock_post.call_args[0][0] == RESEND_API_URL


class TestGetEmailBackend:
    """Tests for get_email_backend factory."""

    def test_console_backend(self):
        with patch("gtovantage.services.email.settings") as mock_settings:
            mock_settings.email_backend = "console"

            assert isinstance(get_email_backend(), ConsoleEmailBackend)

    def test_smtp_backend(self):
        with patch("gtovantage.services.email.settings") as mock_settings:
            mock_settings.email_backend = "smtp"
            mock_settings.smtp_host = "smtp.example.com"
            mock_settings.smtp_port = 587
            mock_settings.smtp_username = "user"
            mock_settings.smtp_password = "pass"
            mock_settings.smtp_use_tls = True
            mock_settings.email_from = "noreply@example.com"

            backend = get_email_backend()

            assert isinstance(backend, SMTPEmailBackend)
            assert backend.host == "smtp.example.com"
            assert backend.from_address == "noreply@example.com"

    def test_resend_backend(self):
        with patch("gtovantage.services.email.settings") as mock_settings:
            mock_settings.email_backend = "resend"
            mock_settings.resend_api_key = "re_test_key"
            mock_settings.email_from = "noreply@example.com"

            backend = get_email_backend()

            assert isinstance(backend, ResendEmailBackend)
            assert backend.api_key == "re_test_key"

    def test_invalid_backend(self):
        with patch("gtovantage.services.email.settings") as mock_settings:
            mock_settings.email_backend = "invalid"

            with pytest.raises(ValueError, match="Unknown email backend"):
                get_email_backend()


class TestEmailService:
    """Tests for EmailService."""

    @pytest.mark.asyncio
    async def test_send_verification_email(self):
        """Test the service renders the confirmation and hands it over."""
        mock_backend = AsyncMock()
        mock_backend.deliver.return_value = True

        service = EmailService(backend=mock_backend)

        result = await service.send_verification_email(
            to="alice@example.com",
            verification_url=LINK,
            name="Alice",
        )

        assert result is True
        mock_backend.deliver.assert_called_once()
        sent = mock_backend.deliver.call_args[0][0]
        assert isinstance(sent, VerificationEmail)
        assert sent.to == "alice@example.com"
        assert sent.link == LINK
        assert "Hi Alice," in sent.text

    @pytest.mark.asyncio
    async def test_expiry_follows_settings(self):
        mock_backend = AsyncMock()

        with patch("gtovantage.services.email.settings") as mock_settings:
            mock_settings.verification_token_ttl_hours = 48
            await EmailService(backend=mock_backend).send_verification_email(to="a@b.com", verification_url=LINK)

        assert "48 hours" in mock_backend.deliver.call_args[0][0].text

    @pytest.mark.asyncio
    async def test_send_verification_email_failure(self):
        mock_backend = AsyncMock()
        mock_backend.deliver.return_value = False

        service = EmailService(backend=mock_backend)

        assert await service.send_verification_email(to="alice@example.com", verification_url=LINK) is False

    def test_lazy_backend_loading(self):
        """Test that backend is lazy-loaded."""
        service = EmailService()

        with patch("gtovantage.services.email.get_email_backend") as mock_get_backend:
            mock_get_backend.return_value = ConsoleEmailBackend()

            backend = service.backend

            assert isinstance(backend, ConsoleEmailBackend)
            assert service.backend is backend
            mock_get_backend.assert_called_once()
