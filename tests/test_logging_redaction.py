import io
import logging

import structlog

from app.logging_config import mask_ip, setup_logging
from app.middleware import redact_path


def test_mask_ipv4():
    assert mask_ip("203.0.113.42") == "203.0.113.***"


def test_mask_ipv6():
    assert mask_ip("2001:db8::1234") == "2001:db8::****"


def test_mask_ip_passthrough():
    assert mask_ip(None) is None
    assert mask_ip("") == ""
    assert mask_ip("unknown") == "unknown"
    assert mask_ip("::1") == "****"


def test_redact_webhook_secret():
    assert redact_path("/webhook/telegram/s3cret") == "/webhook/telegram/***"
    assert redact_path("/webhook/telegram") == "/webhook/telegram"
    assert redact_path("/healthz") == "/healthz"
    assert redact_path("https://bot.example.com/webhook/telegram/s3cret") == "https://bot.example.com/webhook/telegram/***"


def test_setup_logging_masks_user_ip():
    setup_logging("INFO")
    stream = io.StringIO()
    logging.getLogger().handlers[0].setStream(stream)

    structlog.stdlib.get_logger("sideshift").info("sideshift_request", user_ip="198.51.100.7")

    output = stream.getvalue()
    assert "198.51.100.***" in output
    assert "198.51.100.7" not in output
    assert logging.getLogger().level == logging.INFO
