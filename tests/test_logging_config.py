"""
Unit tests for structured operation logging.
"""
import logging

from app.core.logging_config import log_operation, mask_id, sanitize_log_data


def test_mask_id_truncates():
    assert mask_id("sub_1234567890") == "sub_1234..."
    assert mask_id("cus_1") == "cus_1"
    assert mask_id(None) == "none"


def test_sanitize_redacts_secrets():
    data = sanitize_log_data({"stripe_webhook_secret": "whsec_x", "status": "ACTIVE"})
    assert data == {"stripe_webhook_secret": "***REDACTED***", "status": "ACTIVE"}


def test_log_operation_success(caplog):
    logger = logging.getLogger("tests.billing")
    with caplog.at_level(logging.INFO, logger="tests.billing"):
        log_operation(logger, "subscription_upsert", True, subscription_id="sub_1234567890", status="ACTIVE")

    record = caplog.records[-1]
    assert record.levelno == logging.INFO
    assert record.getMessage() == "operation=subscription_upsert success=true subscription_id=sub_1234... status=ACTIVE"


def test_log_operation_failure_logs_error(caplog):
    logger = logging.getLogger("tests.billing")
    with caplog.at_level(logging.INFO, logger="tests.billing"):
        log_operation(logger, "handle_payment_failure", False, error="Subscription not found")

    assert caplog.records[-1].levelno == logging.ERROR
