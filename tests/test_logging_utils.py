import logging

from skycall.services.logging_utils import RedactingFilter


def test_redacting_filter_masks_tokens_and_sdp():
    record = logging.LogRecord(
        "skycall", logging.INFO, __file__, 1,
        "auth token=%s sdp=%s to=%s", ("eyJhbGciOi.abc.def", "v=0", "bob"), None)

    assert RedactingFilter().filter(record) is True
    assert record.getMessage() == "auth token=*** sdp=*** to=bob"
