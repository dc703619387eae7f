from skycall.app import build_ssl_context


def test_tls_is_off_without_certificate():
    assert build_ssl_context(certfile="", keyfile="") is None
    assert build_ssl_context(certfile="certs/cert.pem", keyfile="") is None
