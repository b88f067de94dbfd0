import socket
import ssl

import pytest
from playwright.sync_api import Page, expect


@pytest.mark.e2e
def test_page_is_served_over_https(page: Page, base_url: str, hostname: str):
    """Test that the instance's page comes back through the TLS listener."""
    response = page.goto(base_url)

    assert response is not None
    assert response.ok
    assert response.url.startswith(f"https://{hostname}")
    expect(page).to_have_title("nlbtopo")
    expect(page.get_by_role("heading", name="served from")).to_be_visible()


@pytest.mark.e2e
def test_handshake_uses_modern_tls(hostname: str):
    """Test that the listener negotiates TLS 1.2 or newer with a certificate valid for the domain."""
    context = ssl.create_default_context()
    context.set_alpn_protocols(["h2", "http/1.1"])

    with socket.create_connection((hostname, 443), timeout=10) as sock, context.wrap_socket(
        sock, server_hostname=hostname
    ) as tls:
        assert tls.version() in ("TLSv1.2", "TLSv1.3")
        assert tls.selected_alpn_protocol() is None

        subject_names = [value for key, value in tls.getpeercert()["subjectAltName"] if key == "DNS"]
        assert hostname in subject_names


@pytest.mark.e2e
def test_legacy_tls_is_refused(hostname: str):
    context = ssl.create_default_context()
    context.minimum_version = ssl.TLSVersion.TLSv1
    context.maximum_version = ssl.TLSVersion.TLSv1_1

    with socket.create_connection((hostname, 443), timeout=10) as sock, pytest.raises(ssl.SSLError):
        context.wrap_socket(sock, server_hostname=hostname)


@pytest.mark.e2e
def test_plain_http_is_not_exposed(hostname: str):
    """Test that only 443 is open on the load balancer."""
    with pytest.raises(OSError):
        socket.create_connection((hostname, 80), timeout=5).close()
