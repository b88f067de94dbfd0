from pathlib import Path
from urllib.parse import urlparse

import pytest


@pytest.fixture(scope="session")
def hostname(base_url):
    """The public name of the deployment, taken from --base-url."""
    if not base_url:
        pytest.skip("e2e tests need --base-url https://<domain>")

    parsed = urlparse(base_url)
    if parsed.scheme != "https":
        pytest.skip(f"e2e tests need an https base url, got {base_url!r}")

    return parsed.hostname


@pytest.fixture(scope="session", autouse=True)
def capture_site_screenshot(browser, base_url):
    """Capture a screenshot of the page served behind the load balancer at the start of the session."""
    if not base_url:
        return

    output_dir = Path("test-results")
    output_dir.mkdir(exist_ok=True)

    page = browser.new_page()
    try:
        page.goto(base_url)
        page.wait_for_load_state("networkidle")

        screenshot_path = output_dir / "site-overview.png"
        page.screenshot(path=str(screenshot_path), full_page=True)
        print(f"\nSite screenshot saved to: {screenshot_path}")
    finally:
        page.close()
