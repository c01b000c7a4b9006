import requests

from ownerscout.core import tech_detector
from ownerscout.models import TechStackProfile

WORDPRESS_DOORDASH = """
<html><head>
<meta name="generator" content="WordPress 6.4">
<script src="https://luigis.example.com/wp-content/themes/site.js"></script>
<script src="https://www.googletagmanager.com/gtag/js?id=G-1"></script>
</head><body>
<a href="https://www.doordash.com/store/luigis">Delivery</a>
<p>Reserve on OpenTable</p>
</body></html>
"""


class DummyResponse:
    def __init__(self, text="", status_code=200, content_type="text/html; charset=utf-8", url="https://luigis.example.com/"):
        self.text = text
        self.status_code = status_code
        self.headers = {"Content-Type": content_type}
        self.url = url


class DummySession:
    def __init__(self, response=None, error=None):
        self.headers = {}
        self.response = response
        self.error = error
        self.calls = []
        self.closed = False

    def get(self, url, timeout=None, allow_redirects=True):
        self.calls.append((url, timeout))
        if self.error:
            raise self.error
        return self.response

    def close(self):
        self.closed = True


def test_sanitize_website():
    assert tech_detector.sanitize_website("example.com") == "https://example.com/"
    assert tech_detector.sanitize_website("http://example.com/menu#top") == "http://example.com/menu"
    assert tech_detector.sanitize_website("   ") is None


def test_analyze_html_detects_platform_delivery_and_reservations():
    profile = tech_detector.analyze_html("https://luigis.example.com/", WORDPRESS_DOORDASH)

    assert profile.website_platform == "WordPress"
    assert profile.delivery == ["DoorDash"]
    assert profile.reservations == ["OpenTable"]
    assert profile.online_ordering == []
    assert "Google Analytics 4" in profile.other_scripts
    assert profile.has_first_party_ordering is False
    # platform + delivery + reservations
    assert profile.confidence == 75


def test_plain_site_falls_back_to_custom():
    profile = tech_detector.analyze_html("https://plain.example.com/", "<html><body>Hello</body></html>")

    assert profile.website_platform == "Custom"
    assert profile.confidence == 20


def test_first_party_ordering_requires_ordering_ui():
    html = '<html><body><script src="https://cdn.toasttab.com/widget.js"></script><a href="/order">Order Now</a></body></html>'

    profile = tech_detector.analyze_html("https://site.example.com/", html)

    assert "Toast" in profile.online_ordering
    assert profile.has_first_party_ordering is True


def test_embedded_marketplace_widget_is_not_first_party():
    html = (
        '<html><body><script src="https://cdn.toasttab.com/w.js"></script>'
        '<iframe src="https://direct.chownow.com/order/1"></iframe><p>Order Online</p></body></html>'
    )

    profile = tech_detector.analyze_html("https://site.example.com/", html)

    assert profile.has_first_party_ordering is False


def test_domain_signature_uses_site_url():
    profile = tech_detector.analyze_html("https://luigis.wixsite.com/home", "<html></html>")

    assert profile.website_platform == "Wix"


def test_confidence_table():
    assert tech_detector.calculate_confidence([], [], [], [], [], []) == 20
    assert tech_detector.calculate_confidence(["Wix"], [], [], [], [], []) == 40
    assert tech_detector.calculate_confidence(["Wix"], ["Toast"], [], [], [], []) == 60
    assert tech_detector.calculate_confidence(["Wix"], ["Toast"], ["Resy"], ["DoorDash"], [], []) == 80
    many = ["a", "b", "c", "d", "e"]
    assert tech_detector.calculate_confidence(["Wix"], many, many, [], [], []) == 90


def test_detect_fetches_and_analyses():
    session = DummySession(DummyResponse(WORDPRESS_DOORDASH))
    detector = tech_detector.TechDetector(session=session, timeout=3)

    profile = detector.detect("luigis.example.com")

    assert profile.website_platform == "WordPress"
    assert session.calls == [("https://luigis.example.com/", 3)]
    assert session.headers["User-Agent"] == tech_detector.USER_AGENT


def test_detect_returns_unknown_on_network_error(caplog):
    session = DummySession(error=requests.ConnectTimeout("slow"))
    detector = tech_detector.TechDetector(session=session)

    with caplog.at_level("WARNING"):
        profile = detector.detect("https://slow.example.com")

    assert profile == TechStackProfile.unknown()
    assert profile.confidence == 10
    assert "Failed to crawl" in caplog.text


def test_detect_returns_unknown_for_error_status_and_non_html():
    detector = tech_detector.TechDetector(session=DummySession(DummyResponse(status_code=503)))
    assert detector.detect("https://down.example.com").website_platform == "Unknown"

    detector = tech_detector.TechDetector(session=DummySession(DummyResponse(content_type="application/pdf")))
    assert detector.detect("https://menu.example.com").website_platform == "Unknown"


def test_detect_without_website():
    detector = tech_detector.TechDetector(session=DummySession())

    assert detector.detect(None) == TechStackProfile.unknown()


def test_context_manager_closes_session():
    session = DummySession()
    with tech_detector.TechDetector(session=session):
        pass

    assert session.closed is True
