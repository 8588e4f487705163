import pytest

from pulsemap.client.enrichment import (LOCATION_PATH, EnrichmentResolver, classify_source,
                                        source_name)
from pulsemap.client.platform import DeliveryError


def classify(referrer="", params=None, host="site.test"):
    return classify_source(referrer, params or {}, "s1", "/landing", host)


def test_google_search_is_organic():
    src = classify("https://www.google.com/search?q=x")
    assert src.source_type == "organic"
    assert src.source_name == "Google"
    assert src.medium == "none"
    assert src.referrer_url == "https://www.google.com/search?q=x"


def test_empty_referrer_is_direct():
    src = classify("")
    assert src.source_type == "direct"
    assert src.source_name == "direct"
    assert src.referrer_url is None


@pytest.mark.parametrize("referrer,params,expected", [
    ("https://www.google.com/search?q=x", {"gclid": "abc"}, "paid"),
    ("https://www.facebook.com/", {"fbclid": "1"}, "paid"),
    ("", {"utm_medium": "cpc"}, "paid"),
    ("https://www.facebook.com/", {"utm_medium": "email"}, "email"),
    ("https://mail.google.com/mail/u/0/", {}, "email"),
    ("https://outlook.live.com/mail/", {}, "email"),
    ("https://m.facebook.com/story", {}, "social"),
    ("https://www.linkedin.com/feed/", {}, "social"),
    ("https://zalo.me/abc", {}, "social"),
    ("https://www.bing.com/search?q=solar", {}, "organic"),
    ("https://www.baidu.com/s?wd=solar", {}, "organic"),
    ("https://www.google.com/", {}, "referral"),
    ("https://blog.partner.org/post", {}, "referral"),
    ("https://site.test/previous", {}, "direct"),
    ("http://[bad-host/x", {}, "direct"),
    ("http://[bad-host/x", {"utm_medium": "email"}, "email"),
    ("http://[bad-host/x", {"gclid": "1"}, "paid"),
])
def test_rule_priority(referrer, params, expected):
    assert classify(referrer, params).source_type == expected


def test_campaign_and_medium_are_carried():
    src = classify("", {"utm_medium": "newsletter", "utm_campaign": "spring"})
    assert src.medium == "newsletter"
    assert src.campaign == "spring"
    assert src.landing_page == "/landing"


def test_classification_is_deterministic():
    a = classify("https://twitter.com/x", {"utm_campaign": "c"})
    b = classify("https://twitter.com/x", {"utm_campaign": "c"})
    assert a.model_dump(exclude={"timestamp"}) == b.model_dump(exclude={"timestamp"})


@pytest.mark.parametrize("referrer,name", [
    ("", "direct"),
    ("https://www.instagram.com/p/1", "Instagram"),
    ("https://coccoc.com/search?query=a", "Coc Coc"),
    ("https://news.example.org/a", "news.example.org"),
    ("not a url", "unknown"),
])
def test_source_names(referrer, name):
    assert source_name(referrer) == name


LOCATION = {"countryCode": "VN", "countryName": "Vietnam", "city": "Hanoi",
            "latitude": 21.03, "longitude": 105.85, "isMobile": False}


def test_location_resolves_later(transport, events):
    transport.responses[LOCATION_PATH] = LOCATION
    got = []
    EnrichmentResolver(transport, events).request_location("s1", got.append)
    assert got == [] and transport.gets == []
    events.run_pending()
    assert len(got) == 1
    assert got[0].session_id == "s1"
    assert got[0].country_code == "VN"
    assert got[0].timestamp is not None


def test_location_failure_is_isolated(transport, events):
    transport.responses[LOCATION_PATH] = DeliveryError("timeout")
    got = []
    EnrichmentResolver(transport, events).request_location("s1", got.append)
    events.run_pending()
    assert got == []
