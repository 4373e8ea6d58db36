"""Tests for the video resolver and its strategy chains."""

import pytest
import requests

from config import FetchConfig
from models import Network, Quality, VideoInfo, VideoVariant
from scraper import (
    ExtractionFailedError, InvalidUrlError, PostTarget, UnsupportedPlatformError, VideoResolver,
    instagram_api, instagram_embed, instagram_html, instagram_regex, make_variant, parse_target,
    placeholder, run_strategies, twitter_api, twitter_html, twitter_mirror, twitter_regex,
    twitter_syndication,
)
from fakes import FakeResponse, FakeSession

TWEET_URL = "https://x.com/someone/status/1790000000000000000"
CANONICAL_TWEET_URL = "https://x.com/i/status/1790000000000000000"
REEL_URL = "https://www.instagram.com/reel/C1aBcD_e-F/?igsh=xyz"
X_TARGET = PostTarget(url=TWEET_URL, network=Network.X, media_id="1790000000000000000")
IG_TARGET = PostTarget(url=REEL_URL, network=Network.INSTAGRAM, media_id="C1aBcD_e-F")


def make_config(routes=(), **kwargs):
    return FetchConfig(session=FakeSession(routes), **kwargs)


def _info(url="https://video.example.com/a.mp4"):
    return VideoInfo(id="1", title="t", network=Network.X,
                     variants=[VideoVariant(url=url, quality=Quality.HD)])


# --- URL classification ---

@pytest.mark.parametrize("url", [
    "https://www.youtube.com/watch?v=123",
    "https://www.tiktok.com/@a/video/1",
    "not-a-url",
    "",
])
def test_unsupported_platform_makes_no_network_calls(url):
    config = make_config()
    with pytest.raises(UnsupportedPlatformError):
        VideoResolver(config).resolve(url)
    assert config.session.calls == []


@pytest.mark.parametrize("url", [
    "https://x.com/someone",
    "https://twitter.com/someone/status/abc",
    "https://www.instagram.com/someone/",
    "https://www.instagram.com/explore/",
])
def test_invalid_platform_url_fails_before_network(url):
    config = make_config()
    with pytest.raises(InvalidUrlError):
        VideoResolver(config).resolve(url)
    assert config.session.calls == []


@pytest.mark.parametrize("url", [
    "https://www.dropbox.com/status/123",
    "https://xbox.com/status/1",
    "https://fox.com/a/status/1",
    "https://netflix.com/status/1",
    "https://x.com.evil.com/a/status/1",
    "https://x.com@evil.com/status/1",
    "https://notinstagram.com/reel/C1aBcD_e-F/",
])
def test_lookalike_hosts_are_rejected_without_requests(url):
    config = make_config()
    with pytest.raises(UnsupportedPlatformError):
        VideoResolver(config).resolve(url)
    assert config.session.calls == []


def test_subdomains_of_supported_hosts_are_accepted():
    assert parse_target("https://mobile.twitter.com/a/status/9").network == Network.X
    assert parse_target("https://m.instagram.com/reel/Ab1/").network == Network.INSTAGRAM


def test_parse_target():
    assert parse_target(TWEET_URL) == X_TARGET
    assert parse_target("https://twitter.com/a/status/42?s=20").media_id == "42"
    assert parse_target(REEL_URL) == IG_TARGET
    assert parse_target("https://instagram.com/p/Xy_9/").network == Network.INSTAGRAM
    assert parse_target("  x.com/a/status/7  ").media_id == "7"


# --- driver ---

def test_first_success_wins_and_later_strategies_are_skipped():
    calls = []

    def first(target, config):
        calls.append("first")
        raise requests.Timeout("too slow")

    def second(target, config):
        calls.append("second")
        return _info()

    def third(target, config):
        calls.append("third")
        return _info("https://video.example.com/other.mp4")

    info = run_strategies(X_TARGET, (first, second, third), make_config())

    assert info.mp4_url == "https://video.example.com/a.mp4"
    assert info.source == "second"
    assert calls == ["first", "second"]


def test_empty_results_fall_through_to_next_strategy():
    def nothing(target, config):
        return None

    def no_variants(target, config):
        return VideoInfo(id="1", title="t", network=Network.X)

    def works(target, config):
        return _info()

    assert run_strategies(X_TARGET, (nothing, no_variants, works), make_config()).source == "works"


def test_exhausted_chain_raises():
    def broken(target, config):
        raise ValueError("bad json")

    with pytest.raises(ExtractionFailedError) as exc:
        run_strategies(X_TARGET, (broken, broken), make_config())
    assert exc.value.attempted == ["broken", "broken"]
    assert exc.value.network == Network.X


def test_driver_sorts_variants():
    def unsorted(target, config):
        info = _info()
        info.variants = [make_variant("https://v/low.mp4", bitrate=100_000),
                         make_variant("https://v/high.mp4", bitrate=2_500_000)]
        return info

    info = run_strategies(X_TARGET, (unsorted,), make_config())
    assert [v.url for v in info.variants] == ["https://v/high.mp4", "https://v/low.mp4"]


def test_placeholder_only_in_demo_mode():
    assert placeholder not in VideoResolver(make_config()).chain_for(Network.X)
    assert VideoResolver(make_config(demo_mode=True)).chain_for(Network.X)[-1] is placeholder

    demo = VideoResolver(make_config(demo_mode=True)).resolve(TWEET_URL)
    assert demo.title.endswith("(Demo)")
    assert demo.source == "placeholder"
    assert demo.size_approx == 2000000


def test_resolver_without_demo_mode_reports_exhaustion():
    with pytest.raises(ExtractionFailedError):
        VideoResolver(make_config()).resolve(TWEET_URL)


# --- X strategies ---

TWEET_VARIANTS = [
    {"content_type": "application/x-mpegURL", "url": "https://video.twimg.com/pl/a.m3u8"},
    {"bitrate": 632000, "content_type": "video/mp4", "url": "https://video.twimg.com/vid/480x270/a.mp4"},
    {"bitrate": 2176000, "content_type": "video/mp4", "url": "https://video.twimg.com/vid/1280x720/b.mp4"},
    {"bitrate": 950000, "content_type": "video/mp4", "url": "https://video.twimg.com/vid/640x360/c.mp4"},
]


def test_twitter_api_parses_extended_entities():
    tweet = {
        "full_text": "Look at this",
        "user": {"screen_name": "someone"},
        "extended_entities": {"media": [{
            "media_url_https": "https://pbs.twimg.com/thumb.jpg",
            "video_info": {"duration_millis": 12500, "variants": TWEET_VARIANTS},
        }]},
    }
    config = make_config([
        ("POST", "https://api.twitter.com/1.1/guest/activate.json", FakeResponse(json_data={"guest_token": "g1"})),
        ("GET", "https://api.twitter.com/1.1/statuses/show.json", FakeResponse(json_data=tweet)),
    ])

    info = twitter_api(X_TARGET, config)

    assert [v.url.rsplit("/", 1)[-1] for v in info.variants] == ["b.mp4", "c.mp4", "a.mp4"]
    assert [v.quality for v in info.variants] == [Quality.FULL_HD, Quality.SD, Quality.SD]
    assert info.variants[0].resolution == "1080p"
    assert info.title == "Look at this"
    assert info.author == "someone"
    assert info.duration == 12.5
    assert info.thumbnail == "https://pbs.twimg.com/thumb.jpg"
    _, _, kwargs = config.session.calls[1]
    assert kwargs["headers"]["x-guest-token"] == "g1"
    assert kwargs["timeout"] == config.timeout


def test_twitter_api_without_guest_token_yields_nothing():
    config = make_config([
        ("POST", "https://api.twitter.com/1.1/guest/activate.json", FakeResponse(json_data={})),
    ])
    assert twitter_api(X_TARGET, config) is None


def test_twitter_syndication_media_details():
    payload = {
        "text": "Synd",
        "user": {"screen_name": "someone"},
        "mediaDetails": [
            {"type": "photo", "media_url_https": "https://pbs.twimg.com/p.jpg"},
            {"type": "video", "media_url_https": "https://pbs.twimg.com/v.jpg",
             "video_info": {"variants": TWEET_VARIANTS[1:3]}},
        ],
    }
    config = make_config([("GET", "https://cdn.syndication.twimg.com/tweet-result", FakeResponse(json_data=payload))])

    info = twitter_syndication(X_TARGET, config)

    assert info.mp4_url == "https://video.twimg.com/vid/1280x720/b.mp4"
    assert info.thumbnail == "https://pbs.twimg.com/v.jpg"
    _, _, kwargs = config.session.calls[0]
    assert kwargs["params"]["id"] == X_TARGET.media_id
    assert kwargs["params"]["token"]


def test_twitter_mirror_without_variants_uses_frame_size():
    payload = {"tweet": {"text": "Mirror", "author": {"screen_name": "someone"}, "media": {"videos": [
        {"url": "https://video.twimg.com/m.mp4", "width": 1920, "height": 1080,
         "thumbnail_url": "https://pbs.twimg.com/m.jpg", "duration": 4.2},
    ]}}}
    config = make_config([("GET", "https://api.fxtwitter.com/status/", FakeResponse(json_data=payload))])

    info = twitter_mirror(X_TARGET, config)

    assert info.variants[0].quality == Quality.FULL_HD
    assert info.variants[0].resolution == "1080p"
    assert info.author == "someone"
    assert info.duration == 4.2


def test_twitter_html_reads_open_graph():
    html = '''<html><head>
    <meta property="og:title" content="A tweet">
    <meta property="og:image" content="https://pbs.twimg.com/og.jpg">
    <meta property="og:video:url" content="https://video.twimg.com/og.mp4">
    </head></html>'''
    config = make_config([("GET", CANONICAL_TWEET_URL, FakeResponse(text=html))])

    info = twitter_html(X_TARGET, config)

    assert info.mp4_url == "https://video.twimg.com/og.mp4"
    assert info.title == "A tweet"
    assert info.thumbnail == "https://pbs.twimg.com/og.jpg"


def test_twitter_html_fetches_canonical_status_page():
    html = '<html><head><meta property="og:video" content="/vid/clip.mp4"></head></html>'
    config = make_config([("GET", CANONICAL_TWEET_URL, FakeResponse(text=html))])
    target = parse_target("https://twitter.com/someone/status/1790000000000000000?s=20")

    info = twitter_html(target, config)

    assert info.mp4_url == "https://x.com/vid/clip.mp4"
    assert [url for _, url, _ in config.session.calls] == [CANONICAL_TWEET_URL]


def test_twitter_html_without_video_meta():
    config = make_config([("GET", CANONICAL_TWEET_URL, FakeResponse(text="<html><body>nothing</body></html>"))])
    assert twitter_html(X_TARGET, config) is None


def test_twitter_regex_scans_escaped_urls():
    html = r'''<script>{"a":"https:\/\/video.twimg.com\/ext_tw_video\/1\/pu\/vid\/avc1\/640x360\/def.mp4?tag=12",
    "b":"https:\/\/video.twimg.com\/ext_tw_video\/1\/pu\/vid\/avc1\/1280x720\/abc.mp4?tag=12"}</script>'''
    config = make_config([("GET", CANONICAL_TWEET_URL, FakeResponse(text=html))])

    info = twitter_regex(X_TARGET, config)

    assert [v.resolution for v in info.variants] == ["720p", "360p"]
    assert info.mp4_url == "https://video.twimg.com/ext_tw_video/1/pu/vid/avc1/1280x720/abc.mp4?tag=12"


def test_x_chain_falls_back_to_syndication():
    payload = {"text": "Synd", "mediaDetails": [{"video_info": {"variants": TWEET_VARIANTS}}]}
    config = make_config([
        ("POST", "https://api.twitter.com/", FakeResponse(status_code=403)),
        ("GET", "https://cdn.syndication.twimg.com/", FakeResponse(json_data=payload)),
    ])

    info = VideoResolver(config).resolve(TWEET_URL)

    assert info.source == "twitter_syndication"
    assert not config.session.called("https://api.fxtwitter.com")
    assert not config.session.called(CANONICAL_TWEET_URL)


# --- Instagram strategies ---

def test_instagram_api_skipped_without_cookie():
    config = make_config()
    assert instagram_api(IG_TARGET, config) is None
    assert config.session.calls == []


def test_instagram_api_items_shape():
    payload = {"items": [{
        "caption": {"text": "Reel caption"},
        "user": {"username": "creator"},
        "video_duration": 8.5,
        "image_versions2": {"candidates": [{"url": "https://scontent.cdninstagram.com/t.jpg"}]},
        "video_versions": [
            {"url": "https://scontent.cdninstagram.com/small.mp4", "width": 480, "height": 854},
            {"url": "https://scontent.cdninstagram.com/big.mp4", "width": 720, "height": 1280},
        ],
    }]}
    config = make_config(
        [("GET", "https://www.instagram.com/p/C1aBcD_e-F/", FakeResponse(json_data=payload))],
        instagram_cookie="sessionid=abc",
    )

    info = instagram_api(IG_TARGET, config)

    assert info.mp4_url == "https://scontent.cdninstagram.com/big.mp4"
    assert info.variants[0].quality == Quality.HD
    assert info.author == "creator"
    assert info.title == "Reel caption"
    assert info.thumbnail == "https://scontent.cdninstagram.com/t.jpg"
    _, _, kwargs = config.session.calls[0]
    assert kwargs["headers"]["Cookie"] == "sessionid=abc"
    assert kwargs["params"] == {"__a": "1", "__d": "dis"}


def test_instagram_api_graphql_shape():
    payload = {"graphql": {"shortcode_media": {
        "video_url": "https://scontent.cdninstagram.com/g.mp4",
        "display_url": "https://scontent.cdninstagram.com/g.jpg",
        "dimensions": {"width": 1080, "height": 1920},
        "owner": {"username": "creator"},
        "edge_media_to_caption": {"edges": [{"node": {"text": "Graph caption"}}]},
    }}}
    config = make_config(
        [("GET", "https://www.instagram.com/p/", FakeResponse(json_data=payload))],
        instagram_cookie="sessionid=abc",
    )

    info = instagram_api(IG_TARGET, config)

    assert info.variants[0].quality == Quality.FULL_HD
    assert info.title == "Graph caption"


def test_instagram_embed_unescapes_context_json():
    html = r'''<html><body><img class="EmbeddedMediaImage" src="https://scontent.cdninstagram.com/e.jpg">
    <script>window.__additionalDataLoaded('extra', {"contextJSON":"{\"context\":{\"username\":\"creator\",\"video_url\":\"https:\\/\\/scontent.cdninstagram.com\\/v\\/clip.mp4?_nc_ht=x\\u0026oe=65\"}}"});</script>
    </body></html>'''
    config = make_config([("GET", "https://www.instagram.com/p/C1aBcD_e-F/embed/captioned/", FakeResponse(text=html))])

    info = instagram_embed(IG_TARGET, config)

    assert info.mp4_url == "https://scontent.cdninstagram.com/v/clip.mp4?_nc_ht=x&oe=65"
    assert info.author == "creator"
    assert info.thumbnail == "https://scontent.cdninstagram.com/e.jpg"


def test_instagram_html_falls_back_to_ld_json():
    html = '''<html><head><meta property="og:title" content="Post">
    <script type="application/ld+json">{"@type": "VideoObject", "name": "LD clip",
      "contentUrl": "https://scontent.cdninstagram.com/ld.mp4", "thumbnailUrl": "https://scontent.cdninstagram.com/ld.jpg",
      "author": {"alternateName": "creator"}}</script></head></html>'''
    config = make_config([("GET", "https://www.instagram.com/p/C1aBcD_e-F/", FakeResponse(text=html))])

    info = instagram_html(IG_TARGET, config)

    assert info.mp4_url == "https://scontent.cdninstagram.com/ld.mp4"
    assert info.title == "LD clip"
    assert info.author == "creator"


def test_instagram_regex_cleans_escaped_url():
    html = r'<script>{"video_url":"https:\/\/scontent.cdninstagram.com\/v\/clip.mp4?oe=1&_nc_sid=a"}</script>'
    config = make_config([("GET", "https://www.instagram.com/p/C1aBcD_e-F/", FakeResponse(text=html))])

    info = instagram_regex(IG_TARGET, config)

    assert info.mp4_url == "https://scontent.cdninstagram.com/v/clip.mp4?oe=1&_nc_sid=a"


def test_instagram_chain_uses_mirror_with_relative_video():
    html = '<meta property="og:video" content="/videos/C1aBcD_e-F/1"><meta property="og:title" content="Mirror">'
    config = make_config([("GET", "https://www.ddinstagram.com/reel/", FakeResponse(text=html))])

    info = VideoResolver(config).resolve(REEL_URL)

    assert info.source == "instagram_mirror"
    assert info.mp4_url == "https://www.ddinstagram.com/videos/C1aBcD_e-F/1"
    assert all(url != "https://www.instagram.com/p/C1aBcD_e-F/" for _, url, _ in config.session.calls)
