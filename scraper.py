import json
import logging
import math
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from config import FetchConfig
from models import Network, Quality, VideoInfo, VideoVariant, classify_bitrate, classify_frame, sort_variants

logger = logging.getLogger("VideoResolver")

TWEET_ID_RE = re.compile(r'status(?:es)?/(\d+)')
SHORTCODE_RE = re.compile(r'/(?:reels?|p|tv)/([A-Za-z0-9_-]+)')
FRAME_RE = re.compile(r'/(\d{2,4})x(\d{2,4})/')
TWIMG_MP4_RE = re.compile(r'https://video\.twimg\.com/[^"\'\s<>\\]+?\.mp4(?:\?[^"\'\s<>\\]*)?')
VIDEO_URL_RE = re.compile(r'"video_url"\s*:\s*"([^"]+)"')
BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


class ResolverError(Exception):
    """Base error for anything the resolver reports to the caller."""


class UnsupportedPlatformError(ResolverError):
    pass


class InvalidUrlError(ResolverError):
    def __init__(self, message, network=None):
        self.network = network
        super().__init__(message)


class ExtractionFailedError(ResolverError):
    def __init__(self, message, network=None, attempted=()):
        self.network = network
        self.attempted = list(attempted)
        super().__init__(message)


@dataclass(frozen=True)
class PostTarget:
    url: str
    network: Network
    media_id: str


# --- URL CLASSIFICATION ---

PLATFORM_HOSTS = (
    ("x.com", Network.X),
    ("twitter.com", Network.X),
    ("instagram.com", Network.INSTAGRAM),
)


def _hostname(url):
    parsed = urlparse(url if "//" in url else "//" + url)
    try:
        return (parsed.hostname or "").lower()
    except ValueError:
        return ""


def detect_platform(url: str) -> Network:
    # Exact domain or a subdomain of it, never a lookalike such as dropbox.com
    host = _hostname(url)
    for domain, network in PLATFORM_HOSTS:
        if host == domain or host.endswith("." + domain):
            return network
    raise UnsupportedPlatformError("Unsupported platform. Only X/Twitter and Instagram URLs are accepted.")


def parse_target(url: str) -> PostTarget:
    url = (url or "").strip()
    network = detect_platform(url)
    if network == Network.X:
        match = TWEET_ID_RE.search(url)
        if not match:
            raise InvalidUrlError(f"Invalid X/Twitter URL, no status id found: {url}", network)
    else:
        match = SHORTCODE_RE.search(url.split('?')[0])
        if not match:
            raise InvalidUrlError(f"Invalid Instagram URL, no post or reel shortcode found: {url}", network)
    return PostTarget(url=url, network=network, media_id=match.group(1))


# --- PARSING HELPERS ---

def _dict(value):
    return value if isinstance(value, dict) else {}


def _list(value):
    return value if isinstance(value, list) else []


def _int(value):
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _force_https(url):
    if not url: return None
    if url.startswith("//"): return "https:" + url
    return url


def _unescape(text):
    return text.replace('\\u0026', '&').replace('\\/', '/').replace('&amp;', '&')


def make_variant(url, bitrate=None, width=None, height=None, content_type="video/mp4", file_size=None):
    """Build a variant, classifying by bitrate first, then by frame size."""
    bitrate = _int(bitrate)
    width, height = _int(width), _int(height)
    if bitrate is not None:
        quality, resolution = classify_bitrate(bitrate)
    elif width and height:
        quality, resolution = classify_frame(width, height)
    else:
        frame = FRAME_RE.search(url)
        if frame:
            quality, resolution = classify_frame(int(frame.group(1)), int(frame.group(2)))
        else:
            quality, resolution = Quality.SD, None
    return VideoVariant(
        url=_force_https(url),
        quality=quality,
        resolution=resolution,
        bitrate=bitrate,
        content_type=content_type or "video/mp4",
        file_size=_int(file_size),
    )


def _twitter_variants(raw_variants):
    variants = []
    for v in _list(raw_variants):
        v = _dict(v)
        content_type = v.get('content_type') or v.get('type')
        url = v.get('url') or v.get('src')
        if content_type == 'video/mp4' and isinstance(url, str):
            variants.append(make_variant(url, bitrate=v.get('bitrate'), content_type=content_type))
    return sort_variants(variants)


def _first_video_media(media_list):
    for media in _list(media_list):
        media = _dict(media)
        if _dict(media.get('video_info')).get('variants'):
            return media
    return None


def _duration_seconds(millis):
    millis = _int(millis)
    return millis / 1000.0 if millis is not None else None


def _og_video(html):
    """Return (video_url, title, thumbnail) from Open Graph meta tags."""
    soup = BeautifulSoup(html, 'html.parser')

    def meta(prop):
        tag = soup.find('meta', property=prop)
        return tag.get('content') if tag and tag.get('content') else None

    video_url = meta('og:video:url') or meta('og:video:secure_url') or meta('og:video')
    return video_url, meta('og:title'), meta('og:image')


def _ld_json_video(html):
    soup = BeautifulSoup(html, 'html.parser')
    for script in soup.find_all('script', type='application/ld+json'):
        try:
            data = json.loads(script.string or '')
        except ValueError:
            continue
        for node in (data if isinstance(data, list) else [data]):
            node = _dict(node)
            candidates = [node] + _list(node.get('video')) + [_dict(node.get('video'))]
            for candidate in candidates:
                candidate = _dict(candidate)
                if candidate.get('contentUrl'):
                    return candidate
    return None


def _syndication_token(tweet_id):
    """Base-36 rendering of (id / 1e15) * pi with zeros and the point stripped."""
    value = (int(tweet_id) / 1e15) * math.pi
    integer = int(value)
    fraction = value - integer
    digits = ""
    while integer:
        integer, rem = divmod(integer, 36)
        digits = BASE36[rem] + digits
    digits = digits or "0"
    frac = ""
    for _ in range(11):
        fraction *= 36
        d = int(fraction)
        frac += BASE36[d]
        fraction -= d
        if not fraction: break
    return re.sub(r'0+|\.', '', digits + "." + frac)


# --- X / TWITTER STRATEGIES ---

def twitter_api(target, config):
    auth = {"Authorization": f"Bearer {config.twitter_bearer}"}
    res = config.session.post("https://api.twitter.com/1.1/guest/activate.json", headers=auth, timeout=config.timeout)
    res.raise_for_status()
    guest_token = _dict(res.json()).get('guest_token')
    if not guest_token:
        return None

    res = config.session.get(
        "https://api.twitter.com/1.1/statuses/show.json",
        params={"id": target.media_id, "include_entities": "true", "tweet_mode": "extended"},
        headers={**auth, "x-guest-token": guest_token},
        timeout=config.timeout,
    )
    res.raise_for_status()
    tweet = _dict(res.json())
    media = _first_video_media(_dict(tweet.get('extended_entities')).get('media'))
    if not media:
        return None
    video_info = _dict(media.get('video_info'))
    return VideoInfo(
        id=target.media_id,
        title=tweet.get('full_text') or "X/Twitter video",
        network=Network.X,
        variants=_twitter_variants(video_info.get('variants')),
        thumbnail=media.get('media_url_https'),
        author=_dict(tweet.get('user')).get('screen_name'),
        duration=_duration_seconds(video_info.get('duration_millis')),
    )


def twitter_syndication(target, config):
    res = config.session.get(
        "https://cdn.syndication.twimg.com/tweet-result",
        params={"id": target.media_id, "lang": "en", "token": _syndication_token(target.media_id)},
        headers={"User-Agent": config.ua_desktop},
        timeout=config.timeout,
    )
    res.raise_for_status()
    tweet = _dict(res.json())
    media = _first_video_media(tweet.get('mediaDetails'))
    if media:
        video_info = _dict(media.get('video_info'))
        variants = _twitter_variants(video_info.get('variants'))
        thumbnail = media.get('media_url_https')
        duration = _duration_seconds(video_info.get('duration_millis'))
    else:
        # Older payloads carry a flattened "video" node instead
        video = _dict(tweet.get('video'))
        variants = _twitter_variants(video.get('variants'))
        thumbnail = video.get('poster')
        duration = _duration_seconds(video.get('durationMs'))
    return VideoInfo(
        id=target.media_id,
        title=tweet.get('text') or "X/Twitter video",
        network=Network.X,
        variants=variants,
        thumbnail=thumbnail,
        author=_dict(tweet.get('user')).get('screen_name'),
        duration=duration,
    )


def twitter_mirror(target, config):
    res = config.session.get(
        f"https://{config.twitter_mirror_host}/status/{target.media_id}",
        headers={"User-Agent": config.ua_desktop},
        timeout=config.timeout,
    )
    res.raise_for_status()
    tweet = _dict(_dict(res.json()).get('tweet'))
    videos = _list(_dict(tweet.get('media')).get('videos'))
    if not videos:
        return None
    video = _dict(videos[0])
    variants = _twitter_variants(video.get('variants'))
    if not variants and video.get('url'):
        variants = [make_variant(video['url'], width=video.get('width'), height=video.get('height'))]
    duration = video.get('duration')
    return VideoInfo(
        id=target.media_id,
        title=tweet.get('text') or "X/Twitter video",
        network=Network.X,
        variants=variants,
        thumbnail=video.get('thumbnail_url'),
        author=_dict(tweet.get('author')).get('screen_name'),
        duration=float(duration) if isinstance(duration, (int, float)) else None,
    )


def _twitter_post_url(target):
    return f"https://x.com/i/status/{target.media_id}"


def twitter_html(target, config):
    page_url = _twitter_post_url(target)
    res = config.session.get(page_url, headers=config.headers("desktop"), timeout=config.timeout)
    res.raise_for_status()
    video_url, title, thumbnail = _og_video(res.text)
    if not video_url:
        return None
    return VideoInfo(
        id=target.media_id,
        title=title or "X/Twitter video",
        network=Network.X,
        variants=[make_variant(urljoin(page_url, video_url))],
        thumbnail=urljoin(page_url, thumbnail) if thumbnail else None,
    )


def twitter_regex(target, config):
    res = config.session.get(_twitter_post_url(target), headers=config.headers("mobile"), timeout=config.timeout)
    res.raise_for_status()
    urls = TWIMG_MP4_RE.findall(_unescape(res.text))
    if not urls:
        return None
    return VideoInfo(
        id=target.media_id,
        title="X/Twitter video",
        network=Network.X,
        variants=sort_variants(make_variant(u) for u in urls),
    )


# --- INSTAGRAM STRATEGIES ---

def _instagram_post_url(target):
    return f"https://www.instagram.com/p/{target.media_id}/"


def instagram_api(target, config):
    if not config.instagram_cookie:
        logger.info("No Instagram cookie configured, skipping authenticated API")
        return None
    headers = config.headers("desktop")
    headers.update({"X-IG-App-ID": config.instagram_app_id, "Cookie": config.instagram_cookie})
    res = config.session.get(
        _instagram_post_url(target),
        params={"__a": "1", "__d": "dis"},
        headers=headers,
        timeout=config.timeout,
    )
    res.raise_for_status()
    data = _dict(res.json())

    items = _list(data.get('items'))
    if items:
        item = _dict(items[0])
        if not item.get('video_versions'):
            # Carousel posts keep the video on one of the children
            item = next((_dict(c) for c in _list(item.get('carousel_media')) if _dict(c).get('video_versions')), item)
        variants = sort_variants(
            make_variant(v.get('url'), width=v.get('width'), height=v.get('height'))
            for v in map(_dict, _list(item.get('video_versions'))) if isinstance(v.get('url'), str)
        )
        candidates = _list(_dict(item.get('image_versions2')).get('candidates'))
        return VideoInfo(
            id=target.media_id,
            title=_dict(item.get('caption')).get('text') or "Instagram video",
            network=Network.INSTAGRAM,
            variants=variants,
            thumbnail=_dict(candidates[0]).get('url') if candidates else None,
            author=_dict(item.get('user')).get('username'),
            duration=item.get('video_duration'),
        )

    media = _dict(_dict(data.get('graphql')).get('shortcode_media'))
    if not media.get('video_url'):
        return None
    dims = _dict(media.get('dimensions'))
    edges = _list(_dict(media.get('edge_media_to_caption')).get('edges'))
    caption = _dict(_dict(edges[0]).get('node')).get('text') if edges else None
    return VideoInfo(
        id=target.media_id,
        title=caption or "Instagram video",
        network=Network.INSTAGRAM,
        variants=[make_variant(media['video_url'], width=dims.get('width'), height=dims.get('height'))],
        thumbnail=media.get('display_url'),
        author=_dict(media.get('owner')).get('username'),
        duration=media.get('video_duration'),
    )


def instagram_embed(target, config):
    res = config.session.get(
        f"https://www.instagram.com/p/{target.media_id}/embed/captioned/",
        headers=config.headers("desktop"),
        timeout=config.timeout,
    )
    res.raise_for_status()
    # The embed context JSON is itself a JSON-escaped string
    text = _unescape(res.text.replace('\\\\', '\\').replace('\\"', '"'))
    match = VIDEO_URL_RE.search(text)
    if not match:
        return None
    soup = BeautifulSoup(res.text, 'html.parser')
    image = soup.find('img', class_='EmbeddedMediaImage')
    author = re.search(r'"username"\s*:\s*"([^"]+)"', text)
    return VideoInfo(
        id=target.media_id,
        title="Instagram video",
        network=Network.INSTAGRAM,
        variants=[make_variant(match.group(1))],
        thumbnail=image.get('src') if image else None,
        author=author.group(1) if author else None,
    )


def instagram_mirror(target, config):
    base = f"https://{config.instagram_mirror_host}/reel/{target.media_id}"
    res = config.session.get(
        base,
        headers={"User-Agent": "Mozilla/5.0 (compatible; Discordbot/2.0; +https://discordapp.com)"},
        timeout=config.timeout,
    )
    res.raise_for_status()
    video_url, title, thumbnail = _og_video(res.text)
    if not video_url:
        return None
    return VideoInfo(
        id=target.media_id,
        title=title or "Instagram video",
        network=Network.INSTAGRAM,
        variants=[make_variant(urljoin(base, video_url))],
        thumbnail=urljoin(base, thumbnail) if thumbnail else None,
    )


def instagram_html(target, config):
    res = config.session.get(_instagram_post_url(target), headers=config.headers("desktop"), timeout=config.timeout)
    res.raise_for_status()
    video_url, title, thumbnail = _og_video(res.text)
    if video_url:
        return VideoInfo(
            id=target.media_id,
            title=title or "Instagram video",
            network=Network.INSTAGRAM,
            variants=[make_variant(video_url)],
            thumbnail=thumbnail,
        )

    node = _ld_json_video(res.text)
    if not node:
        return None
    author = _dict(node.get('author')).get('alternateName') or _dict(node.get('author')).get('name')
    return VideoInfo(
        id=target.media_id,
        title=node.get('name') or node.get('caption') or title or "Instagram video",
        network=Network.INSTAGRAM,
        variants=[make_variant(_unescape(node['contentUrl']), width=node.get('width'), height=node.get('height'))],
        thumbnail=node.get('thumbnailUrl') if isinstance(node.get('thumbnailUrl'), str) else thumbnail,
        author=author,
    )


def instagram_regex(target, config):
    res = config.session.get(_instagram_post_url(target), headers=config.headers("mobile"), timeout=config.timeout)
    res.raise_for_status()
    urls = VIDEO_URL_RE.findall(res.text)
    if not urls:
        return None
    return VideoInfo(
        id=target.media_id,
        title="Instagram video",
        network=Network.INSTAGRAM,
        variants=sort_variants(make_variant(_unescape(u).replace('\\', '')) for u in urls),
    )


# --- DEMO PLACEHOLDER ---

PLACEHOLDERS = {
    Network.X: {
        "title": "X/Twitter video (Demo)",
        "thumbnail": "https://via.placeholder.com/300x300/1DA1F2/white?text=X",
        "url": "https://video.twimg.com/amplify_video/demo-{id}/vid/avc1/1280x720/demo.mp4",
        "size": 2000000,
    },
    Network.INSTAGRAM: {
        "title": "Instagram video (Demo)",
        "thumbnail": "https://via.placeholder.com/300x300/E4405F/white?text=Instagram",
        "url": "https://instagram.feoh3-1.fna.fbcdn.net/o1/v/t16/f2/m86/demo-video-{id}.mp4",
        "size": 1500000,
    },
}


def placeholder(target, config):
    """Synthetic result for demos. Only chained when demo mode is switched on."""
    logger.warning(f"Demo mode: returning placeholder data for {target.url}")
    data = PLACEHOLDERS[target.network]
    variant = make_variant(data["url"].format(id=target.media_id), file_size=data["size"])
    return VideoInfo(
        id=target.media_id,
        title=data["title"],
        network=target.network,
        variants=[variant],
        thumbnail=data["thumbnail"],
    )


TWITTER_STRATEGIES = (twitter_api, twitter_syndication, twitter_mirror, twitter_html, twitter_regex)
INSTAGRAM_STRATEGIES = (instagram_api, instagram_embed, instagram_mirror, instagram_html, instagram_regex)


def run_strategies(target, strategies, config):
    """Try each strategy in order and return the first result carrying a video URL."""
    attempted = []
    for strategy in strategies:
        name = getattr(strategy, '__name__', repr(strategy))
        attempted.append(name)
        logger.info(f"Attempting Strategy: {name} ({target.network.value} {target.media_id})")
        try:
            info = strategy(target, config)
        except Exception as e:
            logger.warning(f"Strategy {name} failed: {e}")
            continue

        if info:
            info.variants = sort_variants(info.variants)
        if info and info.variants:
            info.source = info.source or name
            logger.info(f"Got video via {name}: {info.mp4_url}")
            return info
        logger.info(f"Strategy {name} found no video")

    raise ExtractionFailedError(
        f"Could not locate a playable video for this {target.network.value} post",
        network=target.network,
        attempted=attempted,
    )


class VideoResolver:
    def __init__(self, config: Optional[FetchConfig] = None, chains=None):
        self.config = config or FetchConfig.from_env()
        self.chains = chains or {Network.X: TWITTER_STRATEGIES, Network.INSTAGRAM: INSTAGRAM_STRATEGIES}

    def chain_for(self, network):
        chain = tuple(self.chains[network])
        if self.config.demo_mode:
            chain += (placeholder,)
        return chain

    def resolve(self, url: str) -> VideoInfo:
        target = parse_target(url)
        logger.info(f"Resolving {target.network.value} post {target.media_id}: {target.url}")
        with self.config.request_scope() as config:
            return run_strategies(target, self.chain_for(target.network), config)
