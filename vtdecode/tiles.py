import concurrent.futures
import logging
import os

import requests

from vtdecode.attributes import Fields
from vtdecode.mvt_decoder import MVTDecoder

logger = logging.getLogger(__name__)

CACHE_DIR = os.path.expanduser(os.environ.get("VTDECODE_CACHE_DIR", "~/.vtdecode/cache"))
TILE_URL_TEMPLATE = os.environ.get(
    "VTDECODE_TILE_URL", "https://tiles.openfreemap.org/planet/latest/{z}/{x}/{y}.pbf"
)
REQUEST_TIMEOUT = 5


def get_tile_path(z, x, y):
    return os.path.join(CACHE_DIR, str(z), str(x), f"{y}.mvt")


def fetch_tile(z, x, y):
    """
    Returns tile bytes. Checks cache first, then downloads.
    """
    path = get_tile_path(z, x, y)

    if os.path.exists(path):
        # Previously cached empty files decode as blank tiles; refetch them.
        if os.path.getsize(path) == 0:
            os.remove(path)
        else:
            with open(path, "rb") as f:
                return f.read()

    url = TILE_URL_TEMPLATE.format(z=z, x=x, y=y)
    try:
        resp = requests.get(url, timeout=REQUEST_TIMEOUT)
    except requests.RequestException as e:
        logger.warning("Exception fetching %s: %s", url, e)
        return None

    if resp.status_code != 200:
        logger.warning("Error fetching %s: %s %s", url, resp.status_code, resp.text[:100])
        return None
    if not resp.content:
        return None

    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(resp.content)
    return resp.content


def decode_tile(tile_bytes, z, x, y, fields=None, transform=None):
    """
    Decodes MVT bytes into {layer name: [VectorTileFeature, ...]}.

    Without ``fields`` every layer is decoded with an untyped schema of all
    of its keys.
    """
    if not tile_bytes:
        return {}
    decoder = MVTDecoder()
    if not decoder.decode((z, x, y), tile_bytes):
        return {}
    if fields is None:
        fields = {name: Fields.from_names(decoder.field_names(name)) for name in decoder.layers()}
    return decoder.layer_features(fields, transform=transform)


class TileLoader:
    """Fetches and decodes tiles on a thread pool, one decoder per job."""

    def __init__(self, fields=None, transform=None, max_workers=4):
        self.fields = fields
        self.transform = transform
        self.max_workers = max_workers
        self.executor = concurrent.futures.ThreadPoolExecutor(max_workers=max_workers)
        self.futures = {}  # (z,x,y) -> future
        self.loaded = {}  # (z,x,y) -> decoded features

    def request_tile(self, z, x, y):
        key = (z, x, y)
        if key in self.loaded or key in self.futures:
            return
        self.futures[key] = self.executor.submit(self._fetch_and_decode, z, x, y)

    def _fetch_and_decode(self, z, x, y):
        raw = fetch_tile(z, x, y)
        if raw:
            return decode_tile(raw, z, x, y, fields=self.fields, transform=self.transform)
        return {}

    def update(self):
        """Collect completed futures."""
        for key in list(self.futures.keys()):
            future = self.futures[key]
            if future.done():
                try:
                    self.loaded[key] = future.result()
                except Exception:
                    logger.exception("Loading tile %s/%s/%s failed", *key)
                del self.futures[key]

    def get_tile(self, z, x, y):
        return self.loaded.get((z, x, y))

    def clear(self):
        self.executor.shutdown(wait=False)
        self.executor = concurrent.futures.ThreadPoolExecutor(max_workers=self.max_workers)
        self.futures = {}
        self.loaded = {}
