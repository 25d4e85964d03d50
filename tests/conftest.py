import pytest

from vtdecode.mvt_decoder import MVTDecoder

from tile_builder import encode_tile


@pytest.fixture()
def decoder() -> MVTDecoder:
    return MVTDecoder()


@pytest.fixture()
def decode_layer(decoder):
    """Decode a single layer called "test" at tile 0/0/0 and return the decoder."""

    def _decode(features, keys=(), values=(), extent=4096, tile_id=(0, 0, 0)):
        raw = encode_tile(dict(name="test", features=features, keys=keys, values=values, extent=extent))
        assert decoder.decode(tile_id, raw)
        return decoder

    return _decode
