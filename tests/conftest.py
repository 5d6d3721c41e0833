"""Shared test fixtures for adsb-relay.

Provides:
- Radar origin and a projector centred on it
- A fresh track table
- Service config pointed at loopback / ephemeral ports
"""

import copy

import pytest

from adsb_relay.config import _default_config
from adsb_relay.projection import Projector
from adsb_relay.tracker import TrackTable
from tests.fixtures.feed_documents import RADAR_LAT, RADAR_LON, RADAR_HEIGHT


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def radar_origin():
    """Default radar coordinates (lat, lon, height)."""
    return (RADAR_LAT, RADAR_LON, RADAR_HEIGHT)


@pytest.fixture
def projector(radar_origin):
    return Projector(*radar_origin)


@pytest.fixture
def table(projector):
    return TrackTable(projector)


@pytest.fixture
def config():
    """Service config with feeds off and the TCP server on an ephemeral port."""
    cfg = copy.deepcopy(_default_config())
    cfg["feed"]["url"] = None
    cfg["feed"]["directory"] = None
    cfg["output"]["tcp_host"] = "127.0.0.1"
    cfg["output"]["tcp_port"] = 0
    cfg["output"]["udp_port"] = None
    return cfg
