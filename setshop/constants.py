from __future__ import annotations

import logging

LOGGER = logging.getLogger("setshop")
SPOTIFY_LOGGER = logging.getLogger("setshop.spotify")
APP_VERSION = "0.1.0"
AUTH_MODE = "spotify-pkce"

SPOTIFY_API_BASE_URL = "https://api.spotify.com/v1"
STRIPE_API_BASE_URL = "https://api.stripe.com/v1"

DEFAULT_BASE_URL = "http://localhost:5173"
DEFAULT_CURATOR = "illegible.ink"
PLACEHOLDER_ART = "/images/placeholder.jpg"

SESSION_COOKIE = "setshop_session"
