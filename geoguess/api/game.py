"""Game API — random street-level image endpoints."""

import logging

from flask import jsonify

from geoguess.api import api_bp
from geoguess.services import get_runtime
from geoguess.services.errors import MissingCredential, Unavailable
from geoguess.services.image_service import IMAGES, PANORAMAS

log = logging.getLogger(__name__)


def _serve(service_name: str):
    runtime = get_runtime()
    entry = runtime.run(runtime.service(service_name).get_next_entry())
    return jsonify(entry.to_payload())


@api_bp.get("/game/image")
def random_image():
    """Return a random standard photo with its country."""
    return _serve(IMAGES)


@api_bp.get("/game/pano")
def random_pano():
    """Return a random 360° panorama with its country."""
    return _serve(PANORAMAS)


@api_bp.errorhandler(MissingCredential)
def missing_credential(exc: MissingCredential):
    log.error("Image request failed: %s", exc)
    return jsonify(error="missing_credential", message=str(exc)), 500


@api_bp.errorhandler(Unavailable)
def image_unavailable(exc: Unavailable):
    log.warning("Image request failed: %s", exc)
    return jsonify(error="image_unavailable", message=str(exc)), 503
