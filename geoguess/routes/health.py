import logging
from flask import Blueprint, jsonify

from geoguess.services import get_runtime

bp = Blueprint("health", __name__)
log = logging.getLogger(__name__)

@bp.get("/health")
def health():
    """Liveness check, with the state of each image cache."""
    runtime = get_runtime()
    caches = {name: service.status() for name, service in runtime.services.items()}
    log.debug("health check: %s", caches)
    return jsonify(status="ok", caches=caches)
