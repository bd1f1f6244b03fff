"""Routes package - Blueprint imports and exports"""
from geoguess.routes.health import bp as health_bp

__all__ = ['health_bp']
