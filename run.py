from geoguess import create_app
from config.config import DevelopmentConfig

if __name__ == '__main__':
    app = create_app(DevelopmentConfig)
    # The reloader would start a second process with its own caches.
    app.run(host='0.0.0.0', port=app.config["PORT"], debug=True, use_reloader=False)
