"""
Creates and returns main flask app
"""

import os
import threading

from flask import Flask, jsonify
from flask_cors import CORS

from .engine.bot_manager import KeeperManager
from .engine.routes import keeper, register_keeper_manager


def create_app():
    """
    Create Flask app with chain IDs from KEEPER_CHAIN_IDS.

    Chain configs are loaded here, on the caller's thread, so a ConfigError
    stops startup instead of only the keeper thread.
    """
    app = Flask(__name__)
    CORS(app)

    @app.route("/health", methods=["GET"])
    def health_check():
        return jsonify({"status": "healthy"}), 200

    chain_ids = [int(c) for c in os.environ.get("KEEPER_CHAIN_IDS", "31612").split(",") if c.strip()]

    keeper_manager = register_keeper_manager(KeeperManager(chain_ids))

    keeper_thread = threading.Thread(target=keeper_manager.start, daemon=True)
    keeper_thread.start()

    app.register_blueprint(keeper, url_prefix="/keeper")

    return app
