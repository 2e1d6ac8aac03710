"""Module for handling API routes"""

from flask import Blueprint, jsonify, make_response, request

from .logging_config import setup_logger
from .state import load_last_run

logger = setup_logger()

keeper = Blueprint("keeper", __name__)

_keeper_manager = None


def register_keeper_manager(keeper_manager):
    """Expose the keeper manager to the routes"""
    global _keeper_manager
    _keeper_manager = keeper_manager
    return keeper_manager


def _get_keeper_manager():
    """Get the keeper manager instance."""
    return _keeper_manager


@keeper.route("/lastRun", methods=["GET"])
def get_last_run():
    chain_id = int(request.args.get("chainId", 31612))
    keeper_manager = _get_keeper_manager()

    if not keeper_manager or chain_id not in keeper_manager.configs:
        return jsonify({"error": f"Keeper not initialized for chain {chain_id}"}), 500

    logger.info("API: Getting last run for chain %s", chain_id)
    summary = keeper_manager.last_runs.get(chain_id)
    if summary is not None:
        return make_response(jsonify(summary.to_dict()))

    # Fall back to the snapshot written by a previous process
    record = load_last_run(keeper_manager.configs[chain_id].SAVE_STATE_PATH)
    if record is None:
        return jsonify({"error": f"No completed run for chain {chain_id}"}), 404
    return make_response(jsonify(record))
