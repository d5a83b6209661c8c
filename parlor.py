"""
Main application bootstrap file.

This script initializes the Flask application and the SocketIO server, opens
the persistent chat store, and registers the web routes and SocketIO event
handlers. It is responsible for starting the server and bringing all
components of the relay online.
"""
import time
import logging
from flask import Flask, jsonify
from flask_socketio import SocketIO
from flask_cors import CORS
import debugpy
from typing import Optional

from audit_logger import audit_log
from config import CORS_ALLOWED_ORIGINS, DEBUG_MODE, SERVER_PORT, STORE_CONNECT_ATTEMPTS
import events
from message_store import ChatStore, StorageError

# --- CONFIGURATION ---
logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
app = Flask(__name__)
CORS(app)
socketio = SocketIO(app, cors_allowed_origins=CORS_ALLOWED_ORIGINS, async_mode="eventlet")


def connect_to_store() -> Optional[ChatStore]:
    """
    Opens the chat store with a retry loop.

    Returns:
        The ChatStore if it could be opened, otherwise None.
    """
    for i in range(STORE_CONNECT_ATTEMPTS):
        try:
            logging.info("Attempting to open the chat store...")
            store = ChatStore()
            logging.info("Successfully opened the chat store.")
            return store
        except StorageError as e:
            logging.warning(f"Chat store unavailable. Retrying in {i + 1} second(s)... Error: {e}")
            time.sleep(i + 1)

    logging.critical("FATAL: Could not open the chat store. The relay cannot function without it.")
    return None


# --- GLOBAL INITIALIZATION ---
store = connect_to_store()
relay = events.register_events(socketio, store, audit=audit_log) if store else None


# --- SERVER ROUTES ---
@app.route("/")
def serve_index():
    """Describes the running service."""
    return jsonify({"message": "Parlor chat relay is running", "status": "active"})


@app.route("/health")
def serve_health():
    """Reports liveness plus connection and presence counts."""
    if relay is None:
        return jsonify({"status": "unavailable"}), 503
    return jsonify({"status": "ok", **relay.stats()})


# --- MAIN EXECUTION ---
if __name__ == "__main__":
    if not store:
        app.logger.critical("Server startup failed: the chat store could not be opened.")
    else:
        if DEBUG_MODE:
            debugpy.listen(("0.0.0.0", 5678))
            app.logger.info("Debugpy server listening. Waiting for debugger to attach...")
            debugpy.wait_for_client()
            app.logger.info("Debugger attached.")

        app.logger.info(f"Starting Parlor chat relay on http://127.0.0.1:{SERVER_PORT}")
        try:
            socketio.run(app, port=SERVER_PORT)
        finally:
            relay.shutdown()
