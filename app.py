import socket
import sqlite3
import sys

from flask import Flask, jsonify, request

from config import load_config
from database import get_db_connection, init_db
from services.dispatch import failure_envelope, handle_read, handle_write, success_envelope
from services.records import bootstrap_record_service, get_record_service

# --- App Initialization ---
app = Flask(__name__)
app.json.sort_keys = False
app.config['STORE_CONFIG'] = load_config()

_db_bootstrapped = False


def get_store_config():
    return app.config['STORE_CONFIG']


@app.before_request
def _ensure_database_initialized():
    """Guarantee the tables exist and the record service matches the active config."""
    global _db_bootstrapped
    if _db_bootstrapped:
        return
    config = get_store_config()
    try:
        init_db(config=config)
        bootstrap_record_service(config)
        _db_bootstrapped = True
    except Exception as exc:  # pragma: no cover - defensive logging
        app.logger.exception("Failed to initialize database before request: %s", exc)


@app.route('/', methods=['GET'])
@app.route('/api/records', methods=['GET'])
def read_records():
    service = get_record_service()
    conn = get_db_connection(service.config)
    try:
        payload = handle_read(service, conn)
    finally:
        conn.close()
    return jsonify(payload)


@app.route('/', methods=['POST'])
@app.route('/api/records', methods=['POST'])
def write_records():
    # Clients post JSON as text/plain to avoid CORS preflight, so read the raw body.
    body = request.get_data(cache=False, as_text=True)
    service = get_record_service()
    conn = get_db_connection(service.config)
    try:
        payload = handle_write(service, conn, body)
    finally:
        conn.close()
    if not payload['success']:
        app.logger.warning("Write request rejected: %s", payload['error'])
    return jsonify(payload)


@app.route('/api/setup', methods=['GET'])
def setup_status():
    service = get_record_service()
    conn = get_db_connection(service.config)
    try:
        report = service.check_setup(conn)
    except sqlite3.Error as e:
        app.logger.error(f"DB error during setup check: {e}")
        return jsonify(failure_envelope(service, e))
    finally:
        conn.close()
    return jsonify(success_envelope(service, report))


def is_port_in_use(host, port):
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        return s.connect_ex((host, port)) == 0


def main():
    config = get_store_config()
    if is_port_in_use(config.host, config.port):
        print(f"Port {config.port} is already in use. Is another instance running?")
        sys.exit(1)
    print(f"Serving contact manager on http://{config.host}:{config.port}/ (database: {config.database_file})")
    app.run(host=config.host, port=config.port, debug=False)


if __name__ == '__main__':
    init_db(config=get_store_config())
    main()
