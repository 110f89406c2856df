from flask import Blueprint, jsonify
from crease.socketio_events import get_registry

main = Blueprint('main', __name__)

@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the Crease cricket server!'})

@main.route('/api/health')
def health():
    return jsonify({'status': 'ok'})

@main.route('/api/rooms')
def list_rooms():
    """Same room summaries the lobby receives over rooms.list."""
    return jsonify(get_registry().list_rooms())
