import os

class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///crease.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    # Extra allowed origins, comma-separated
    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '')
    # Match shape
    TOTAL_OVERS = int(os.environ.get('TOTAL_OVERS', '5'))
    MAX_WICKETS = int(os.environ.get('MAX_WICKETS', '10'))
    EXTRA_PROBABILITY = float(os.environ.get('EXTRA_PROBABILITY', '0.05'))
    # Disconnect grace periods (seconds)
    PREGAME_GRACE_SEC = float(os.environ.get('PREGAME_GRACE_SEC', '30'))
    MATCH_GRACE_SEC = float(os.environ.get('MATCH_GRACE_SEC', '60'))
    # Wait for the second intent of a delivery before synthesizing it (seconds). 0 disables.
    DELIVERY_WAIT_SEC = float(os.environ.get('DELIVERY_WAIT_SEC', '2.0'))
