SEED_SCORE = 50
MIN_SCORE = 0
MAX_SCORE = 100
SCORE_FLOOR = 10
MAX_MODEL_DELTA = 15
MAX_ERROR_CHARS = 1200
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_LOCALE = "en-US"
OPENING_CUE = "The founder has entered the room. Start the meeting."
