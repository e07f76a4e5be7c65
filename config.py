from dotenv import load_dotenv
import os

load_dotenv()

# Configuration class for the application
class Config:
    # Credentials are checked per request, not at import
    OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
    OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
    OPENAI_TRANSCRIBE_MODEL = os.getenv("OPENAI_TRANSCRIBE_MODEL", "gpt-4o-transcribe")
    OPENAI_JUDGE_MODEL = os.getenv("OPENAI_JUDGE_MODEL", "gpt-4o-mini")
    OPENAI_AUDIO_JUDGE_MODEL = os.getenv("OPENAI_AUDIO_JUDGE_MODEL", "gpt-4o-audio-preview")

    AZURE_SPEECH_KEY = os.getenv("AZURE_SPEECH_KEY")
    AZURE_REGION = os.getenv("AZURE_REGION", "eastus")

    # Gemini API Configuration (alternative judge backend)
    GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
    GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash-lite")
    JUDGE_BACKEND = os.getenv("JUDGE_BACKEND", "openai").lower()

    # Auxiliary lookups
    PHONETIC_DATA_URL = os.getenv("PHONETIC_DATA_URL", "http://localhost:8000/static")
    NUM_NORMALIZE_URL = os.getenv("NUM_NORMALIZE_URL", "http://localhost:8000/api/num-normalize")
    DATAMUSE_URL = os.getenv("DATAMUSE_URL", "https://api.datamuse.com/words")

    # Network configuration (seconds)
    RECOGNITION_TIMEOUT = 20.0
    JUDGE_TIMEOUT = 30.0
    LOOKUP_TIMEOUT = 5.0

    # File size limits
    MAX_FILE_SIZE = 25 * 1024 * 1024  # 25MB

    # Grading thresholds
    HINT_MAX_CHARS = 120
    ZH_PASS_THRESHOLD = 0.80
    DEFAULT_PASS_THRESHOLD = 0.78
    MAX_CANDIDATES = 5
    MAX_EN_HOMOPHONES = 30
