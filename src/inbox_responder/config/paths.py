from pathlib import Path
from dotenv import load_dotenv

# Load .env once, globally
load_dotenv()

# Project root (independent of current working directory).
PROJECT_ROOT = Path(__file__).resolve().parents[3]

REVIEWS_FILENAME = "manual_reviews.json"


def resolve_dir(value: str) -> Path:
    """
    Resolve a configured directory and make sure it exists.
    Relative paths are resolved against PROJECT_ROOT.
    """
    path = Path(value)

    if not path.is_absolute():
        path = PROJECT_ROOT / path

    path.mkdir(parents=True, exist_ok=True)
    return path
