"""Path configuration for the backend."""
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parents[2]
load_dotenv(dotenv_path=BASE_DIR / ".env")

# Optional JSON overrides for the pipeline configuration
PIPELINE_CONFIG_PATH = BASE_DIR / "pipeline.json"
