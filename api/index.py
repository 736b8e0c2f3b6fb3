from mangum import Mangum
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from contest.api import create_app
from contest.config import load_settings
from contest.log import setup_logging

settings = load_settings()
setup_logging(settings.logging.level)

app = create_app(settings, root_path="/api")

handler = Mangum(app)
