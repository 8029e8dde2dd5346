import os
import traceback
import importlib.util

# Passenger doesn't load .env automatically
from dotenv import load_dotenv

PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
load_dotenv(os.path.join(PROJECT_ROOT, ".env"))

APP_FILE = os.path.join(PROJECT_ROOT, "app.py")

captured_error = None

try:
    spec = importlib.util.spec_from_file_location("app", APP_FILE)
    app_module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(app_module)
    application = app_module.application
except Exception as e:
    captured_error = str(e) + "\n\n" + traceback.format_exc()

# Fallback WSGI app so a broken deploy reports itself instead of hanging
if captured_error:
    def application(environ, start_response):
        start_response(
            "500 Internal Server Error",
            [("Content-Type", "text/plain")]
        )
        body = "DEPLOYMENT FAILED\n\n" + captured_error
        return [body.encode("utf-8")]
