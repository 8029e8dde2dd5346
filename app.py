"""
WSGI entry point

Exposes both 'app' (Flask instance, used by `flask --app app`) and
'application' (the name Passenger looks for).
"""
import os
import sys

# Passenger may start us from another working directory
backend_dir = os.path.dirname(os.path.abspath(__file__))
if backend_dir not in sys.path:
    sys.path.insert(0, backend_dir)

from qistmarket import create_app

app = create_app()
application = app

# Only for local development/testing (ignored by Passenger)
if __name__ == "__main__":
    app.run(host="0.0.0.0", port=int(os.environ.get("PORT", 5000)), debug=app.config.get("DEBUG", False))
