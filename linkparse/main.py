"""WSGI entry point: ``gunicorn linkparse.main:app`` or ``python -m linkparse.main``."""

import os
import sys

from linkparse import create_app

app = create_app()


def run() -> None:
    if "--check-imports" in sys.argv:
        print(f"Import check successful: {len(app.blueprints)} blueprints registered.")
        sys.exit(0)
    app.run(
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8080")),
        debug=os.getenv("ENV") == "development",
    )


if __name__ == "__main__":
    run()
