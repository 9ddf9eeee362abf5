import logging
import os

from .app import create_app
from .database import wait_for_database


def main():
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    app = create_app()
    app.logger.info(
        "MONGO_URL: %s", "Present" if os.getenv("MONGO_URL") else "Missing (using default)"
    )
    app.logger.info("CORS_ORIGIN: %s", app.config["CORS_ORIGIN"])

    wait_for_database(app)

    port = int(os.environ.get("PORT", 5001))
    app.run(host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
