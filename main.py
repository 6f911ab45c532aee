"""
Main Application Runner
Starts the Attendance Session Engine HTTP API.
"""
import logging
import signal
import sys
from attendance_engine.config.settings import Config
from attendance_engine.utils.logger import setup_logging

setup_logging(Config.LOG_LEVEL, Config.LOG_DIR)

logger = logging.getLogger(__name__)

def signal_handler(signum, frame):
    """Handle shutdown signals."""
    logger.info("Received shutdown signal. Stopping...")
    sys.exit(0)

def main():
    """Main application entry point."""
    # Setup signal handlers
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    logger.info("=== Attendance Session Engine ===")

    from attendance_engine.app import create_app
    try:
        app = create_app()
    except Exception as e:
        logger.error(f"Failed to start: {e}")
        sys.exit(1)

    logger.info(f"Serving on {Config.HOST}:{Config.PORT} (timezone {Config.TIMEZONE})")
    app.run(host=Config.HOST, port=Config.PORT, debug=Config.DEBUG, threaded=True)

if __name__ == "__main__":
    main()
