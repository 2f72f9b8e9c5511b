# --- START OF FILE app.py ---

import os
import logging

from formrelay import ConfigError, create_app

# --- Application ---
# Settings come from the environment (and .env). A deployment that cannot
# send mail should not start at all.
try:
    app = create_app()
except ConfigError as e:
    logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s:%(name)s:%(message)s')
    logging.getLogger(__name__).error(f"Invalid configuration: {e}")
    raise SystemExit(f"Configuration incomplete: {e}")
# --- End Application ---


# --- Main Execution ---
if __name__ == '__main__':
    port = int(os.environ.get('PORT', 3000))
    # Default debug to False unless explicitly set
    debug_mode = os.environ.get('FLASK_DEBUG', 'false').lower() in ('true', '1', 't')
    app.logger.info(f"Starting Flask app on port {port} with debug mode: {debug_mode}")
    # Use waitress or gunicorn in production instead of app.run()
    app.run(host='0.0.0.0', port=port, debug=debug_mode)
# --- End Main Execution ---

# --- END OF FILE app.py ---
