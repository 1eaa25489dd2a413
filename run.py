#!/usr/bin/env python3
"""
Entry point for the Courtside tournament API.

Usage:
    python run.py                    # Run the API
    python run.py recover            # Revert starts that stalled mid-saga, then exit

Environment Variables:
    FLASK_ENV: development, production or testing (default: development)
    PORT: Port to run on (default: 5000)
    DATABASE_URL, REDIS_URL, STORE_BACKEND, PUBLISH_EVENTS: see courtside/config.py
"""
import os
import signal
import sys
from datetime import timedelta


def run_api():
    """Run the courtside API."""
    from courtside.app import create_app

    app = create_app()
    port = int(os.getenv('PORT', 5000))
    debug = os.getenv('FLASK_ENV', 'development') == 'development'

    print(f"Starting Courtside on port {port}...")
    app.run(host='0.0.0.0', port=port, debug=debug)


def run_recovery():
    """Revert ACTIVE tournaments whose bracket was never generated."""
    from courtside.app import create_app
    from shared.deadline import Deadline
    from shared.errors import OperationCancelled

    app = create_app()
    deadline = Deadline()
    for signum in (signal.SIGINT, signal.SIGTERM):
        signal.signal(signum, lambda *_: deadline.cancel())

    stale_after = timedelta(seconds=app.config['STALLED_START_SECONDS'])
    try:
        with app.app_context():
            recovered = app.services.orchestrator.recover_stalled_starts(stale_after, deadline)
    except OperationCancelled:
        print("Recovery interrupted")
        sys.exit(1)

    print(f"Recovered {len(recovered)} stalled tournament starts")
    for tournament_id in recovered:
        print(f"  {tournament_id}")


if __name__ == '__main__':
    mode = sys.argv[1] if len(sys.argv) > 1 else 'api'

    if mode == 'api':
        run_api()
    elif mode == 'recover':
        run_recovery()
    else:
        print(f"Unknown mode: {mode}")
        print("Usage: python run.py [api|recover]")
        sys.exit(1)
