#!/usr/bin/env python3
"""
HTTP API for user mention indexing.

POST /api/v2/user-mentions/indexer-start   start indexing ({"recordType": "all"})
POST /api/v2/long-runner/run               resume ({"callbackPayload": token})
GET  /api/v2/user-mentions/users/{userID}  list a user's mentions

Incomplete runs answer 408 with the checkpoint in `callbackPayload`; the
client resubmits it verbatim to continue.
"""

from http.server import ThreadingHTTPServer, BaseHTTPRequestHandler
import json
import logging
import re

from longrunner.batch import CorruptCheckpoint, InvalidFilter
from longrunner.config import load_config
from longrunner.logging import LoggerConfig
from longrunner.mentions import build_runner, format_mention, resume_indexing, start_indexing
from longrunner.storage.database import Database

logger = logging.getLogger(__name__)

USER_MENTIONS_PATH = re.compile(r'^/api/v2/user-mentions/users/(\d+)$')


def outcome_body(outcome) -> dict:
    """Render a RunOutcome the way the long-runner endpoints return it."""
    body = outcome.to_dict()
    body['callbackPayload'] = body.pop('checkpoint', None)
    body['progress'] = {
        'successIDs': [list(r.item_key) for r in outcome.results if r.outcome.value == 'success'],
        'skippedIDs': [list(r.item_key) for r in outcome.results if r.outcome.value == 'skipped'],
        'failedIDs': [list(r.item_key) for r in outcome.results if r.outcome.value == 'failed'],
        'exceptionsByID': {
            f"{r.item_key[0]}_{r.item_key[1]}": r.reason
            for r in outcome.results if r.outcome.value == 'failed'
        },
    }
    return body


class MentionAPIHandler(BaseHTTPRequestHandler):
    def do_GET(self):
        match = USER_MENTIONS_PATH.match(self.path)
        if match:
            self.serve_user_mentions(int(match.group(1)))
        else:
            self.send_json(404, {'message': 'Not found'})

    def do_POST(self):
        if self.path == '/api/v2/user-mentions/indexer-start':
            self.start_indexer()
        elif self.path == '/api/v2/long-runner/run':
            self.resume_long_runner()
        else:
            self.send_json(404, {'message': 'Not found'})

    def read_json(self):
        length = int(self.headers.get('Content-Length') or 0)
        if length == 0:
            return {}
        data = json.loads(self.rfile.read(length).decode('utf-8'))
        if not isinstance(data, dict):
            raise ValueError("Request body must be a JSON object")
        return data

    def send_json(self, status: int, body):
        payload = json.dumps(body, ensure_ascii=False).encode('utf-8')
        self.send_response(status)
        self.send_header('Content-Type', 'application/json')
        self.send_header('Content-Length', str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)

    def serve_user_mentions(self, user_id: int):
        mentions = self.server.db.get_mentions_by_user(user_id)
        self.send_json(200, [format_mention(m) for m in mentions])

    def _run(self, start, success_status: int):
        try:
            outcome = start()
        except (InvalidFilter, CorruptCheckpoint) as e:
            self.send_json(400, {'message': str(e)})
            return
        except Exception as e:
            logger.error(f"Long runner request failed: {e}", exc_info=True)
            self.send_json(500, {'message': str(e)})
            return

        self.send_json(success_status if outcome.is_complete else 408, outcome_body(outcome))

    def start_indexer(self):
        try:
            data = self.read_json()
        except ValueError as e:
            self.send_json(400, {'message': f"Invalid JSON body: {e}"})
            return

        record_filter = data.get('recordType', 'all')
        self._run(
            lambda: start_indexing(
                self.server.db,
                record_filter=record_filter,
                budget=self.server.max_iterations,
                runner=self.server.runner,
                time_limit=self.server.time_limit
            ),
            201
        )

    def resume_long_runner(self):
        try:
            data = self.read_json()
        except ValueError as e:
            self.send_json(400, {'message': f"Invalid JSON body: {e}"})
            return

        token = data.get('callbackPayload')
        if not isinstance(token, str) or not token:
            self.send_json(400, {'message': "callbackPayload is required"})
            return

        self._run(
            lambda: resume_indexing(
                self.server.db,
                token,
                budget=self.server.max_iterations,
                runner=self.server.runner,
                time_limit=self.server.time_limit
            ),
            200
        )

    def log_message(self, format, *args):
        logger.info(f"{self.address_string()} {format % args}")


def create_server(
    db: Database,
    host: str = 'localhost',
    port: int = 8001,
    max_iterations: int = 100,
    page_size: int = 100,
    record_types=('discussion', 'comment'),
    time_limit=None
) -> ThreadingHTTPServer:
    """
    Build the API server. Settings live on the server object for handlers.

    Args:
        db: Forum database
        host: Bind address
        port: Bind port (0 picks a free port)
        max_iterations: Budget per request
        page_size: Records fetched per query
        record_types: Registered record types, in "all" order
        time_limit: Optional wall-clock limit per request in seconds
    """
    server = ThreadingHTTPServer((host, port), MentionAPIHandler)
    server.db = db
    server.runner = build_runner(db, page_size=page_size, record_types=record_types)
    server.max_iterations = max_iterations
    server.time_limit = time_limit
    return server


def main():
    config = load_config()
    LoggerConfig(log_dir=config['log_dir']).setup(level=config['log_level'])

    db = Database(config['database_path'])
    server = create_server(
        db,
        max_iterations=config['max_iterations'],
        page_size=config['page_size'],
        record_types=config['record_types']
    )
    host, port = server.server_address[:2]
    logger.info(f"API server running on http://{host}:{port}")
    logger.info(f"  - Start indexing: POST http://{host}:{port}/api/v2/user-mentions/indexer-start")
    logger.info(f"  - Resume: POST http://{host}:{port}/api/v2/long-runner/run")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Shutting down")
    finally:
        server.server_close()


if __name__ == '__main__':
    main()
